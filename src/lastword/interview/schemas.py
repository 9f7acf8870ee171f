"""Pydantic schemas for the exit-interview engine.

Defines all structured types flowing through a turn:
- Transcript: Message, UserContext, ExitInterviewRequest
- Resolved configuration: Plan, RetentionPathKind, RetentionPathSetting,
  RetentionPaths, CompetitorProbe, AccountConfig
- Targeting: RuleVariable, ConditionOperator, RuleLogic, Condition, Rule
- Outcome: Sentiment, InsightCategory, InsightData

RetentionPaths is a closed set of exactly five path kinds rather than an
open mapping, so prompt assembly can enumerate it exhaustively.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ── Transcript ──────────────────────────────────────────────────────────────


class Message(BaseModel):
    """A single transcript message."""

    role: Literal["user", "assistant"]
    content: str = ""


class UserContext(BaseModel):
    """Optional attributes the embedding site knows about the cancelling user.

    ``account_age`` is measured in days.
    """

    model_config = ConfigDict(extra="ignore")

    email: str | None = None
    plan: str | None = None
    account_age: float | None = None
    seats: float | None = None
    mrr: float | None = None

    def present(self) -> dict[str, Any]:
        """Attributes that were actually supplied, in declaration order."""
        return {k: v for k, v in self.model_dump().items() if v is not None and v != ""}


class ExitInterviewRequest(BaseModel):
    """Inbound body of the streaming exit-interview endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[Message] = Field(default_factory=list)
    user_context: UserContext | None = Field(default=None, alias="userContext")
    insight_id: str | None = Field(default=None, alias="insightId")


# ── Resolved Configuration ──────────────────────────────────────────────────


class Plan(BaseModel):
    """A pricing plan the account sells."""

    name: str
    price: str = ""


class RetentionPathKind(str, Enum):
    """The five retention strategies an account can enable. Never a discount."""

    PAUSE = "pause"
    DOWNGRADE = "downgrade"
    FIX_AND_FOLLOWUP = "fix_and_followup"
    CONCIERGE_ONBOARDING = "concierge_onboarding"
    OFFBOARD_GRACEFULLY = "offboard_gracefully"


class RetentionPathSetting(BaseModel):
    """Enabled flag plus optional offer copy for one retention path."""

    enabled: bool = False
    offer: str | None = None


class RetentionPaths(BaseModel):
    """Closed, exhaustive retention playbook.

    Graceful offboarding defaults to enabled: it is only off when the account
    has explicitly disabled it.
    """

    pause: RetentionPathSetting = Field(default_factory=RetentionPathSetting)
    downgrade: RetentionPathSetting = Field(default_factory=RetentionPathSetting)
    fix_and_followup: RetentionPathSetting = Field(default_factory=RetentionPathSetting)
    concierge_onboarding: RetentionPathSetting = Field(default_factory=RetentionPathSetting)
    offboard_gracefully: RetentionPathSetting = Field(
        default_factory=lambda: RetentionPathSetting(enabled=True)
    )

    def setting(self, kind: RetentionPathKind) -> RetentionPathSetting:
        return getattr(self, kind.value)

    def enabled_kinds(self) -> list[RetentionPathKind]:
        """Enabled path kinds in canonical order."""
        return [kind for kind in RetentionPathKind if self.setting(kind).enabled]

    @classmethod
    def from_raw(cls, raw: Any) -> RetentionPaths:
        """Build from a stored JSON mapping, ignoring unknown keys and junk values."""
        if not isinstance(raw, dict):
            return cls()
        values: dict[str, RetentionPathSetting] = {}
        for kind in RetentionPathKind:
            entry = raw.get(kind.value)
            if not isinstance(entry, dict):
                continue
            offer = entry.get("offer")
            values[kind.value] = RetentionPathSetting(
                enabled=bool(entry.get("enabled", kind is RetentionPathKind.OFFBOARD_GRACEFULLY)),
                offer=str(offer) if offer else None,
            )
        return cls(**values)


class CompetitorProbe(BaseModel):
    """A competitor plus the questions to ask when a customer mentions it."""

    name: str
    questions: list[str] = Field(default_factory=list)


class AccountConfig(BaseModel):
    """Fully resolved, clamped configuration for one account.

    ``is_default`` is True when the account had no stored config and these
    values were synthesized.
    """

    account_id: str
    product_name: str = "our product"
    product_description: str = ""
    competitors: list[str] = Field(default_factory=list)
    competitor_probes: list[CompetitorProbe] = Field(default_factory=list)
    plans: list[Plan] = Field(default_factory=list)
    retention_paths: RetentionPaths = Field(default_factory=RetentionPaths)
    min_exchanges: int = 3
    max_exchanges: int = 5
    brand_voice: str | None = None
    is_default: bool = False


# ── Targeting Rules ─────────────────────────────────────────────────────────


class RuleVariable(str, Enum):
    """User-context attributes a rule condition may test."""

    EMAIL = "email"
    PLAN = "plan"
    ACCOUNT_AGE = "account_age"
    SEATS = "seats"
    MRR = "mrr"


class ConditionOperator(str, Enum):
    EQ = "=="
    NE = "!="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    CONTAINS = "contains"


class RuleLogic(str, Enum):
    AND = "AND"
    OR = "OR"


class Condition(BaseModel):
    """One ``variable operator value`` test."""

    variable: RuleVariable
    operator: ConditionOperator
    value: str | float | int


class Rule(BaseModel):
    """A targeting rule. Lower ``priority`` is evaluated first."""

    id: str | None = None
    name: str = ""
    priority: int = 0
    logic: RuleLogic = RuleLogic.AND
    conditions: list[Condition] = Field(default_factory=list)
    prompt_addition: str = ""


# ── Insight ─────────────────────────────────────────────────────────────────


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class InsightCategory(str, Enum):
    PRICING = "pricing"
    PRODUCT_FIT = "product_fit"
    COMPETITION = "competition"
    SUPPORT = "support"
    RELIABILITY = "reliability"
    LIFECYCLE = "lifecycle"
    OTHER = "other"


class InsightData(BaseModel):
    """Normalized insight: every required field is non-null."""

    surface_reason: str = ""
    deep_reasons: list[str] = Field(default_factory=list)
    sentiment: Sentiment = Sentiment.NEUTRAL
    salvageable: bool = False
    key_quote: str = ""
    category: InsightCategory = InsightCategory.OTHER
    competitor: str | None = None
    feature_gaps: list[str] = Field(default_factory=list)
    usage_duration: str | None = None
    retention_path: RetentionPathKind = RetentionPathKind.OFFBOARD_GRACEFULLY
    retention_accepted: bool = False

    @field_validator("deep_reasons", "feature_gaps", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value if v is not None and str(v).strip()]
        return []
