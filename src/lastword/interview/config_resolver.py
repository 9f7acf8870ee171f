"""Resolve an access key to its account, configuration, and targeting rules.

Read-only. An unknown key fails fast with AuthError. A missing config row is
not an error: a conservative default is synthesized so the interview still
runs (generic product description, graceful offboarding only).

Exchange bounds are clamped into [1, 20] at read time and ``max`` is raised
to ``min`` when stored values are inverted. Stored rows are never rewritten.
"""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import AsyncGenerator, Callable
from typing import Any

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.lastword.core.errors import AuthError
from src.lastword.models.account import Account, Competitor, InterviewConfig, TargetingRule
from src.lastword.interview.schemas import (
    AccountConfig,
    CompetitorProbe,
    Condition,
    Plan,
    RetentionPaths,
    Rule,
    RuleLogic,
)

logger = structlog.get_logger(__name__)

EXCHANGE_BOUND_MIN = 1
EXCHANGE_BOUND_MAX = 20
DEFAULT_MIN_EXCHANGES = 3
DEFAULT_MAX_EXCHANGES = 5

DEFAULT_PRODUCT_DESCRIPTION = "A software product the customer is subscribed to."


def clamp_exchanges(min_exchanges: Any, max_exchanges: Any) -> tuple[int, int]:
    """Clamp both bounds into [1, 20] and force max >= min."""
    lo = _clamp(min_exchanges, DEFAULT_MIN_EXCHANGES)
    hi = _clamp(max_exchanges, DEFAULT_MAX_EXCHANGES)
    if lo > hi:
        hi = lo
    return lo, hi


def _clamp(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = default
    return max(EXCHANGE_BOUND_MIN, min(EXCHANGE_BOUND_MAX, number))


def default_config(account_id: str) -> AccountConfig:
    """Synthesized config for accounts that never saved one."""
    return AccountConfig(
        account_id=account_id,
        product_description=DEFAULT_PRODUCT_DESCRIPTION,
        retention_paths=RetentionPaths(),
        min_exchanges=DEFAULT_MIN_EXCHANGES,
        max_exchanges=DEFAULT_MAX_EXCHANGES,
        is_default=True,
    )


def _parse_plans(raw: Any) -> list[Plan]:
    plans: list[Plan] = []
    for entry in raw or []:
        if isinstance(entry, dict) and entry.get("name"):
            plans.append(Plan(name=str(entry["name"]), price=str(entry.get("price") or "")))
        elif isinstance(entry, str) and entry.strip():
            plans.append(Plan(name=entry.strip()))
    return plans


def _row_to_config(
    account_id: str, row: InterviewConfig, competitors: list[Competitor]
) -> AccountConfig:
    lo, hi = clamp_exchanges(row.min_exchanges, row.max_exchanges)
    if (lo, hi) != (row.min_exchanges, row.max_exchanges):
        logger.warning(
            "config.exchange_bounds_clamped",
            account_id=account_id,
            stored_min=row.min_exchanges,
            stored_max=row.max_exchanges,
            min_exchanges=lo,
            max_exchanges=hi,
        )
    return AccountConfig(
        account_id=account_id,
        product_name=(row.product_name or "").strip() or "our product",
        product_description=(row.product_description or "").strip(),
        competitors=[str(c).strip() for c in (row.competitors or []) if str(c).strip()],
        competitor_probes=[
            CompetitorProbe(
                name=c.name,
                questions=[str(q) for q in (c.questions or []) if str(q).strip()],
            )
            for c in competitors
        ],
        plans=_parse_plans(row.plans),
        retention_paths=RetentionPaths.from_raw(row.retention_paths),
        min_exchanges=lo,
        max_exchanges=hi,
        brand_voice=(row.brand_voice or "").strip() or None,
    )


def _row_to_rule(row: TargetingRule) -> Rule | None:
    """Convert a stored rule; rules with malformed conditions are dropped."""
    try:
        conditions = [Condition.model_validate(c) for c in (row.conditions or [])]
        logic = RuleLogic(str(row.condition_logic or "AND").upper())
    except (ValidationError, ValueError):
        logger.warning("config.rule_invalid", rule_id=str(row.id), rule_name=row.name)
        return None
    return Rule(
        id=str(row.id),
        name=row.name,
        priority=row.priority or 0,
        logic=logic,
        conditions=conditions,
        prompt_addition=row.prompt_addition or "",
    )


class ConfigResolver:
    """Account, config, and rule lookups for the interview engine.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        redis: Optional Redis client used to cache key -> account lookups.
        cache_ttl: Cache lifetime in seconds.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
        redis: aioredis.Redis | None = None,
        cache_ttl: int = 300,
    ) -> None:
        self._session_factory = session_factory
        self._redis = redis
        self._cache_ttl = cache_ttl

    @staticmethod
    def _cache_key(api_key: str) -> str:
        digest = hashlib.sha256(api_key.encode("utf-8")).hexdigest()
        return f"account:key:{digest}"

    async def resolve_account(self, api_key: str | None) -> str:
        """Return the account id owning *api_key*.

        Raises:
            AuthError: If the key is missing or matches no account.
        """
        if not api_key or not api_key.strip():
            raise AuthError("Missing x-api-key header")
        api_key = api_key.strip()

        if self._redis is not None:
            try:
                cached = await self._redis.get(self._cache_key(api_key))
                if cached:
                    return str(cached)
            except Exception:
                logger.warning("config.account_cache_get_failed", exc_info=True)

        account_id = None
        async for session in self._session_factory():
            result = await session.execute(select(Account.id).where(Account.api_key == api_key))
            account_id = result.scalar_one_or_none()

        if account_id is None:
            logger.info("config.unknown_api_key")
            raise AuthError("Invalid API key")

        account_id = str(account_id)
        if self._redis is not None:
            try:
                await self._redis.set(self._cache_key(api_key), account_id, ex=self._cache_ttl)
            except Exception:
                logger.warning("config.account_cache_set_failed", exc_info=True)
        return account_id

    async def load_config(self, account_id: str) -> AccountConfig:
        """Load and clamp the account's config, or synthesize the default."""
        account_uuid = uuid.UUID(account_id)
        async for session in self._session_factory():
            result = await session.execute(
                select(InterviewConfig).where(InterviewConfig.account_id == account_uuid)
            )
            row = result.scalar_one_or_none()
            if row is None:
                logger.warning("config.missing_using_default", account_id=account_id)
                return default_config(account_id)

            competitor_result = await session.execute(
                select(Competitor)
                .where(Competitor.account_id == account_uuid)
                .order_by(Competitor.created_at)
            )
            competitors = list(competitor_result.scalars().all())
            return _row_to_config(account_id, row, competitors)
        return default_config(account_id)

    async def load_rules(self, account_id: str) -> list[Rule]:
        """Targeting rules for the account in ascending priority order."""
        async for session in self._session_factory():
            result = await session.execute(
                select(TargetingRule)
                .where(TargetingRule.account_id == uuid.UUID(account_id))
                .order_by(TargetingRule.priority, TargetingRule.created_at)
            )
            rows = result.scalars().all()
            return [rule for rule in (_row_to_rule(r) for r in rows) if rule is not None]
        return []
