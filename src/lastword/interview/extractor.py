"""Insight extraction from a completed turn.

The model is asked to append ``[INSIGHTS]{json}[/INSIGHTS]`` after the
completion token, but nothing here trusts that it did. Every path returns a
fully populated InsightData:

- block present and parseable -> fields normalized against the closed enums
- block missing, truncated, or not JSON -> fallback built from the literal
  first and last substantive user messages, category ``other`` and
  ``offboard_gracefully`` (a savable path is never invented)
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from typing import Any

import structlog

from src.lastword.interview.governor import is_sentinel
from src.lastword.interview.protocol import INSIGHTS_BLOCK_RE
from src.lastword.interview.schemas import (
    InsightCategory,
    InsightData,
    Message,
    RetentionPathKind,
    Sentiment,
)
from src.lastword.models.insight import SHORT_TEXT_LENGTH

logger = structlog.get_logger(__name__)

FALLBACK_SURFACE_REASON = "No reason provided"

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_NULLISH = {"", "null", "none", "n/a", "na", "unknown"}


def substantive_user_messages(messages: Sequence[Message]) -> list[str]:
    """User message texts in order, excluding the sentinel and blanks."""
    return [
        m.content.strip()
        for m in messages
        if m.role == "user" and not is_sentinel(m) and m.content.strip()
    ]


def build_fallback_insight(messages: Sequence[Message]) -> InsightData:
    user_texts = substantive_user_messages(messages)
    return InsightData(
        surface_reason=user_texts[0] if user_texts else FALLBACK_SURFACE_REASON,
        key_quote=user_texts[-1] if user_texts else "",
        category=InsightCategory.OTHER,
        retention_path=RetentionPathKind.OFFBOARD_GRACEFULLY,
    )


def parse_insight_block(text: str) -> dict[str, Any] | None:
    """Return the JSON object inside the insights block, or None."""
    match = INSIGHTS_BLOCK_RE.search(text)
    if not match:
        return None
    body = _CODE_FENCE_RE.sub("", match.group(1).strip())
    try:
        data = json.loads(body)
    except ValueError:
        # Tolerate prose around the object.
        start, end = body.find("{"), body.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(body[start : end + 1])
        except ValueError:
            return None
    return data if isinstance(data, dict) else None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return "; ".join(str(v).strip() for v in value if str(v).strip())
    return str(value).strip()


def _optional_text(value: Any, limit: int | None = None) -> str | None:
    text = _text(value)
    if text.lower() in _NULLISH:
        return None
    return text[:limit].rstrip() if limit else text


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "y", "1"}
    return False


def _enum(enum_cls, value: Any, default):
    key = _text(value).lower().replace("-", "_").replace(" ", "_")
    try:
        return enum_cls(key)
    except ValueError:
        return default


def normalize_insight(raw: dict[str, Any], messages: Sequence[Message]) -> InsightData:
    """Coerce a loosely-shaped model payload into the contractual insight shape."""
    fallback = build_fallback_insight(messages)
    return InsightData(
        surface_reason=_text(raw.get("surface_reason")) or fallback.surface_reason,
        deep_reasons=raw.get("deep_reasons"),
        sentiment=_enum(Sentiment, raw.get("sentiment"), Sentiment.NEUTRAL),
        salvageable=_bool(raw.get("salvageable")),
        key_quote=_text(raw.get("key_quote")) or fallback.key_quote,
        category=_enum(InsightCategory, raw.get("category"), InsightCategory.OTHER),
        competitor=_optional_text(raw.get("competitor"), SHORT_TEXT_LENGTH),
        feature_gaps=raw.get("feature_gaps"),
        usage_duration=_optional_text(raw.get("usage_duration"), SHORT_TEXT_LENGTH),
        retention_path=_enum(
            RetentionPathKind, raw.get("retention_path"), RetentionPathKind.OFFBOARD_GRACEFULLY
        ),
        retention_accepted=_bool(raw.get("retention_accepted")),
    )


def extract_insight(text: str, messages: Sequence[Message]) -> InsightData:
    """Parse the insights block from *text*, falling back to the transcript."""
    raw = parse_insight_block(text)
    if raw is None:
        logger.warning("insight.block_unparseable", text_chars=len(text))
        return build_fallback_insight(messages)
    return normalize_insight(raw, messages)
