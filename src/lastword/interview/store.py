"""Insight persistence: early partial rows, finalized in place.

No transaction spans create and finalize. A customer who abandons after the
greeting leaves a durable ``partial`` row holding their user context.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable, Sequence
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.lastword.core.monitoring import insights_persisted_total
from src.lastword.interview.schemas import InsightData, Message, UserContext
from src.lastword.models.insight import InsightModel

logger = structlog.get_logger(__name__)

STATUS_PARTIAL = "partial"
STATUS_COMPLETE = "complete"

# Connection drops only; constraint and data errors are not retried.
_persist_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type(OperationalError),
    reraise=True,
)


def _parse_uuid(value: str | None) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _context_snapshot(user_context: UserContext | None) -> dict | None:
    if user_context is None:
        return None
    present = user_context.present()
    return present or None


def _apply_insight(
    row: InsightModel,
    insight: InsightData,
    transcript: Sequence[Message],
    user_context: UserContext | None,
) -> None:
    row.status = STATUS_COMPLETE
    row.surface_reason = insight.surface_reason
    row.deep_reasons = list(insight.deep_reasons)
    row.sentiment = insight.sentiment.value
    row.salvageable = insight.salvageable
    row.key_quote = insight.key_quote
    row.category = insight.category.value
    row.competitor = insight.competitor
    row.feature_gaps = list(insight.feature_gaps)
    row.usage_duration = insight.usage_duration
    row.retention_path = insight.retention_path.value
    row.retention_accepted = insight.retention_accepted
    row.raw_transcript = [m.model_dump() for m in transcript]
    snapshot = _context_snapshot(user_context)
    if snapshot is not None:
        row.user_context = snapshot
    row.completed_at = datetime.now(timezone.utc)


class InsightStore:
    """Create and finalize insight rows.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
    ) -> None:
        self._session_factory = session_factory

    @_persist_retry
    async def create_partial(self, account_id: str, user_context: UserContext | None) -> str:
        """Insert a placeholder row and return its id."""
        insight_id = uuid.uuid4()
        async for session in self._session_factory():
            session.add(
                InsightModel(
                    id=insight_id,
                    account_id=uuid.UUID(account_id),
                    status=STATUS_PARTIAL,
                    user_context=_context_snapshot(user_context),
                )
            )
            await session.commit()

        insights_persisted_total.labels(kind="partial").inc()
        logger.info("insight.partial_created", account_id=account_id, insight_id=str(insight_id))
        return str(insight_id)

    @_persist_retry
    async def finalize(
        self,
        account_id: str,
        insight_id: str | None,
        insight: InsightData,
        transcript: Sequence[Message],
        user_context: UserContext | None = None,
    ) -> str:
        """Complete the row for *insight_id* in place, or insert a fresh one.

        An unknown or malformed id is treated as absent: a new row is
        inserted rather than failing the turn.
        """
        account_uuid = uuid.UUID(account_id)
        known_id = _parse_uuid(insight_id)
        if insight_id and known_id is None:
            logger.warning("insight.invalid_id", account_id=account_id, insight_id=insight_id)

        async for session in self._session_factory():
            row = None
            if known_id is not None:
                result = await session.execute(
                    select(InsightModel).where(
                        InsightModel.id == known_id,
                        InsightModel.account_id == account_uuid,
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    logger.warning(
                        "insight.finalize_unknown_id",
                        account_id=account_id,
                        insight_id=insight_id,
                    )

            updated = row is not None
            if row is None:
                row = InsightModel(id=uuid.uuid4(), account_id=account_uuid)
                session.add(row)

            _apply_insight(row, insight, transcript, user_context)
            await session.commit()
            final_id = str(row.id)

        insights_persisted_total.labels(kind="final").inc()
        logger.info(
            "insight.finalized",
            account_id=account_id,
            insight_id=final_id,
            updated_in_place=updated,
            category=insight.category.value,
            retention_path=insight.retention_path.value,
        )
        return final_id
