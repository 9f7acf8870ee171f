"""Endpoint lookup and delivery audit persistence for the dispatcher."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.lastword.models.notification import NotificationDelivery, NotificationEndpoint

logger = structlog.get_logger(__name__)

DELIVERY_MODE_REALTIME = "realtime"

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


@dataclass(frozen=True)
class EndpointTarget:
    """Detached snapshot of an endpoint row, safe to use after the session closes."""

    id: str
    name: str
    provider: str
    target_url: str
    signing_secret: str = ""
    auth_header_name: str | None = None
    auth_header_value: str | None = None

    @classmethod
    def from_row(cls, row: NotificationEndpoint) -> EndpointTarget:
        return cls(
            id=str(row.id),
            name=row.name or "",
            provider=row.provider,
            target_url=row.target_url,
            signing_secret=row.signing_secret or "",
            auth_header_name=row.auth_header_name,
            auth_header_value=row.auth_header_value,
        )


class NotificationRepository:
    """Async data access for notification endpoints and deliveries.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
    ) -> None:
        self._session_factory = session_factory

    async def list_realtime_endpoints(self, account_id: str, event_type: str) -> list[EndpointTarget]:
        """Enabled, realtime endpoints subscribed to *event_type*."""
        async for session in self._session_factory():
            result = await session.execute(
                select(NotificationEndpoint)
                .where(
                    NotificationEndpoint.account_id == uuid.UUID(account_id),
                    NotificationEndpoint.enabled.is_(True),
                    NotificationEndpoint.delivery_mode == DELIVERY_MODE_REALTIME,
                    NotificationEndpoint.event_type == event_type,
                )
                .order_by(NotificationEndpoint.created_at)
            )
            return [EndpointTarget.from_row(row) for row in result.scalars().all()]
        return []

    async def record_pending(
        self,
        account_id: str,
        endpoint_id: str,
        insight_id: str | None,
        event_type: str,
        payload: dict[str, Any],
    ) -> str:
        """Write the ``skipped`` placeholder row before the network call."""
        delivery_id = uuid.uuid4()
        async for session in self._session_factory():
            session.add(
                NotificationDelivery(
                    id=delivery_id,
                    account_id=uuid.UUID(account_id),
                    endpoint_id=uuid.UUID(endpoint_id),
                    insight_id=uuid.UUID(insight_id) if insight_id else None,
                    event_type=event_type,
                    status=STATUS_SKIPPED,
                    payload=payload,
                )
            )
            await session.commit()
        return str(delivery_id)

    async def record_outcome(
        self,
        delivery_id: str,
        status: str,
        http_status: int | None,
        duration_ms: int,
        error_message: str | None,
        response_body: str | None,
    ) -> None:
        async for session in self._session_factory():
            await session.execute(
                update(NotificationDelivery)
                .where(NotificationDelivery.id == uuid.UUID(delivery_id))
                .values(
                    status=status,
                    http_status=http_status,
                    duration_ms=duration_ms,
                    error_message=error_message,
                    response_body=response_body,
                )
            )
            await session.commit()
