"""Notification dispatcher -- fans a finalized insight out to realtime endpoints.

For every enabled realtime endpoint of the account:
1. build the provider-shaped payload
2. write a ``skipped`` delivery row (audit survives a crash mid-call)
3. POST the exact serialized bytes under a hard deadline, signed with
   HMAC-SHA256 when the endpoint has a secret, else with its static auth header
4. update the delivery row with outcome, status code, duration, and a
   truncated response body or error

Deliveries are attempted once. ``dispatch`` never raises.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass

import httpx
import structlog

from src.lastword.config import Settings, get_settings
from src.lastword.core.monitoring import notification_deliveries_total
from src.lastword.notifications.payloads import InsightEvent, build_payload
from src.lastword.notifications.repository import (
    STATUS_FAILED,
    STATUS_SUCCESS,
    EndpointTarget,
    NotificationRepository,
)
from src.lastword.notifications.signing import sign_body

logger = structlog.get_logger(__name__)

USER_AGENT = "Lastword-Webhooks/1.0"


@dataclass
class DeliveryResult:
    """Outcome of one endpoint attempt."""

    endpoint_id: str
    provider: str
    status: str
    http_status: int | None = None
    duration_ms: int = 0
    error: str | None = None
    delivery_id: str | None = None


def serialize_payload(payload: dict) -> bytes:
    """Compact JSON bytes; these exact bytes are signed and sent."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def build_headers(endpoint: EndpointTarget, body: bytes, signature_header: str) -> dict[str, str]:
    headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
    if endpoint.signing_secret:
        headers[signature_header] = sign_body(endpoint.signing_secret, body)
    elif endpoint.auth_header_name and endpoint.auth_header_value:
        headers[endpoint.auth_header_name] = endpoint.auth_header_value
    return headers


class NotificationDispatcher:
    """Deliver insight events to every matching endpoint.

    Args:
        repository: Endpoint and delivery persistence.
        settings: Timeout, body-limit, and signature-header configuration.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        repository: NotificationRepository,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._repository = repository
        self._timeout = settings.NOTIFICATION_TIMEOUT_SECONDS
        self._body_limit = settings.NOTIFICATION_RESPONSE_BODY_LIMIT
        self._signature_header = settings.NOTIFICATION_SIGNATURE_HEADER
        self._transport = transport

    async def dispatch(self, event: InsightEvent) -> list[DeliveryResult]:
        """Send *event* to all enabled realtime endpoints of its account."""
        try:
            endpoints = await self._repository.list_realtime_endpoints(event.account_id, event.event)
        except Exception:
            logger.error(
                "notification.endpoint_lookup_failed",
                account_id=event.account_id,
                insight_id=event.insight_id,
                exc_info=True,
            )
            return []

        if not endpoints:
            logger.debug("notification.no_endpoints", account_id=event.account_id)
            return []

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            results = await asyncio.gather(
                *(self._deliver(client, endpoint, event) for endpoint in endpoints)
            )

        logger.info(
            "notification.dispatched",
            account_id=event.account_id,
            insight_id=event.insight_id,
            endpoints=len(results),
            succeeded=sum(1 for r in results if r.status == STATUS_SUCCESS),
        )
        return list(results)

    async def _deliver(
        self, client: httpx.AsyncClient, endpoint: EndpointTarget, event: InsightEvent
    ) -> DeliveryResult:
        payload = build_payload(endpoint.provider, event)
        body = serialize_payload(payload)
        result = DeliveryResult(endpoint_id=endpoint.id, provider=endpoint.provider, status=STATUS_FAILED)

        try:
            result.delivery_id = await self._repository.record_pending(
                event.account_id, endpoint.id, event.insight_id, event.event, payload
            )
        except Exception:
            logger.error("notification.audit_write_failed", endpoint_id=endpoint.id, exc_info=True)

        response_body: str | None = None
        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                client.post(
                    endpoint.target_url,
                    content=body,
                    headers=build_headers(endpoint, body, self._signature_header),
                ),
                timeout=self._timeout,
            )
            result.http_status = response.status_code
            response_body = response.text[: self._body_limit]
            if response.is_success:
                result.status = STATUS_SUCCESS
            else:
                result.error = f"HTTP {response.status_code}"
        except (asyncio.TimeoutError, httpx.TimeoutException):
            result.error = f"Timed out after {self._timeout}s"
        except httpx.HTTPError as exc:
            result.error = (str(exc) or type(exc).__name__)[: self._body_limit]
        except Exception as exc:
            logger.error("notification.delivery_crashed", endpoint_id=endpoint.id, exc_info=True)
            result.error = (str(exc) or type(exc).__name__)[: self._body_limit]
        result.duration_ms = int((time.perf_counter() - start) * 1000)

        notification_deliveries_total.labels(provider=endpoint.provider, status=result.status).inc()
        if result.status == STATUS_SUCCESS:
            logger.info(
                "notification.delivered",
                endpoint_id=endpoint.id,
                provider=endpoint.provider,
                http_status=result.http_status,
                duration_ms=result.duration_ms,
            )
        else:
            logger.warning(
                "notification.delivery_failed",
                endpoint_id=endpoint.id,
                provider=endpoint.provider,
                http_status=result.http_status,
                error=result.error,
                duration_ms=result.duration_ms,
            )

        if result.delivery_id is not None:
            try:
                await self._repository.record_outcome(
                    result.delivery_id,
                    result.status,
                    result.http_status,
                    result.duration_ms,
                    result.error,
                    response_body if response_body is not None else result.error,
                )
            except Exception:
                logger.error(
                    "notification.audit_update_failed",
                    delivery_id=result.delivery_id,
                    exc_info=True,
                )
        return result
