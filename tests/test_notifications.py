"""Notification tests: payload shapes, signing, delivery, and audit rows.

Outbound HTTP goes through httpx.MockTransport; the repository is either
mocked or backed by FakeSession.
"""

from __future__ import annotations

import json
import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.lastword.config import Settings
from src.lastword.interview.schemas import InsightCategory, InsightData, RetentionPathKind, UserContext
from src.lastword.models.notification import NotificationDelivery
from src.lastword.notifications.dispatcher import NotificationDispatcher, serialize_payload
from src.lastword.notifications.payloads import (
    EVENT_INTERVIEW_COMPLETED,
    InsightEvent,
    build_slack_payload,
    build_webhook_payload,
)
from src.lastword.notifications.repository import EndpointTarget, NotificationRepository
from src.lastword.notifications.signing import sign_body, verify_signature
from tests.helpers import FakeResult, FakeSession, session_factory_for

SIGNATURE_HEADER = "x-lastword-signature"


@pytest.fixture
def event(account_id) -> InsightEvent:
    return InsightEvent(
        account_id=account_id,
        insight_id=str(uuid.uuid4()),
        insight=InsightData(
            surface_reason="Too expensive",
            deep_reasons=["Only uses dashboards"],
            key_quote="We only use the dashboards",
            category=InsightCategory.PRICING,
            competitor="Metabase",
            retention_path=RetentionPathKind.DOWNGRADE,
            retention_accepted=True,
        ),
        user_context=UserContext(email="jane@shop.com", mrr=49),
    )


def _endpoint(provider: str = "webhook", **overrides) -> EndpointTarget:
    values = {
        "id": str(uuid.uuid4()),
        "name": f"{provider} endpoint",
        "provider": provider,
        "target_url": f"https://hooks.example.com/{provider}",
    }
    values.update(overrides)
    return EndpointTarget(**values)


def _repository(*endpoints: EndpointTarget) -> MagicMock:
    repo = MagicMock()
    repo.list_realtime_endpoints = AsyncMock(return_value=list(endpoints))
    repo.record_pending = AsyncMock(side_effect=lambda *args: str(uuid.uuid4()))
    repo.record_outcome = AsyncMock()
    return repo


def _dispatcher(repo, handler) -> NotificationDispatcher:
    settings = Settings(NOTIFICATION_TIMEOUT_SECONDS=2.0, NOTIFICATION_RESPONSE_BODY_LIMIT=10)
    return NotificationDispatcher(repo, settings=settings, transport=httpx.MockTransport(handler))


# ── Payloads ──────────────────────────────────────────────────────────────────


class TestPayloads:
    """Provider-shaped bodies."""

    def test_webhook_payload_is_full_event(self, event):
        payload = build_webhook_payload(event)
        assert payload["event"] == EVENT_INTERVIEW_COMPLETED
        assert payload["insight_id"] == event.insight_id
        assert payload["account_id"] == event.account_id
        assert payload["data"]["category"] == "pricing"
        assert payload["data"]["retention_path"] == "downgrade"
        assert payload["data"]["user_context"] == {"email": "jane@shop.com", "mrr": 49.0}
        json.dumps(payload)

    def test_slack_payload_is_flattened(self, event):
        payload = build_slack_payload(event)
        assert set(payload) == {"text", "blocks"}
        assert "jane@shop.com" in payload["text"]
        rendered = json.dumps(payload["blocks"])
        assert "Pricing" in rendered
        assert "Metabase" in rendered
        assert "(accepted)" in rendered
        assert "We only use the dashboards" in rendered


class TestSigning:
    """HMAC-SHA256 over the exact bytes."""

    def test_sign_and_verify(self):
        body = b'{"event":"interview_completed"}'
        signature = sign_body("s3cret", body)
        assert signature.startswith("sha256=")
        assert len(signature) == len("sha256=") + 64
        assert verify_signature("s3cret", body, signature)
        assert not verify_signature("other", body, signature)
        assert not verify_signature("s3cret", body + b" ", signature)
        assert not verify_signature("s3cret", body, None)


# ── Dispatcher ────────────────────────────────────────────────────────────────


class TestDispatcher:
    """Delivery, headers, outcomes, and audit trail."""

    async def test_signed_slack_endpoint_still_delivered(self, event):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="ok")

        endpoint = _endpoint("slack", signing_secret="s3cret")
        results = await _dispatcher(_repository(endpoint), handler).dispatch(event)

        assert [r.status for r in results] == ["success"]
        request = seen[0]
        assert request.headers[SIGNATURE_HEADER] == sign_body("s3cret", request.content)
        assert set(json.loads(request.content)) == {"text", "blocks"}

    async def test_static_auth_header_without_secret(self, event):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        endpoint = _endpoint(auth_header_name="Authorization", auth_header_value="Bearer abc")
        await _dispatcher(_repository(endpoint), handler).dispatch(event)

        assert seen[0].headers["Authorization"] == "Bearer abc"
        assert SIGNATURE_HEADER not in seen[0].headers
        assert json.loads(seen[0].content)["event"] == EVENT_INTERVIEW_COMPLETED

    async def test_secret_takes_precedence_over_auth_header(self, event):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        endpoint = _endpoint(signing_secret="s3cret", auth_header_name="X-Token", auth_header_value="t")
        await _dispatcher(_repository(endpoint), handler).dispatch(event)

        assert SIGNATURE_HEADER in seen[0].headers
        assert "X-Token" not in seen[0].headers

    async def test_pending_row_written_before_request(self, event):
        repo = _repository(_endpoint())

        def handler(request: httpx.Request) -> httpx.Response:
            assert repo.record_pending.await_count == 1
            assert repo.record_outcome.await_count == 0
            return httpx.Response(200)

        await _dispatcher(repo, handler).dispatch(event)
        repo.record_outcome.assert_awaited_once()

    async def test_http_failure_recorded_with_truncated_body(self, event):
        repo = _repository(_endpoint())

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="internal server error")

        results = await _dispatcher(repo, handler).dispatch(event)

        assert results[0].status == "failed"
        assert results[0].http_status == 500
        _, status, http_status, _, error, body = repo.record_outcome.await_args.args
        assert (status, http_status, error) == ("failed", 500, "HTTP 500")
        assert body == "internal s"

    async def test_network_errors_never_raise(self, event):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("timeout"):
                raise httpx.ReadTimeout("slow", request=request)
            raise httpx.ConnectError("refused", request=request)

        repo = _repository(
            _endpoint(target_url="https://hooks.example.com/timeout"),
            _endpoint(target_url="https://hooks.example.com/refused"),
        )
        results = await _dispatcher(repo, handler).dispatch(event)

        assert [r.status for r in results] == ["failed", "failed"]
        assert results[0].error.startswith("Timed out")
        assert "refused" in results[1].error
        assert repo.record_pending.await_count == 2
        assert repo.record_outcome.await_count == 2

    async def test_one_row_per_endpoint(self, event):
        repo = _repository(_endpoint(), _endpoint("slack"), _endpoint())

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200)

        results = await _dispatcher(repo, handler).dispatch(event)
        assert len(results) == 3
        assert repo.record_pending.await_count == 3

    async def test_no_endpoints_no_requests(self, event):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        assert await _dispatcher(_repository(), handler).dispatch(event) == []

    async def test_endpoint_lookup_failure_absorbed(self, event):
        repo = _repository()
        repo.list_realtime_endpoints.side_effect = RuntimeError("db down")

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        assert await _dispatcher(repo, handler).dispatch(event) == []

    async def test_audit_failure_does_not_block_delivery(self, event):
        repo = _repository(_endpoint())
        repo.record_pending.side_effect = RuntimeError("db down")
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        results = await _dispatcher(repo, handler).dispatch(event)
        assert results[0].status == "success"
        assert len(seen) == 1
        repo.record_outcome.assert_not_called()

    def test_serialized_body_is_compact(self):
        assert serialize_payload({"a": 1, "b": [1, 2]}) == b'{"a":1,"b":[1,2]}'


# ── Repository ────────────────────────────────────────────────────────────────


class TestNotificationRepository:
    """Endpoint snapshots and delivery rows."""

    async def test_list_endpoints_snapshots_rows(self, account_id):
        row = SimpleNamespace(
            id=uuid.uuid4(),
            name="Ops webhook",
            provider="webhook",
            target_url="https://hooks.example.com/x",
            signing_secret=None,
            auth_header_name=None,
            auth_header_value=None,
        )
        session = FakeSession([FakeResult(rows=[row])])
        endpoints = await NotificationRepository(session_factory_for(session)).list_realtime_endpoints(
            account_id, EVENT_INTERVIEW_COMPLETED
        )
        assert endpoints == [
            EndpointTarget(
                id=str(row.id),
                name="Ops webhook",
                provider="webhook",
                target_url="https://hooks.example.com/x",
            )
        ]
        compiled = str(session.executed[0])
        assert "delivery_mode" in compiled
        assert "enabled" in compiled

    async def test_record_pending_writes_skipped_row(self, account_id):
        session = FakeSession()
        repo = NotificationRepository(session_factory_for(session))
        endpoint_id, insight_id = str(uuid.uuid4()), str(uuid.uuid4())

        delivery_id = await repo.record_pending(
            account_id, endpoint_id, insight_id, EVENT_INTERVIEW_COMPLETED, {"k": "v"}
        )

        row = session.added[0]
        assert isinstance(row, NotificationDelivery)
        assert str(row.id) == delivery_id
        assert row.status == "skipped"
        assert row.payload == {"k": "v"}
        assert session.commits == 1

    async def test_record_outcome_updates_row(self):
        session = FakeSession()
        repo = NotificationRepository(session_factory_for(session))
        await repo.record_outcome(str(uuid.uuid4()), "success", 200, 42, None, "ok")
        assert len(session.executed) == 1
        assert session.commits == 1
