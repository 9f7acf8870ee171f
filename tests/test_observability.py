"""Unit tests for observability and request-scoped plumbing.

Tests cover:
- track_llm_call metric recording on success and failure
- init_sentry before_send account tagging
- Account context propagation via contextvars
- Detached background tasks surviving caller cancellation
- /metrics exposition
"""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY

from src.lastword.core.monitoring import init_sentry, track_llm_call
from src.lastword.core.tasks import drain_background_tasks, pending_tasks, spawn_detached
from src.lastword.core.tenant import (
    TenantContext,
    get_current_account_id,
    reset_tenant_context,
    set_tenant_context,
)
from src.lastword.main import create_app


def _llm_requests(model: str, account_id: str, status: str) -> float:
    labels = {"model": model, "account_id": account_id, "status": status}
    return REGISTRY.get_sample_value("llm_requests_total", labels) or 0.0


# ── track_llm_call ───────────────────────────────────────────────────────────


class TestTrackLLMCall:
    """LLM metric context manager."""

    async def test_success_records_tokens(self):
        before = _llm_requests("test/model", "acct-1", "success")
        async with track_llm_call("test/model", "acct-1") as tracker:
            tracker["prompt_tokens"] = 10
            tracker["completion_tokens"] = 4
        assert _llm_requests("test/model", "acct-1", "success") == before + 1
        tokens = REGISTRY.get_sample_value(
            "llm_tokens_used_total",
            {"model": "test/model", "account_id": "acct-1", "token_type": "completion"},
        )
        assert tokens >= 4

    async def test_failure_records_error_and_reraises(self):
        before = _llm_requests("test/model", "acct-2", "error")
        with pytest.raises(ValueError):
            async with track_llm_call("test/model", "acct-2"):
                raise ValueError("boom")
        assert _llm_requests("test/model", "acct-2", "error") == before + 1


# ── Sentry ───────────────────────────────────────────────────────────────────


class TestInitSentry:
    """Sentry init wiring."""

    def test_before_send_tags_account(self):
        with patch("sentry_sdk.init") as mock_init:
            init_sentry(dsn="https://key@sentry.example.com/1", environment="production")

        kwargs = mock_init.call_args.kwargs
        assert kwargs["traces_sample_rate"] == 0.1
        before_send = kwargs["before_send"]

        token = set_tenant_context(TenantContext(account_id="acct-9"))
        try:
            event = before_send({}, {})
        finally:
            reset_tenant_context(token)
        assert event["tags"]["account_id"] == "acct-9"
        assert "tags" not in before_send({}, {})


# ── Account Context ──────────────────────────────────────────────────────────


class TestTenantContext:
    """contextvars propagation."""

    def test_unset_context(self):
        assert get_current_account_id() is None

    def test_reset_restores_previous_context(self):
        outer = set_tenant_context(TenantContext(account_id="acct-outer"))
        inner = set_tenant_context(TenantContext(account_id="acct-inner"))
        assert get_current_account_id() == "acct-inner"
        reset_tenant_context(inner)
        assert get_current_account_id() == "acct-outer"
        reset_tenant_context(outer)
        assert get_current_account_id() is None

    async def test_context_copied_into_spawned_tasks(self):
        seen: list[str | None] = []

        async def read_context():
            seen.append(get_current_account_id())

        token = set_tenant_context(TenantContext(account_id="acct-3"))
        try:
            task = spawn_detached(read_context(), name="test.read_context")
        finally:
            reset_tenant_context(token)
        await task
        assert seen == ["acct-3"]
        assert get_current_account_id() is None


# ── Background Tasks ─────────────────────────────────────────────────────────


class TestDetachedTasks:
    """Detached work outlives its spawner and never raises into it."""

    async def test_cancelling_spawner_does_not_cancel_task(self):
        finished = asyncio.Event()

        async def work():
            await asyncio.sleep(0.01)
            finished.set()

        async def spawner():
            spawn_detached(work(), name="test.work")
            await asyncio.sleep(10)

        outer = asyncio.create_task(spawner())
        await asyncio.sleep(0)
        outer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await outer
        await drain_background_tasks(timeout=1.0)
        assert finished.is_set()

    async def test_failures_are_contained(self):
        async def fail():
            raise RuntimeError("boom")

        task = spawn_detached(fail(), name="test.fail")
        await drain_background_tasks(timeout=1.0)
        assert task.done()
        assert task not in pending_tasks()


# ── /metrics ─────────────────────────────────────────────────────────────────


async def test_metrics_endpoint_exposes_engine_counters():
    """Prometheus exposition includes the interview counters."""
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/metrics")
    assert response.status_code == 200
    assert "interview_turns_total" in response.text
    assert "provider_fallbacks_total" in response.text
