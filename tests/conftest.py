"""Shared fixtures for the interview engine tests.

Provides:
- Account ids and a representative resolved AccountConfig
- A fixture that drains detached background tasks after each test

Test doubles (FakeSession, transcript builders) live in tests/helpers.py.
No live database, Redis, or AI provider is needed by any test.
"""

from __future__ import annotations

import uuid

import pytest

from src.lastword.core.tasks import drain_background_tasks
from src.lastword.interview.schemas import AccountConfig, RetentionPaths, RetentionPathSetting


@pytest.fixture
def account_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def account_config(account_id) -> AccountConfig:
    return AccountConfig(
        account_id=account_id,
        product_name="Acme Analytics",
        product_description="Dashboards for small e-commerce teams.",
        competitors=["Metabase"],
        retention_paths=RetentionPaths(
            pause=RetentionPathSetting(enabled=True, offer="Pause for up to 3 months"),
        ),
        min_exchanges=3,
        max_exchanges=5,
    )


@pytest.fixture
async def settle_background_tasks():
    """Drain detached tasks spawned during a test before it finishes."""
    yield drain_background_tasks
    await drain_background_tasks(timeout=5.0)
