"""FastAPI dependency injection for account resolution and engine services.

Routes depend on these instead of constructing services, so tests can swap
any of them through ``app.dependency_overrides``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, Request

from src.lastword.config import get_settings
from src.lastword.core.database import get_session
from src.lastword.core.redis import get_redis_pool
from src.lastword.core.tenant import TenantContext, reset_tenant_context, set_tenant_context
from src.lastword.interview.config_resolver import ConfigResolver
from src.lastword.interview.providers import get_provider_client
from src.lastword.interview.service import InterviewService
from src.lastword.interview.store import InsightStore
from src.lastword.notifications.dispatcher import NotificationDispatcher
from src.lastword.notifications.repository import NotificationRepository

API_KEY_HEADER = "x-api-key"


async def get_config_resolver() -> ConfigResolver:
    settings = get_settings()
    return ConfigResolver(
        session_factory=get_session,
        redis=get_redis_pool(),
        cache_ttl=settings.ACCOUNT_CACHE_TTL_SECONDS,
    )


async def get_interview_service(
    resolver: ConfigResolver = Depends(get_config_resolver),
) -> InterviewService:
    return InterviewService(
        resolver=resolver,
        providers=get_provider_client(),
        store=InsightStore(session_factory=get_session),
        dispatcher=NotificationDispatcher(NotificationRepository(session_factory=get_session)),
    )


async def get_account_id(
    request: Request,
    resolver: ConfigResolver = Depends(get_config_resolver),
) -> AsyncGenerator[str, None]:
    """Resolve the ``x-api-key`` header and bind the account to the request.

    The account context is released once the route finishes. Detached tasks
    spawned by the route keep the copy they were created with.

    Raises:
        AuthError: Missing or unknown key (handled as 401 by the app).
    """
    account_id = await resolver.resolve_account(request.headers.get(API_KEY_HEADER))
    token = set_tenant_context(TenantContext(account_id=account_id))
    request.state.account_id = account_id
    try:
        yield account_id
    finally:
        reset_tenant_context(token)
