"""Account context propagation via Python contextvars.

Every tenant of the platform is an Account identified by its access key. Once
the key has been resolved, the account id is placed in a TenantContext that
is readable anywhere in the call stack via get_current_account_id(). Logging,
metrics, Sentry tagging, and LLM call metadata all read it from here rather
than threading the id through every signature.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass

# ── Tenant Context ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TenantContext:
    """Immutable account context for the current request."""

    account_id: str


_tenant_context: contextvars.ContextVar[TenantContext] = contextvars.ContextVar("tenant_context")


def get_current_account_id() -> str | None:
    """Best-effort account id lookup for logging and metrics labels."""
    try:
        return _tenant_context.get().account_id
    except LookupError:
        return None


def set_tenant_context(ctx: TenantContext) -> contextvars.Token[TenantContext]:
    """Set the account context for the current request. Returns a token for reset."""
    return _tenant_context.set(ctx)


def reset_tenant_context(token: contextvars.Token[TenantContext]) -> None:
    """Restore the context that was active before set_tenant_context()."""
    _tenant_context.reset(token)
