"""Error taxonomy for the interview engine.

Only AuthError and ProviderError ever reach the caller. Configuration gaps,
extraction failures, and persistence/notification failures are absorbed at
the seam where they occur and logged there.
"""

from __future__ import annotations


class LastwordError(Exception):
    """Base class for errors surfaced by the engine."""

    status_code: int = 500
    public_message: str = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)


class AuthError(LastwordError):
    """Missing or unknown account access key.

    The message reaches the caller, so a missing header and an unknown key
    stay distinguishable.
    """

    status_code = 401
    public_message = "Invalid API key"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message)
        if message:
            self.public_message = message


class ProviderError(LastwordError):
    """An AI provider call did not succeed."""

    status_code = 502
    public_message = "AI gateway error"

    def __init__(self, message: str | None = None, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class ProviderTransientError(ProviderError):
    """Rate limit (429) or payment required (402) from a provider.

    Triggers exactly one fallback attempt. Surfaced with the upstream status
    when the fallback fails too.
    """

    TRANSIENT_STATUSES = (402, 429)

    def __init__(self, message: str | None = None, upstream_status: int | None = 429) -> None:
        super().__init__(message, upstream_status)
        self.status_code = upstream_status if upstream_status in self.TRANSIENT_STATUSES else 429
        if self.status_code == 402:
            self.public_message = "Payment required, please add funds."
        else:
            self.public_message = "Rate limits exceeded, please try again later."


class ProviderFatalError(ProviderError):
    """Any other non-success provider outcome. Surfaced as a gateway error."""
