"""AI provider abstraction via LiteLLM Router.

Two interchangeable providers behind one interface:
- PrimaryProvider: streaming (Claude by default), yields text deltas as they arrive
- SecondaryProvider: single-shot (Gemini by default), its full text is wrapped
  as a one-delta stream so callers cannot tell which provider answered

ProviderClient owns the fallback policy: a transient primary failure
(429 rate limit / 402 payment required) triggers exactly one secondary
attempt. Any other failure is fatal. The Router is configured with zero
retries so the policy stays explicit here.

User messages are sanitized for prompt injection before any call.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass

import structlog
from litellm import Router

from src.lastword.config import Settings, get_settings
from src.lastword.core.errors import (
    ProviderError,
    ProviderFatalError,
    ProviderTransientError,
)
from src.lastword.core.monitoring import provider_fallbacks_total, track_llm_call
from src.lastword.core.tenant import get_current_account_id
from src.lastword.interview.schemas import Message

logger = structlog.get_logger(__name__)

PRIMARY_GROUP = "primary"
SECONDARY_GROUP = "secondary"

# ── Prompt Injection Detection ────────────────────────────────────────────────

# Patterns that indicate prompt injection attempts
_INJECTION_PATTERNS: list[tuple[str, re.Pattern]] = [
    (
        "instruction_override",
        re.compile(
            r"ignore\s+(all\s+)?previous\s+instructions|"
            r"disregard\s+(all\s+)?(your\s+)?instructions|"
            r"forget\s+(all\s+)?(your\s+)?instructions|"
            r"override\s+(all\s+)?(your\s+)?instructions",
            re.IGNORECASE,
        ),
    ),
    (
        "system_prompt_exfiltration",
        re.compile(
            r"(reveal|show|display|output|print|repeat)\s+(your\s+)?(system\s+prompt|instructions|prompt)|"
            r"repeat\s+everything\s+above|"
            r"what\s+are\s+your\s+instructions",
            re.IGNORECASE,
        ),
    ),
    (
        "marker_forgery",
        re.compile(r"\[/?INSIGHTS\]|\[INTERVIEW_COMPLETE\]", re.IGNORECASE),
    ),
    (
        "control_characters",
        re.compile(
            r"[\x00-\x08\x0b\x0c\x0e-\x1f]{3,}",  # 3+ control chars in sequence
        ),
    ),
]


def detect_prompt_injection(text: str) -> tuple[bool, str | None]:
    """Check text for common prompt injection patterns.

    Returns:
        Tuple of (is_injection, pattern_name) where pattern_name identifies
        which pattern matched, or None if no injection detected.
    """
    for pattern_name, pattern in _INJECTION_PATTERNS:
        if pattern.search(text):
            logger.warning(
                "prompt_injection_detected",
                pattern=pattern_name,
                text_preview=text[:100],
            )
            return True, pattern_name
    return False, None


def sanitize_messages(messages: Sequence[Message]) -> list[dict]:
    """Convert transcript messages to provider dicts, scrubbing user input.

    Assistant messages are our own prior output and pass through untouched.
    """
    sanitized: list[dict] = []
    for msg in messages:
        content = msg.content
        if msg.role == "user" and content:
            is_injection, pattern_name = detect_prompt_injection(content)
            if is_injection:
                cleaned = content
                for _, pattern in _INJECTION_PATTERNS:
                    cleaned = pattern.sub("[removed]", cleaned)
                logger.warning(
                    "prompt_injection_sanitized",
                    pattern=pattern_name,
                    original_length=len(content),
                    cleaned_length=len(cleaned),
                )
                content = cleaned
        sanitized.append({"role": msg.role, "content": content})
    return sanitized


def classify_provider_error(exc: Exception) -> ProviderError:
    """Map a LiteLLM/HTTP exception onto the engine's provider error taxonomy."""
    if isinstance(exc, ProviderError):
        return exc
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    if status in ProviderTransientError.TRANSIENT_STATUSES:
        return ProviderTransientError(str(exc), upstream_status=status)
    return ProviderFatalError(str(exc), upstream_status=status)


# ── Providers ─────────────────────────────────────────────────────────────────


class ChatProvider(ABC):
    """One AI backend. Every variant produces an ordered stream of text deltas."""

    name: str = "provider"

    def __init__(self, router: Router | None, model_group: str, model: str) -> None:
        self._router = router
        self._model_group = model_group
        self.model = model

    def _require_router(self) -> Router:
        if self._router is None:
            raise ProviderFatalError(f"No API key configured for {self.name} provider")
        return self._router

    def _request(self, system_prompt: str, messages: Sequence[Message]) -> list[dict]:
        return [{"role": "system", "content": system_prompt}, *sanitize_messages(messages)]

    @abstractmethod
    async def open_stream(
        self, system_prompt: str, messages: Sequence[Message], max_tokens: int
    ) -> AsyncIterator[str]:
        """Start a turn. Raises ProviderError before yielding if the call is rejected."""

    async def complete(
        self, system_prompt: str, messages: Sequence[Message], max_tokens: int
    ) -> str:
        """Single-shot completion returning the full text."""
        router = self._require_router()
        account_id = get_current_account_id() or "unknown"
        try:
            async with track_llm_call(self.model, account_id) as tracker:
                response = await router.acompletion(
                    model=self._model_group,
                    messages=self._request(system_prompt, messages),
                    max_tokens=max_tokens,
                    metadata={"account_id": account_id, "provider": self.name},
                )
                usage = getattr(response, "usage", None)
                if usage:
                    tracker["prompt_tokens"] = usage.prompt_tokens or 0
                    tracker["completion_tokens"] = usage.completion_tokens or 0
        except Exception as exc:
            raise classify_provider_error(exc) from exc

        text = response.choices[0].message.content or ""
        if not text.strip():
            raise ProviderFatalError(f"{self.name} provider returned an empty response")
        return text


class PrimaryProvider(ChatProvider):
    """Streaming provider: deltas are yielded as the upstream sends them."""

    name = "primary"

    async def open_stream(
        self, system_prompt: str, messages: Sequence[Message], max_tokens: int
    ) -> AsyncIterator[str]:
        router = self._require_router()
        account_id = get_current_account_id() or "unknown"
        try:
            async with track_llm_call(self.model, account_id):
                response = await router.acompletion(
                    model=self._model_group,
                    messages=self._request(system_prompt, messages),
                    max_tokens=max_tokens,
                    metadata={"account_id": account_id, "provider": self.name},
                    stream=True,
                )
        except Exception as exc:
            raise classify_provider_error(exc) from exc

        async def _deltas() -> AsyncIterator[str]:
            async for chunk in response:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content

        return _deltas()


class SecondaryProvider(ChatProvider):
    """Non-streaming provider whose full response is framed as a single delta."""

    name = "secondary"

    async def open_stream(
        self, system_prompt: str, messages: Sequence[Message], max_tokens: int
    ) -> AsyncIterator[str]:
        text = await self.complete(system_prompt, messages, max_tokens)

        async def _single() -> AsyncIterator[str]:
            yield text

        return _single()


# ── Client ────────────────────────────────────────────────────────────────────


@dataclass
class ProviderStream:
    """An opened turn: the delta iterator plus which provider served it."""

    deltas: AsyncIterator[str]
    provider: str


class ProviderClient:
    """Fallback policy over a primary and a secondary provider."""

    def __init__(self, primary: ChatProvider, secondary: ChatProvider) -> None:
        self.primary = primary
        self.secondary = secondary

    async def open_stream(
        self, system_prompt: str, messages: Sequence[Message], max_tokens: int
    ) -> ProviderStream:
        """Open a streaming turn, falling back once on a transient primary failure.

        Raises:
            ProviderTransientError: Primary was rate limited / unpaid and the
                secondary failed too (carries the primary's status).
            ProviderFatalError: Primary failed for any other reason.
        """
        try:
            deltas = await self.primary.open_stream(system_prompt, messages, max_tokens)
            return ProviderStream(deltas=deltas, provider=self.primary.name)
        except ProviderTransientError as exc:
            self._log_fallback(exc)
            try:
                deltas = await self.secondary.open_stream(system_prompt, messages, max_tokens)
            except ProviderError as secondary_exc:
                logger.error(
                    "provider.fallback_failed",
                    primary_status=exc.upstream_status,
                    secondary_error=str(secondary_exc),
                )
                raise exc from secondary_exc
            return ProviderStream(deltas=deltas, provider=self.secondary.name)

    async def complete(
        self, system_prompt: str, messages: Sequence[Message], max_tokens: int
    ) -> str:
        """Single-shot completion with the same one-fallback policy."""
        try:
            return await self.primary.complete(system_prompt, messages, max_tokens)
        except ProviderTransientError as exc:
            self._log_fallback(exc)
            try:
                return await self.secondary.complete(system_prompt, messages, max_tokens)
            except ProviderError as secondary_exc:
                logger.error(
                    "provider.fallback_failed",
                    primary_status=exc.upstream_status,
                    secondary_error=str(secondary_exc),
                )
                raise exc from secondary_exc

    @staticmethod
    def _log_fallback(exc: ProviderTransientError) -> None:
        reason = "payment_required" if exc.upstream_status == 402 else "rate_limited"
        provider_fallbacks_total.labels(reason=reason).inc()
        logger.warning("provider.fallback_engaged", reason=reason, primary_status=exc.upstream_status)


def _build_router(model: str, group: str, api_key: str, settings: Settings) -> Router | None:
    if not api_key:
        logger.warning("provider.no_api_key", group=group, model=model)
        return None
    return Router(
        model_list=[
            {
                "model_name": group,
                "litellm_params": {"model": model, "api_key": api_key},
            }
        ],
        num_retries=0,
        timeout=settings.LLM_TIMEOUT,
    )


def build_provider_client(settings: Settings | None = None) -> ProviderClient:
    """Wire the default Claude-primary / Gemini-secondary client from settings."""
    settings = settings or get_settings()
    primary = PrimaryProvider(
        _build_router(settings.PRIMARY_MODEL, PRIMARY_GROUP, settings.ANTHROPIC_API_KEY, settings),
        PRIMARY_GROUP,
        settings.PRIMARY_MODEL,
    )
    secondary = SecondaryProvider(
        _build_router(settings.SECONDARY_MODEL, SECONDARY_GROUP, settings.GEMINI_API_KEY, settings),
        SECONDARY_GROUP,
        settings.SECONDARY_MODEL,
    )
    return ProviderClient(primary, secondary)


# ── Singleton ─────────────────────────────────────────────────────────────────

_provider_client: ProviderClient | None = None


def get_provider_client() -> ProviderClient:
    """Get or create the provider client singleton."""
    global _provider_client
    if _provider_client is None:
        _provider_client = build_provider_client()
    return _provider_client
