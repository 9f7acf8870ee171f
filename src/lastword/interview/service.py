"""Interview orchestration -- one inbound request, one AI turn.

Flow:
    normalize transcript -> load config + rules -> match rule -> governor
    -> assemble prompt -> provider (streaming, or forced single-shot at
    HARD_STOP) -> relay to caller -> on completion token: extract ->
    finalize -> dispatch (detached)

Both the streaming and the forced path share prompt assembly and the
provider client's fallback policy; they differ only in how the turn is
produced and framed.
"""

from __future__ import annotations

import json
import re
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass

import structlog

from src.lastword.config import Settings, get_settings
from src.lastword.core.errors import ProviderError
from src.lastword.core.monitoring import interview_turns_total
from src.lastword.core.tasks import spawn_detached
from src.lastword.interview.config_resolver import ConfigResolver
from src.lastword.interview.extractor import (
    build_fallback_insight,
    extract_insight,
    parse_insight_block,
)
from src.lastword.interview.governor import (
    HARD_STOP_DIRECTIVE,
    TurnPhase,
    TurnState,
    normalize_messages,
)
from src.lastword.interview.prompts import build_system_prompt
from src.lastword.interview.protocol import (
    COMPLETION_TOKEN,
    INSIGHTS_CLOSE,
    INSIGHTS_OPEN,
    frame_text,
    has_completion_token,
    visible_text,
)
from src.lastword.interview.providers import ProviderClient
from src.lastword.interview.relay import StreamRelay, iter_framed
from src.lastword.interview.rules import match_rules
from src.lastword.interview.schemas import (
    ExitInterviewRequest,
    InsightData,
    Message,
    UserContext,
)
from src.lastword.interview.store import InsightStore
from src.lastword.notifications.dispatcher import NotificationDispatcher
from src.lastword.notifications.payloads import InsightEvent

logger = structlog.get_logger(__name__)

DEFAULT_CLOSING_MESSAGE = (
    "Thanks so much for taking the time to share this with us. "
    "Your feedback goes straight to the team, and we're sorry to see you go."
)

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")


def strip_questions(text: str) -> str:
    """Drop every sentence that asks something; a closing message asks nothing."""
    kept = [s for s in _SENTENCE_SPLIT_RE.split(text.strip()) if s and "?" not in s]
    return " ".join(kept).strip()


def render_closing_turn(closing: str, insight: InsightData) -> str:
    """Canonical final turn: message, one completion token, one insights block."""
    block = json.dumps(insight.model_dump(mode="json"), ensure_ascii=False)
    return f"{closing}\n\n{COMPLETION_TOKEN}\n{INSIGHTS_OPEN}\n{block}\n{INSIGHTS_CLOSE}"


def enforce_closing_contract(text: str, messages: Sequence[Message]) -> tuple[str, InsightData]:
    """Rewrite a forced-call response so it satisfies the closing contract.

    Whatever the model produced, the result holds the completion token
    exactly once, exactly one well-formed block, and no question.
    """
    insight = extract_insight(text, messages)
    closing = strip_questions(visible_text(text).replace(INSIGHTS_CLOSE, ""))
    return render_closing_turn(closing or DEFAULT_CLOSING_MESSAGE, insight), insight


def synthesize_closing_turn(messages: Sequence[Message]) -> tuple[str, InsightData]:
    """Closing turn built without any provider, from the transcript alone."""
    insight = build_fallback_insight(messages)
    return render_closing_turn(DEFAULT_CLOSING_MESSAGE, insight), insight


@dataclass
class TurnResult:
    """What the API layer needs to answer the request."""

    events: AsyncIterator[str]
    phase: TurnPhase
    provider: str
    insight_id: str | None = None


class InterviewService:
    """Runs exit-interview turns for resolved accounts.

    Args:
        resolver: Config and rule lookups.
        providers: Primary/secondary provider client.
        store: Insight persistence.
        dispatcher: Notification fan-out, run after a genuine finalize.
        settings: Token budgets.
    """

    def __init__(
        self,
        resolver: ConfigResolver,
        providers: ProviderClient,
        store: InsightStore,
        dispatcher: NotificationDispatcher,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._resolver = resolver
        self._providers = providers
        self._store = store
        self._dispatcher = dispatcher
        self._max_tokens = settings.LLM_MAX_TOKENS
        self._forced_max_tokens = settings.LLM_FORCED_MAX_TOKENS

    async def run_turn(self, account_id: str, request: ExitInterviewRequest) -> TurnResult:
        """Produce one turn for *account_id*.

        Raises:
            ProviderError: Streaming path only, when no provider could
                serve the turn. Nothing is persisted in that case.
        """
        messages = normalize_messages(request.messages)
        user_context = request.user_context

        config = await self._resolver.load_config(account_id)
        rules = await self._resolver.load_rules(account_id)
        rule_addition = match_rules(rules, user_context)
        state = TurnState.from_transcript(messages, config.min_exchanges, config.max_exchanges)
        system_prompt = build_system_prompt(config, state, user_context, rule_addition)

        interview_turns_total.labels(phase=state.phase.value).inc()
        logger.info(
            "interview.turn_started",
            account_id=account_id,
            turns=state.turns,
            phase=state.phase.value,
            min_exchanges=state.min_exchanges,
            max_exchanges=state.max_exchanges,
            rule_matched=rule_addition is not None,
            default_config=config.is_default,
        )

        if state.is_hard_stop:
            text, insight, provider = await self._forced_close(system_prompt, messages)
            insight_id = await self._ensure_partial(account_id, state, request)
            self._schedule_finalize(account_id, insight_id, insight, messages, text, user_context)
            return TurnResult(
                events=iter_framed(frame_text([text])),
                phase=state.phase,
                provider=provider,
                insight_id=insight_id,
            )

        stream = await self._providers.open_stream(system_prompt, messages, self._max_tokens)
        insight_id = await self._ensure_partial(account_id, state, request)

        async def _on_complete(text: str) -> None:
            await self._complete_streamed_turn(account_id, insight_id, messages, text, user_context)

        relay = StreamRelay(stream.deltas, on_complete=_on_complete, name=f"interview.{state.phase.value}")
        relay.start()
        return TurnResult(
            events=relay.events(),
            phase=state.phase,
            provider=stream.provider,
            insight_id=insight_id,
        )

    async def _forced_close(
        self, system_prompt: str, messages: Sequence[Message]
    ) -> tuple[str, InsightData, str]:
        """Single non-streaming call that must end the interview. Never raises."""
        prompt = f"{system_prompt}\n\n{HARD_STOP_DIRECTIVE}"
        try:
            raw = await self._providers.complete(prompt, messages, self._forced_max_tokens)
        except ProviderError as exc:
            logger.error(
                "interview.forced_close_failed",
                error=str(exc),
                upstream_status=exc.upstream_status,
            )
            text, insight = synthesize_closing_turn(messages)
            return text, insight, "synthetic"

        text, insight = enforce_closing_contract(raw, messages)
        logger.info(
            "interview.forced_close_completed",
            block_parsed=parse_insight_block(raw) is not None,
            category=insight.category.value,
        )
        return text, insight, "forced"

    async def _ensure_partial(
        self, account_id: str, state: TurnState, request: ExitInterviewRequest
    ) -> str | None:
        """Create the early partial row on the greeting or first turn, if not already known."""
        if request.insight_id or not state.should_create_partial:
            return request.insight_id
        try:
            return await self._store.create_partial(account_id, request.user_context)
        except Exception:
            logger.error("interview.partial_create_failed", account_id=account_id, exc_info=True)
            return None

    async def _complete_streamed_turn(
        self,
        account_id: str,
        insight_id: str | None,
        messages: Sequence[Message],
        text: str,
        user_context: UserContext | None,
    ) -> None:
        if not has_completion_token(text):
            return
        insight = extract_insight(text, messages)
        await self._finalize_and_notify(account_id, insight_id, insight, messages, text, user_context)

    def _schedule_finalize(
        self,
        account_id: str,
        insight_id: str | None,
        insight: InsightData,
        messages: Sequence[Message],
        text: str,
        user_context: UserContext | None,
    ) -> None:
        spawn_detached(
            self._finalize_and_notify(account_id, insight_id, insight, messages, text, user_context),
            name="interview.finalize",
        )

    async def _finalize_and_notify(
        self,
        account_id: str,
        insight_id: str | None,
        insight: InsightData,
        messages: Sequence[Message],
        text: str,
        user_context: UserContext | None,
    ) -> None:
        transcript = [*messages, Message(role="assistant", content=visible_text(text))]
        try:
            final_id = await self._store.finalize(
                account_id, insight_id, insight, transcript, user_context
            )
        except Exception:
            logger.error(
                "interview.finalize_failed",
                account_id=account_id,
                insight_id=insight_id,
                exc_info=True,
            )
            return

        await self._dispatcher.dispatch(
            InsightEvent(
                account_id=account_id,
                insight_id=final_id,
                insight=insight,
                user_context=user_context,
            )
        )
