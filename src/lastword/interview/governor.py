"""Turn governor -- decides from transcript length how a turn must behave.

State is never persisted: every request recomputes it from the inbound
message list.

Phases:
    PROBE      turns < min_exchanges      completion token forbidden, must ask
    FLEXIBLE   min <= turns < max         one more question, or wrap up
    HARD_STOP  turns >= max_exchanges     server forces a single closing call

A turn is a user message whose trimmed, lower-cased content is not the
``start`` sentinel the widget sends to fetch the opening greeting.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from src.lastword.interview.protocol import (
    COMPLETION_TOKEN,
    INSIGHTS_CLOSE,
    INSIGHTS_OPEN,
    START_SENTINEL,
)
from src.lastword.interview.schemas import Message


class TurnPhase(str, Enum):
    PROBE = "probe"
    FLEXIBLE = "flexible"
    HARD_STOP = "hard_stop"


def is_sentinel(message: Message) -> bool:
    return message.role == "user" and message.content.strip().lower() == START_SENTINEL


def normalize_messages(messages: Sequence[Message]) -> list[Message]:
    """Substitute the greeting sentinel for an empty transcript."""
    if not messages:
        return [Message(role="user", content=START_SENTINEL)]
    return list(messages)


def count_turns(messages: Sequence[Message]) -> int:
    """Number of real user turns (sentinel excluded)."""
    return sum(1 for m in messages if m.role == "user" and not is_sentinel(m))


def resolve_phase(turns: int, min_exchanges: int, max_exchanges: int) -> TurnPhase:
    if turns >= max_exchanges:
        return TurnPhase.HARD_STOP
    if turns >= min_exchanges:
        return TurnPhase.FLEXIBLE
    return TurnPhase.PROBE


@dataclass(frozen=True)
class TurnState:
    """Request-scoped snapshot of where the conversation stands."""

    turns: int
    min_exchanges: int
    max_exchanges: int
    phase: TurnPhase

    @classmethod
    def from_transcript(
        cls, messages: Sequence[Message], min_exchanges: int, max_exchanges: int
    ) -> TurnState:
        turns = count_turns(messages)
        return cls(
            turns=turns,
            min_exchanges=min_exchanges,
            max_exchanges=max_exchanges,
            phase=resolve_phase(turns, min_exchanges, max_exchanges),
        )

    @property
    def is_greeting(self) -> bool:
        return self.turns == 0

    @property
    def is_hard_stop(self) -> bool:
        return self.phase is TurnPhase.HARD_STOP

    @property
    def should_create_partial(self) -> bool:
        """Greeting or first real turn: capture context before the user can abandon."""
        return self.turns in (0, 1)


def phase_instructions(state: TurnState) -> str:
    """Phase-specific block of the system prompt."""
    header = (
        f"## Conversation Stage\n"
        f"The customer has answered {state.turns} question(s). "
        f"This interview must last at least {state.min_exchanges} and at most "
        f"{state.max_exchanges} exchanges."
    )

    if state.phase is TurnPhase.PROBE:
        if state.is_greeting:
            body = (
                "This is the opening message. Greet them casually and ask what's "
                "leading them to cancel. Keep it short. "
                f"Do NOT wrap up yet and do NOT output {COMPLETION_TOKEN}."
            )
        else:
            body = (
                f"Keep digging. Do NOT wrap up yet and do NOT output {COMPLETION_TOKEN}. "
                "Ask exactly one follow-up question that gets closer to the real reason."
            )
    elif state.phase is TurnPhase.FLEXIBLE:
        body = (
            "You have enough to wrap up. If one important thread is still unclear you may "
            "ask exactly ONE more question; otherwise close the conversation now, offer the "
            f"best-fit retention path if any, and end with {COMPLETION_TOKEN} followed by the "
            "insights block."
        )
    else:
        body = (
            "The exchange limit has been reached. This is your final message. Do NOT ask "
            "any question. Thank them, briefly mention the best-fit retention path if any, "
            f"then end with {COMPLETION_TOKEN} followed by the insights block."
        )
    return f"{header}\n{body}"


HARD_STOP_DIRECTIVE = (
    "## FINAL RESPONSE REQUIRED\n"
    "The conversation is over. Write one short closing message with no question marks "
    f"and no further questions. You MUST then output {COMPLETION_TOKEN} exactly once, "
    f"immediately followed by exactly one {INSIGHTS_OPEN} ... {INSIGHTS_CLOSE} block containing "
    f"valid JSON. Output nothing after {INSIGHTS_CLOSE}."
)
