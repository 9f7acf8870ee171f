"""Stream relay: forward provider deltas to the caller while keeping a copy.

A tap task owns the upstream iterator. Each delta is framed and queued for
the caller immediately and appended to a local accumulator. The caller-side
generator only drains the queue, so a slow or vanished client never stalls
the upstream read, and the accumulator is always complete once the upstream
closes.

The tap runs as a detached task: a client disconnect cancels the response
generator but not the tap, so the completion callback still sees the full
turn and can persist it.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable

import structlog

from src.lastword.core.tasks import spawn_detached
from src.lastword.interview.protocol import DONE_EVENT, format_delta_event

logger = structlog.get_logger(__name__)

CompletionCallback = Callable[[str], Awaitable[None]]


class StreamRelay:
    """Tap an upstream delta iterator into a caller stream plus an accumulator.

    Args:
        deltas: Ordered text deltas from the provider client.
        on_complete: Awaited with the accumulated text after the upstream
            closes. Runs detached; its failures are logged, not surfaced.
        name: Task name prefix, used in logs.
    """

    def __init__(
        self,
        deltas: AsyncIterator[str],
        on_complete: CompletionCallback | None = None,
        name: str = "relay",
    ) -> None:
        self._deltas = deltas
        self._on_complete = on_complete
        self._name = name
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._chunks: list[str] = []
        self._tap_task: asyncio.Task | None = None
        self.upstream_error: Exception | None = None

    @property
    def text(self) -> str:
        """Everything received from the upstream so far."""
        return "".join(self._chunks)

    @property
    def tap_task(self) -> asyncio.Task | None:
        return self._tap_task

    def start(self) -> None:
        if self._tap_task is None:
            self._tap_task = spawn_detached(self._tap(), name=f"{self._name}.tap")

    async def _tap(self) -> None:
        try:
            async for delta in self._deltas:
                if not delta:
                    continue
                self._chunks.append(delta)
                self._queue.put_nowait(format_delta_event(delta))
        except Exception as exc:
            # Bytes already reached the caller; close cleanly with what we have.
            self.upstream_error = exc
            logger.error(
                "relay.upstream_failed",
                relay=self._name,
                received_chars=len(self.text),
                error=str(exc),
                exc_info=True,
            )
        finally:
            if self._on_complete is not None:
                spawn_detached(self._on_complete(self.text), name=f"{self._name}.complete")
            self._queue.put_nowait(DONE_EVENT)
            self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[str]:
        """Caller-facing SSE events, ending with the terminal marker."""
        self.start()
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


async def iter_framed(events: list[str]) -> AsyncIterator[str]:
    """Async iterator over pre-framed events (used by the forced closing path)."""
    for event in events:
        yield event
