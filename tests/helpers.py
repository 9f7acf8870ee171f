"""In-memory test doubles and transcript builders shared across test modules."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

from src.lastword.interview.schemas import Message


class FakeResult:
    """Minimal Result: supports scalar_one_or_none() and scalars().all()."""

    def __init__(self, value: Any = None, rows: list[Any] | None = None) -> None:
        self._value = value
        self._rows = rows if rows is not None else ([] if value is None else [value])

    def scalar_one_or_none(self) -> Any:
        return self._value

    def scalars(self) -> SimpleNamespace:
        return SimpleNamespace(all=lambda: list(self._rows))


class FakeSession:
    """Records writes and hands out queued results in call order."""

    def __init__(self, results: list[FakeResult] | None = None) -> None:
        self.results = list(results or [])
        self.added: list[Any] = []
        self.executed: list[Any] = []
        self.commits = 0

    async def execute(self, statement: Any) -> FakeResult:
        self.executed.append(statement)
        if self.results:
            return self.results.pop(0)
        return FakeResult()

    def add(self, obj: Any) -> None:
        self.added.append(obj)

    async def flush(self) -> None:
        return None

    async def commit(self) -> None:
        self.commits += 1


def session_factory_for(session: FakeSession):
    """Async-generator session factory yielding *session* once per call."""

    async def _factory():
        yield session

    return _factory


def user(content: str) -> Message:
    return Message(role="user", content=content)


def assistant(content: str) -> Message:
    return Message(role="assistant", content=content)


def transcript(turns: int) -> list[Message]:
    """Greeting sentinel followed by *turns* question/answer pairs."""
    messages = [user("start"), assistant("Hey, what's leading you to cancel?")]
    for i in range(turns):
        messages.append(user(f"answer {i + 1}"))
        if i < turns - 1:
            messages.append(assistant(f"follow-up {i + 1}?"))
    return messages


async def deltas_from(*chunks: str):
    """Async iterator over fixed text deltas."""
    for chunk in chunks:
        yield chunk
