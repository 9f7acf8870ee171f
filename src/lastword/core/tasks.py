"""Detached background tasks for post-response work.

Insight persistence and notification dispatch must outlive the request that
triggered them: a client disconnect cancels the response generator, but must
not cancel these. Tasks are plain loop tasks, so cancelling the request
task does not reach them; strong references are held until completion and any
exception is logged rather than propagated.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

_background_tasks: set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        logger.warning("background.task_cancelled", task=task.get_name())
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "background.task_failed",
            task=task.get_name(),
            error=str(exc),
            exc_info=exc,
        )


def spawn_detached(coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
    """Schedule *coro* as a detached task and return it.

    The returned task is tracked until it finishes so it cannot be garbage
    collected mid-flight. Errors surface only in the log.
    """
    task = asyncio.get_running_loop().create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


def pending_tasks() -> set[asyncio.Task]:
    """Snapshot of tasks still running (used by shutdown and tests)."""
    return set(_background_tasks)


async def drain_background_tasks(timeout: float = 10.0) -> None:
    """Wait for in-flight detached tasks, e.g. during application shutdown."""
    tasks = pending_tasks()
    if not tasks:
        return
    logger.info("background.draining", count=len(tasks))
    done, pending = await asyncio.wait(tasks, timeout=timeout)
    for task in pending:
        task.cancel()
    if pending:
        logger.warning("background.drain_timeout", abandoned=len(pending))
