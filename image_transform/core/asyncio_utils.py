"""Fire-and-forget tasks whose failures still reach the log."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, MutableSet, Optional

from .logging_utils import LoggerLike, as_structured_logger


def log_task_failure(
    task: asyncio.Task,
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
) -> asyncio.Task:
    """Retrieve and log the exception of ``task`` once it finishes.

    Reactive health checks are never awaited by the code that starts them,
    so nothing else would ever look at their result.
    """
    log = as_structured_logger(logger, default_name="tasks")
    label = context or task.get_name()

    def _report(finished: asyncio.Task) -> None:
        if finished.cancelled():
            return
        error = finished.exception()
        if error is not None:
            log.error("Background task %s failed", label, exc_info=error)

    task.add_done_callback(_report)
    return task


def create_logged_task(
    coro: Coroutine[Any, Any, Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
    pending: Optional[MutableSet[asyncio.Task]] = None,
) -> asyncio.Task:
    """Schedule ``coro`` on the running loop, keeping it in ``pending`` until it is done."""
    task = asyncio.get_running_loop().create_task(coro, name=context)
    log_task_failure(task, logger=logger, context=context)

    if pending is not None:
        pending.add(task)
        task.add_done_callback(pending.discard)
    return task


__all__ = ["log_task_failure", "create_logged_task"]
