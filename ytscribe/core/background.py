"""Supervised fire-and-forget tasks.

Holds a strong reference to every spawned task until it finishes and logs
failures, so a job started with `wait=false` is neither garbage collected
mid-flight nor lost without a trace.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, Set

logger = logging.getLogger(__name__)

_background_tasks: Set[asyncio.Task[Any]] = set()


def spawn(coro: Awaitable[Any], *, name: Optional[str] = None) -> asyncio.Task[Any]:
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)
    _background_tasks.add(task)

    def _finished(t: asyncio.Task[Any]) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            logger.debug("Background task %s cancelled", name or t)
            return
        exc = t.exception()
        if exc is not None:
            logger.error("Background task %s failed", name or t, exc_info=exc)

    task.add_done_callback(_finished)
    return task


def pending_tasks() -> int:
    return len(_background_tasks)
