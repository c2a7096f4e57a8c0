from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable

from ytscribe.core.errors import QueueCancelledError, QueueFullError, QueueTimeoutError

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class QueueStats:
    pending: int
    active: int
    completed: int
    failed: int
    total_processed: int
    queue_size: int

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class _Waiting:
    task: Task
    future: asyncio.Future
    enqueued_at: float
    timer: asyncio.TimerHandle | None = None


class RequestQueue:
    """
    Bounded-concurrency admission queue.

    At most `max_concurrency` tasks run at once; up to `max_queue_size` more
    wait in FIFO order, each for at most `queue_timeout` seconds. Anything
    beyond that is rejected synchronously by `submit()`.

    All counter updates happen between awaits on the event loop thread.
    """

    def __init__(self, max_concurrency: int = 3, max_queue_size: int = 100, queue_timeout: float = 60.0):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if max_queue_size < 0:
            raise ValueError("max_queue_size must be >= 0")
        if queue_timeout <= 0:
            raise ValueError("queue_timeout must be > 0")

        self.max_concurrency = max_concurrency
        self.max_queue_size = max_queue_size
        self.queue_timeout = queue_timeout

        self._waiting: deque[_Waiting] = deque()
        self._active = 0
        self._completed = 0
        self._failed = 0
        self._total_processed = 0

        logger.info(
            "RequestQueue initialized (max_concurrency=%s max_queue_size=%s queue_timeout=%.1fs)",
            max_concurrency,
            max_queue_size,
            queue_timeout,
        )

    # -----------------------------
    # Public API
    # -----------------------------
    def submit(self, task: Task) -> asyncio.Future:
        """
        Admit `task` (a zero-arg callable returning an awaitable).

        Returns a future that resolves with the task's result or exception.
        Raises QueueFullError right away when nothing can be admitted or queued.
        Cancelling the returned future withdraws a waiting entry or cancels
        the running task.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        if self._active < self.max_concurrency:
            self._start(task, future)
            return future

        if len(self._waiting) >= self.max_queue_size:
            snapshot = self.stats().to_dict()
            logger.warning("Queue is full, rejecting task (waiting=%s active=%s)", snapshot["pending"], snapshot["active"])
            raise QueueFullError(snapshot)

        entry = _Waiting(task=task, future=future, enqueued_at=loop.time())
        entry.timer = loop.call_later(self.queue_timeout, self._expire, entry)
        self._waiting.append(entry)
        future.add_done_callback(lambda _f, e=entry: self._withdraw(e))

        logger.debug("Task queued (waiting=%s active=%s)", len(self._waiting), self._active)
        return future

    async def run(self, task: Task) -> Any:
        return await self.submit(task)

    def stats(self) -> QueueStats:
        return QueueStats(
            pending=len(self._waiting),
            active=self._active,
            completed=self._completed,
            failed=self._failed,
            total_processed=self._total_processed,
            queue_size=len(self._waiting),
        )

    def clear(self) -> int:
        """Reject every waiting entry with QueueCancelledError. Running tasks are left alone."""
        dropped = 0
        while self._waiting:
            entry = self._waiting.popleft()
            if entry.timer:
                entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(QueueCancelledError("Queue cleared"))
                dropped += 1
        if dropped:
            logger.warning("Cleared %s waiting task(s)", dropped)
        return dropped

    async def drain(self, poll_interval: float = 0.05) -> None:
        """Wait until nothing is running or waiting."""
        while self._active > 0 or self._waiting:
            await asyncio.sleep(poll_interval)

    # -----------------------------
    # Internals
    # -----------------------------
    def _start(self, task: Task, future: asyncio.Future) -> None:
        self._active += 1
        runner = asyncio.ensure_future(self._execute(task, future))

        def _propagate_cancel(f: asyncio.Future) -> None:
            if f.cancelled() and not runner.done():
                runner.cancel()

        future.add_done_callback(_propagate_cancel)

    async def _execute(self, task: Task, future: asyncio.Future) -> None:
        try:
            result = await task()
        except asyncio.CancelledError:
            self._failed += 1
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            self._failed += 1
            if not future.done():
                future.set_exception(e)
        else:
            self._completed += 1
            if not future.done():
                future.set_result(result)
        finally:
            self._total_processed += 1
            self._active -= 1
            self._dispatch()

    def _dispatch(self) -> None:
        while self._active < self.max_concurrency and self._waiting:
            entry = self._waiting.popleft()
            if entry.timer:
                entry.timer.cancel()
            if entry.future.done():
                # cancelled by its caller; the done-callback has not run yet
                continue
            self._start(entry.task, entry.future)

    def _expire(self, entry: _Waiting) -> None:
        try:
            self._waiting.remove(entry)
        except ValueError:
            return
        if entry.future.done():
            return
        waited = asyncio.get_running_loop().time() - entry.enqueued_at
        logger.warning("Task timed out in queue after %.2fs (timeout=%.2fs)", waited, self.queue_timeout)
        entry.future.set_exception(QueueTimeoutError(waited, self.queue_timeout, self.stats().to_dict()))

    def _withdraw(self, entry: _Waiting) -> None:
        if not entry.future.cancelled():
            return
        try:
            self._waiting.remove(entry)
        except ValueError:
            return
        if entry.timer:
            entry.timer.cancel()
        logger.debug("Waiting task cancelled by caller")
