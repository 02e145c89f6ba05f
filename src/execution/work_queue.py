"""
Single-concurrency ordered work queue.

Every scheduled pass and every execution report is funneled through one
DealWorkQueue. Items run one at a time in arrival order and each runs to
completion before the next starts, so two reports for the same deal (or a
report racing the scheduler) never interleave their read-modify-write.

Usage:
    queue = DealWorkQueue()
    queue.start()

    # caller waits for the result (exceptions are re-raised to it)
    deal = await queue.submit("scheduled_pass", manager.run_scheduled_pass)

    # fire-and-forget (exceptions are logged)
    queue.post("execution_report", lambda: manager.handle_execution_report(evt))
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from src.core.json_utils import dumps

log = logging.getLogger("dcabot")

WorkFn = Callable[[], Awaitable[Any]]


@dataclass
class WorkItem:
    name: str
    fn: WorkFn
    future: Optional[asyncio.Future] = None


class DealWorkQueue:
    def __init__(self, log_event: Optional[Callable[..., None]] = None, maxsize: int = 0) -> None:
        self.queue: asyncio.Queue[Optional[WorkItem]] = asyncio.Queue(maxsize=maxsize)
        self._worker: Optional[asyncio.Task] = None
        self._stopping = False
        self._log_event = log_event or self._default_log
        self._stats = {"completed": 0, "failed": 0}

    def _default_log(self, event: str, **kwargs: Any) -> None:
        level = logging.ERROR if event == "queue_item_error" else logging.DEBUG
        log.log(level, dumps({"event": event, **kwargs}))

    @property
    def pending(self) -> int:
        return self.queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self._worker is None:
            self._stopping = False
            self._worker = asyncio.create_task(self._run(), name="deal-work-queue")

    async def stop(self) -> None:
        self._stopping = True
        if self._worker:
            # fail whatever never got to run
            while not self.queue.empty():
                item = self.queue.get_nowait()
                if item and item.future and not item.future.done():
                    item.future.set_exception(RuntimeError("queue_stopping"))
                self.queue.task_done()
            await self.queue.put(None)
            try:
                await asyncio.wait_for(self._worker, timeout=5.0)
            except asyncio.TimeoutError:
                self._worker.cancel()
                await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None

    async def submit(self, name: str, fn: WorkFn) -> Any:
        """Enqueue fn and wait for its result."""
        if self._stopping:
            raise RuntimeError("queue_stopping")
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        await self.queue.put(WorkItem(name=name, fn=fn, future=fut))
        return await fut

    def post(self, name: str, fn: WorkFn) -> bool:
        """Enqueue fn without waiting. Returns False if the queue is stopping or full."""
        if self._stopping:
            return False
        try:
            self.queue.put_nowait(WorkItem(name=name, fn=fn))
        except asyncio.QueueFull:
            self._log_event("queue_item_error", name=name, error="queue_full")
            return False
        return True

    async def join(self) -> None:
        """Wait until everything enqueued so far has run."""
        await self.queue.join()

    async def _run(self) -> None:
        while True:
            item = await self.queue.get()
            try:
                if item is None:
                    break
                await self._execute(item)
            finally:
                self.queue.task_done()

    async def _execute(self, item: WorkItem) -> None:
        self._log_event("queue_item_start", name=item.name, pending=self.queue.qsize())
        try:
            result = await item.fn()
        except asyncio.CancelledError:
            if item.future and not item.future.done():
                item.future.cancel()
            raise
        except Exception as exc:
            self._stats["failed"] += 1
            if item.future is not None:
                if not item.future.done():
                    item.future.set_exception(exc)
            else:
                self._log_event("queue_item_error", name=item.name, error=str(exc), error_type=type(exc).__name__)
            return
        self._stats["completed"] += 1
        if item.future is not None and not item.future.done():
            item.future.set_result(result)

    def get_stats(self) -> dict:
        return {**self._stats, "pending": self.queue.qsize()}
