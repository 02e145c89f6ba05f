"""
DealScheduler: fixed-cadence driver for DealManager.

Every interval the scheduler enqueues one scheduled pass on the deal work
queue, so passes never interleave with execution reports. A failing pass is
logged and the loop keeps running; a new deal is printed as a table once.

Usage:
    scheduler = DealScheduler(manager, queue, SchedulerConfig(interval_sec=60))
    task = asyncio.create_task(scheduler.run())
    ...
    scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TYPE_CHECKING

from src.core.json_utils import dumps

if TYPE_CHECKING:
    from src.execution.deal_manager import DealManager
    from src.execution.work_queue import DealWorkQueue
    from src.state.models import Deal

log = logging.getLogger("dcabot")


@dataclass
class SchedulerConfig:
    """Configuration for DealScheduler."""
    interval_sec: float = 60.0

    # Run the first pass immediately instead of after one interval
    run_immediately: bool = True


@dataclass
class PassResult:
    """Result of a single scheduled pass."""
    success: bool
    deal_id: Optional[int] = None
    deal_status: Optional[str] = None
    new_deal: bool = False
    error: Optional[str] = None
    duration_ms: float = 0.0


class DealScheduler:
    def __init__(
        self,
        manager: "DealManager",
        queue: "DealWorkQueue",
        config: Optional[SchedulerConfig] = None,
        on_new_deal: Optional[Callable[["Deal"], Any]] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.manager = manager
        self.queue = queue
        self.config = config or SchedulerConfig()
        self.on_new_deal = on_new_deal
        self._log_event = log_event or self._default_log
        self._stop_event = asyncio.Event()
        self._last_deal_id: Optional[int] = None
        self._pass_count = 0
        self._error_count = 0

    def _default_log(self, event: str, **kwargs: Any) -> None:
        level = logging.ERROR if event == "scheduled_pass_error" else logging.INFO
        log.log(level, dumps({"event": event, **kwargs}))

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def stop(self) -> None:
        """Signal the loop to stop after the current pass."""
        self._stop_event.set()
        self._log_event("scheduler_stop")

    async def run(self) -> None:
        self._log_event("scheduler_start", interval_sec=self.config.interval_sec)
        if not self.config.run_immediately:
            await self._sleep(self.config.interval_sec)
        while not self._stop_event.is_set():
            started = time.monotonic()
            await self.run_once()
            elapsed = time.monotonic() - started
            await self._sleep(max(0.0, self.config.interval_sec - elapsed))

    async def run_once(self) -> PassResult:
        """Enqueue one pass and wait for it. Never raises."""
        start = time.perf_counter()
        self._pass_count += 1
        try:
            deal = await self.queue.submit("scheduled_pass", self.manager.run_scheduled_pass)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._error_count += 1
            self._log_event(
                "scheduled_pass_error",
                error=str(exc),
                error_type=type(exc).__name__,
                passes=self._pass_count,
            )
            return PassResult(
                success=False,
                error=str(exc),
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        new_deal = deal is not None and deal.id != self._last_deal_id
        if deal is not None:
            self._last_deal_id = deal.id
        if new_deal and self.on_new_deal is not None:
            self.on_new_deal(deal)
        return PassResult(
            success=True,
            deal_id=deal.id if deal is not None else None,
            deal_status=deal.status.value if deal is not None else None,
            new_deal=new_deal,
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def get_stats(self) -> dict:
        return {
            "passes": self._pass_count,
            "errors": self._error_count,
            "last_deal_id": self._last_deal_id,
        }
