"""
Bot assembly and lifecycle for one trading pair.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from src.bot_logger import DealLogger
from src.config.config import Settings
from src.core.json_utils import dumps
from src.execution.deal_locks import DealLocks
from src.execution.deal_manager import DealManager, DealManagerConfig
from src.execution.exchange import ExecutionReport
from src.execution.work_queue import DealWorkQueue
from src.infra.binance_client import BinanceSpotClient
from src.infra.user_stream import UserDataStream
from src.monitoring.deal_table import print_deal
from src.monitoring.metrics_rich import DealMetrics
from src.orchestrator.scheduler import DealScheduler, SchedulerConfig
from src.state.deal_repository import DealRepository

log = logging.getLogger("dcabot")


class DcaBot:
    """Owns the work queue, the scheduler and the user data stream for one pair."""

    def __init__(
        self,
        manager: DealManager,
        queue: DealWorkQueue,
        scheduler: DealScheduler,
        stream: Optional[UserDataStream] = None,
    ) -> None:
        self.manager = manager
        self.queue = queue
        self.scheduler = scheduler
        self.stream = stream
        self._tasks: List[asyncio.Task] = []

    @property
    def pair(self) -> str:
        return self.manager.pair

    def on_report(self, report: ExecutionReport) -> None:
        """User stream callback: serialize the report behind earlier work."""
        self.queue.post(
            f"execution_report:{report.client_order_id}",
            lambda: self.manager.handle_execution_report(report),
        )

    async def start(self) -> None:
        self.queue.start()
        self._tasks.append(asyncio.create_task(self.scheduler.run(), name=f"scheduler-{self.pair}"))
        if self.stream is not None:
            self._tasks.append(asyncio.create_task(self.stream.run(), name=f"user-stream-{self.pair}"))
        log.info(dumps({"event": "bot_started", "pair": self.pair}))

    async def wait(self) -> None:
        """Return when any background task ends (a crash surfaces here)."""
        if not self._tasks:
            return
        done, _ = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                log.error(dumps({"event": "bot_task_error", "pair": self.pair, "task": task.get_name(), "err": str(task.exception())}))

    async def stop(self) -> None:
        self.scheduler.stop()
        if self.stream is not None:
            self.stream.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.queue.stop()
        log.info(dumps({"event": "bot_stopped", "pair": self.pair}))


async def build_bot(
    cfg: Settings,
    client: BinanceSpotClient,
    repository: DealRepository,
    metrics: Optional[DealMetrics] = None,
    with_stream: bool = True,
) -> DcaBot:
    """Wire one pair's components. Fetches the pair's exchange filters."""
    symbol = await client.get_symbol_info(cfg.pair)
    strategy = cfg.strategy()
    deal_log = DealLogger(cfg.pair)

    manager = DealManager(
        strategy,
        symbol,
        repository,
        client,
        locks=DealLocks(),
        metrics=metrics,
        config=DealManagerConfig(
            close_poll_interval_sec=cfg.close_poll_interval_sec,
            close_max_wait_sec=cfg.close_max_wait_sec,
            poll_open_orders=cfg.poll_open_orders,
            log_event_callback=deal_log.log,
        ),
    )
    queue = DealWorkQueue(log_event=deal_log.log)
    scheduler = DealScheduler(
        manager,
        queue,
        SchedulerConfig(interval_sec=cfg.schedule_interval_sec),
        on_new_deal=print_deal,
        log_event=deal_log.log,
    )
    bot = DcaBot(manager, queue, scheduler)
    if with_stream:
        bot.stream = UserDataStream(
            client,
            on_report=bot.on_report,
            log_event=deal_log.log,
        )
    return bot
