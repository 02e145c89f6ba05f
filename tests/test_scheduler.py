"""
Tests for DealScheduler.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.execution.work_queue import DealWorkQueue
from src.orchestrator.scheduler import DealScheduler, SchedulerConfig
from src.state.models import DealStatus


def make_deal(deal_id):
    deal = MagicMock()
    deal.id = deal_id
    deal.status = DealStatus.ACTIVE
    return deal


class TestDealScheduler:
    @pytest.fixture
    def queue(self):
        return DealWorkQueue()

    @pytest.mark.asyncio
    async def test_run_once_goes_through_queue(self, queue):
        manager = MagicMock()
        manager.run_scheduled_pass = AsyncMock(return_value=make_deal(1))
        seen = []
        scheduler = DealScheduler(manager, queue, on_new_deal=seen.append, log_event=lambda *a, **k: None)
        queue.start()

        result = await scheduler.run_once()

        assert result.success
        assert result.deal_id == 1
        assert result.new_deal
        assert [d.id for d in seen] == [1]
        manager.run_scheduled_pass.assert_awaited_once()
        await queue.stop()

    @pytest.mark.asyncio
    async def test_same_deal_printed_once(self, queue):
        manager = MagicMock()
        manager.run_scheduled_pass = AsyncMock(side_effect=[make_deal(1), make_deal(1), make_deal(2)])
        seen = []
        scheduler = DealScheduler(manager, queue, on_new_deal=seen.append, log_event=lambda *a, **k: None)
        queue.start()

        for _ in range(3):
            await scheduler.run_once()

        assert [d.id for d in seen] == [1, 2]
        await queue.stop()

    @pytest.mark.asyncio
    async def test_errors_are_logged_not_raised(self, queue):
        events = []
        manager = MagicMock()
        manager.run_scheduled_pass = AsyncMock(side_effect=RuntimeError("exchange down"))
        scheduler = DealScheduler(manager, queue, log_event=lambda event, **kw: events.append((event, kw)))
        queue.start()

        result = await scheduler.run_once()

        assert not result.success
        assert result.error == "exchange down"
        assert events[-1][0] == "scheduled_pass_error"
        assert scheduler.get_stats()["errors"] == 1
        await queue.stop()

    @pytest.mark.asyncio
    async def test_run_loop_stops(self, queue):
        manager = MagicMock()
        manager.run_scheduled_pass = AsyncMock(return_value=make_deal(1))
        scheduler = DealScheduler(
            manager, queue, SchedulerConfig(interval_sec=0.01), log_event=lambda *a, **k: None,
        )
        queue.start()

        task = asyncio.create_task(scheduler.run())
        await asyncio.sleep(0.05)
        scheduler.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert manager.run_scheduled_pass.await_count >= 2
        assert not scheduler.running
        await queue.stop()
