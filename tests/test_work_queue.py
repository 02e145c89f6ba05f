"""
Tests for DealWorkQueue ordering and error handling.
"""
import asyncio

import pytest

from src.execution.work_queue import DealWorkQueue


class TestDealWorkQueue:
    @pytest.mark.asyncio
    async def test_submit_returns_result(self):
        queue = DealWorkQueue()
        queue.start()

        async def work():
            return 42

        assert await queue.submit("answer", work) == 42
        await queue.stop()

    @pytest.mark.asyncio
    async def test_submit_reraises(self):
        queue = DealWorkQueue()
        queue.start()

        async def boom():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await queue.submit("boom", boom)
        assert queue.get_stats()["failed"] == 1
        await queue.stop()

    @pytest.mark.asyncio
    async def test_items_never_interleave(self):
        queue = DealWorkQueue()
        queue.start()
        trace = []

        def make(name):
            async def work():
                trace.append(f"{name}:start")
                await asyncio.sleep(0.01)
                trace.append(f"{name}:end")
            return work

        for name in ("a", "b", "c"):
            queue.post(name, make(name))
        await queue.join()

        assert trace == ["a:start", "a:end", "b:start", "b:end", "c:start", "c:end"]
        await queue.stop()

    @pytest.mark.asyncio
    async def test_post_error_is_logged_and_queue_continues(self):
        events = []
        queue = DealWorkQueue(log_event=lambda event, **kw: events.append((event, kw)))
        queue.start()
        done = []

        async def boom():
            raise RuntimeError("exchange down")

        async def ok():
            done.append(True)

        queue.post("boom", boom)
        queue.post("ok", ok)
        await queue.join()

        assert done == [True]
        errors = [kw for event, kw in events if event == "queue_item_error"]
        assert errors and errors[0]["name"] == "boom"
        await queue.stop()

    @pytest.mark.asyncio
    async def test_post_after_stop_rejected(self):
        queue = DealWorkQueue()
        queue.start()
        await queue.stop()

        async def work():
            return None

        assert queue.post("late", work) is False
        with pytest.raises(RuntimeError):
            await queue.submit("late", work)

    @pytest.mark.asyncio
    async def test_full_queue_rejects_post(self):
        queue = DealWorkQueue(log_event=lambda event, **kw: None, maxsize=1)

        async def work():
            return None

        assert queue.post("first", work) is True
        assert queue.post("second", work) is False
        assert queue.pending == 1
