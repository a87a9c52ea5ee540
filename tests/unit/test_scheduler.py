"""
Unit tests for the one-shot task scheduler
"""

import asyncio
import pytest

from roadie_guard.core.scheduler import TaskScheduler

from tests.utils import AsyncTestHelper


class TestTaskScheduler:
    """Test delayed task handling"""

    @pytest.mark.asyncio
    async def test_sync_handler_fires(self):
        scheduler = TaskScheduler("test")
        fired = []
        task = scheduler.schedule_once("ping", 0.01, lambda: fired.append("ping"))

        assert scheduler.is_pending("ping")
        assert await AsyncTestHelper.wait_for_condition(lambda: fired == ["ping"])
        assert fired == ["ping"]
        assert task.fired is True
        assert not scheduler.is_pending("ping")
        await scheduler.stop_all()

    @pytest.mark.asyncio
    async def test_async_handler_fires(self):
        scheduler = TaskScheduler("test")
        fired = asyncio.Event()

        async def handler():
            fired.set()

        scheduler.schedule_once("async", 0, handler)
        await asyncio.wait_for(fired.wait(), timeout=1.0)
        await scheduler.stop_all()

    @pytest.mark.asyncio
    async def test_cancel_before_firing(self):
        scheduler = TaskScheduler("test")
        fired = []
        task = scheduler.schedule_once("late", 0.05, lambda: fired.append(True))

        assert scheduler.cancel("late") is True
        assert scheduler.cancel("late") is False
        await asyncio.sleep(0.1)
        assert fired == []
        assert task.cancelled is True
        await scheduler.stop_all()

    @pytest.mark.asyncio
    async def test_cancel_after_firing_does_not_interrupt(self):
        scheduler = TaskScheduler("test")
        started = asyncio.Event()
        finished = []

        async def slow():
            started.set()
            await asyncio.sleep(0.05)
            finished.append(True)

        scheduler.schedule_once("slow", 0, slow)
        await asyncio.wait_for(started.wait(), timeout=1.0)
        assert scheduler.cancel("slow") is False
        await scheduler.stop_all()
        assert finished == [True]

    @pytest.mark.asyncio
    async def test_rescheduling_replaces_timer(self):
        scheduler = TaskScheduler("test")
        fired = []
        scheduler.schedule_once("timer", 0.05, lambda: fired.append("first"))
        scheduler.schedule_once("timer", 0.01, lambda: fired.append("second"))
        await asyncio.sleep(0.1)
        assert fired == ["second"]
        await scheduler.stop_all()

    @pytest.mark.asyncio
    async def test_handler_errors_are_recorded(self):
        scheduler = TaskScheduler("test")

        def broken():
            raise RuntimeError("boom")

        task = scheduler.schedule_once("broken", 0, broken)
        assert await AsyncTestHelper.wait_for_condition(lambda: task.last_error is not None)
        assert task.last_error == "boom"
        await scheduler.stop_all()

    @pytest.mark.asyncio
    async def test_stop_all_cancels_pending_and_refuses_new(self):
        scheduler = TaskScheduler("test")
        fired = []
        scheduler.schedule_once("a", 10, lambda: fired.append("a"))
        scheduler.schedule_once("b", 10, lambda: fired.append("b"))

        await scheduler.stop_all()
        assert scheduler.tasks == {}
        assert fired == []
        with pytest.raises(ValueError):
            scheduler.schedule_once("c", 0, lambda: None)
        assert scheduler.stopped is True

    @pytest.mark.asyncio
    async def test_negative_delay_rejected(self):
        scheduler = TaskScheduler("test")
        with pytest.raises(ValueError):
            scheduler.schedule_once("neg", -1, lambda: None)
        await scheduler.stop_all()
