import asyncio
import pytest
from unittest.mock import AsyncMock

from common.workers.base_worker import BaseWorker


class TestableWorker(BaseWorker):
    """Concrete implementation of BaseWorker for testing."""

    def __init__(self, run_once: bool = False, fail_on=None, stop_after=None):
        super().__init__("test", interval_seconds=0.01, worker_id="test_worker", run_once=run_once)
        self.ticks = 0
        self.fail_on = fail_on or set()
        self.stop_after = stop_after

    async def tick(self):
        self.ticks += 1
        if self.stop_after and self.ticks >= self.stop_after:
            await self.stop()
        if self.ticks in self.fail_on:
            raise RuntimeError(f"tick {self.ticks} failed")


class TestBaseWorker:
    """Tests for the periodic worker loop."""

    async def test_run_once(self):
        worker = TestableWorker(run_once=True)

        await worker.start()

        assert worker.ticks == 1
        assert worker.running is False

    async def test_ticks_until_stopped(self):
        worker = TestableWorker(stop_after=3)

        await asyncio.wait_for(worker.start(), timeout=2)

        assert worker.ticks == 3

    async def test_failed_tick_does_not_stop_schedule(self):
        worker = TestableWorker(fail_on={1, 2}, stop_after=3)

        await asyncio.wait_for(worker.start(), timeout=2)

        assert worker.ticks == 3

    async def test_stop_interrupts_wait(self):
        worker = TestableWorker()
        worker.interval_seconds = 60

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        await worker.stop()
        await asyncio.wait_for(task, timeout=1)

        assert worker.ticks == 1

    async def test_lock_provider_lifecycle(self):
        worker = TestableWorker(run_once=True)
        worker.lock_provider = AsyncMock()

        await worker.start()

        worker.lock_provider.connect.assert_awaited_once()
        worker.lock_provider.disconnect.assert_awaited_once()

    async def test_start_twice_is_noop(self):
        worker = TestableWorker()
        worker.running = True

        await worker.start()

        assert worker.ticks == 0

    def test_generated_worker_id(self):
        class Unnamed(BaseWorker):
            async def tick(self):
                pass

        worker = Unnamed("billing_scheduler", interval_seconds=1)

        assert worker.worker_id.startswith("billing_scheduler_worker_")
