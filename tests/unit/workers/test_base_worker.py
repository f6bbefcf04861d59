import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from common.workers.base_worker import PeriodicWorker
from common.workers.launcher import WorkerLauncher
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.workers.lifecycle_worker import LifecycleSchedulerWorker


class CountingWorker(PeriodicWorker):
    """Concrete PeriodicWorker that records its iterations."""

    def __init__(self, fail_on: tuple = (), **kwargs):
        super().__init__(name="counting", interval_seconds=0.01, **kwargs)
        self.fail_on = fail_on
        self.calls = 0
        self.setup_called = False
        self.cleanup_called = False

    async def setup(self):
        self.setup_called = True

    async def cleanup(self):
        self.cleanup_called = True

    async def run_once(self):
        self.calls += 1
        if self.calls in self.fail_on:
            raise RuntimeError(f"boom on {self.calls}")
        if self.calls >= 3:
            await self.stop()


class TestPeriodicWorker:
    async def test_runs_until_stopped(self):
        worker = CountingWorker()

        await asyncio.wait_for(worker.start(), timeout=5)

        assert worker.calls == 3
        assert worker.iterations == 3
        assert worker.running is False
        assert worker.setup_called and worker.cleanup_called

    async def test_failed_iteration_is_retried_next_tick(self):
        worker = CountingWorker(fail_on=(1,))

        await asyncio.wait_for(worker.start(), timeout=5)

        assert worker.calls == 3

    async def test_run_once_only(self):
        worker = CountingWorker(run_once_only=True)

        await worker.start()

        assert worker.calls == 1
        assert worker.cleanup_called

    async def test_run_once_only_propagates_failure(self):
        worker = CountingWorker(fail_on=(1,), run_once_only=True)

        with pytest.raises(RuntimeError):
            await worker.start()

        assert worker.cleanup_called

    async def test_stop_interrupts_the_wait(self):
        worker = CountingWorker()
        worker.interval_seconds = 3600
        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)

        await worker.stop()
        await asyncio.wait_for(task, timeout=5)

        assert worker.calls == 1

    def test_worker_id_defaults_to_name(self):
        assert CountingWorker().worker_id.startswith("counting_worker_")
        assert CountingWorker(worker_id="fixed").worker_id == "fixed"


class TestLifecycleSchedulerWorker:
    async def test_single_run_applies_passes(self, make_subscription):
        now = datetime.now(timezone.utc)
        due = await make_subscription(
            period_start_date=now - timedelta(days=32),
            period_end_date=now - timedelta(days=1),
            tokens_used_current_period=10_000,
        )
        worker = LifecycleSchedulerWorker(run_once_only=True, batch_size=10)

        await worker.start()

        assert worker.last_result.reset_count == 1
        assert (await SubscriptionRepository().get(due.id)).tokens_used_current_period == 0

    def test_defaults_from_settings(self):
        with patch(
            "packages.billing.workers.lifecycle_worker.settings"
        ) as settings:
            settings.scheduler_interval_seconds = 120
            worker = LifecycleSchedulerWorker()

        assert worker.name == "lifecycle_scheduler"
        assert worker.interval_seconds == 120
        assert worker.run_once_only is False


class TestWorkerLauncher:
    async def test_exit_code_zero_on_clean_run(self):
        worker = CountingWorker(run_once_only=True)

        exit_code = await WorkerLauncher()._run_worker_async(worker, "Counting")

        assert exit_code == 0

    async def test_exit_code_one_on_failure(self):
        worker = CountingWorker(run_once_only=True)
        worker.run_once = AsyncMock(side_effect=RuntimeError("db down"))

        exit_code = await WorkerLauncher()._run_worker_async(worker, "Counting")

        assert exit_code == 1
