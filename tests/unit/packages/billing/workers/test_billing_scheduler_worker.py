"""
Unit tests for BillingSchedulerWorker.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from packages.billing.models.domain.results import BillingRunSummary
from packages.billing.workers.billing_scheduler_worker import BillingSchedulerWorker


@pytest.fixture
def mock_orchestrator():
    orchestrator = MagicMock()
    orchestrator.renew_due = AsyncMock(return_value=BillingRunSummary(processed=2, renewed=2))
    orchestrator.run_dunning_sweep = AsyncMock(
        return_value=BillingRunSummary(processed=1, exhausted=1)
    )
    return orchestrator


@pytest.fixture
def worker(mock_orchestrator, mock_lock_provider):
    with patch(
        "packages.billing.workers.billing_scheduler_worker.get_lock_provider",
        return_value=mock_lock_provider,
    ):
        return BillingSchedulerWorker(
            interval_seconds=0.01, run_once=True, orchestrator=mock_orchestrator
        )


class TestBillingSchedulerWorker:
    async def test_tick_runs_renewals_then_dunning(self, worker, mock_orchestrator):
        calls = []
        mock_orchestrator.renew_due.side_effect = lambda: calls.append("renew") or BillingRunSummary()
        mock_orchestrator.run_dunning_sweep.side_effect = (
            lambda: calls.append("dunning") or BillingRunSummary()
        )

        await worker.tick()

        assert calls == ["renew", "dunning"]

    async def test_tick_keeps_last_summaries(self, worker):
        await worker.tick()

        assert worker.last_renewals.renewed == 2
        assert worker.last_dunning.exhausted == 1

    async def test_run_once_connects_lock_provider(self, worker, mock_lock_provider):
        await worker.start()

        mock_lock_provider.connect.assert_awaited_once()
        mock_lock_provider.disconnect.assert_awaited_once()
        assert worker.last_renewals is not None

    async def test_renewal_failure_is_logged_not_raised(self, worker, mock_orchestrator):
        mock_orchestrator.renew_due.side_effect = RuntimeError("database unavailable")

        await worker.start()

        mock_orchestrator.run_dunning_sweep.assert_not_awaited()
        assert worker.running is False

    async def test_default_interval_from_settings(self, mock_orchestrator, mock_lock_provider):
        with patch(
            "packages.billing.workers.billing_scheduler_worker.get_lock_provider",
            return_value=mock_lock_provider,
        ):
            worker = BillingSchedulerWorker(orchestrator=mock_orchestrator)

        assert worker.interval_seconds == 300
