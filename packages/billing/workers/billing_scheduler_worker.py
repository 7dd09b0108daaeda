"""
Billing scheduler worker.

Each tick renews every subscription whose period ended, then runs the
dunning sweep over past-due subscriptions. Several replicas may run at
once; per-subscription locks keep each subscription on one worker.
"""

from typing import Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import get_logger
from common.providers.locking.factory import get_lock_provider
from common.workers.base_worker import BaseWorker
from packages.billing.models.domain.results import BillingRunSummary
from packages.billing.services.billing_cycle_service import BillingCycleOrchestrator

logger = get_logger(__name__)


class BillingSchedulerWorker(BaseWorker):
    """Drives renewal and dunning on a fixed interval."""

    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        run_once: bool = False,
        orchestrator: Optional[BillingCycleOrchestrator] = None,
    ):
        super().__init__(
            name="billing_scheduler",
            interval_seconds=interval_seconds
            or settings.billing_scheduler_interval_seconds,
            run_once=run_once,
        )
        self.lock_provider = get_lock_provider()
        self.orchestrator = orchestrator or BillingCycleOrchestrator(
            lock_provider=self.lock_provider
        )
        self.last_renewals: Optional[BillingRunSummary] = None
        self.last_dunning: Optional[BillingRunSummary] = None

    async def tick(self):
        self.last_renewals = await self.orchestrator.renew_due()
        self.last_dunning = await self.orchestrator.run_dunning_sweep()

        logger.info(
            f"Billing tick: renewed={self.last_renewals.renewed} "
            f"failed={self.last_renewals.failed} "
            f"dunning_recovered={self.last_dunning.renewed} "
            f"exhausted={self.last_dunning.exhausted}",
            extra={
                "worker_id": self.worker_id,
                "renewal_errors": len(self.last_renewals.errors),
                "dunning_errors": len(self.last_dunning.errors),
            },
        )
