from typing import Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import get_logger
from common.workers.base_worker import PeriodicWorker
from packages.billing.services.lifecycle_service import (
    LifecycleRunResult,
    LifecycleService,
)

logger = get_logger(__name__)


class LifecycleSchedulerWorker(PeriodicWorker):
    """Runs the reset, expiration and selection-reset passes on a fixed interval."""

    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
        run_once_only: bool = False,
    ):
        super().__init__(
            name="lifecycle_scheduler",
            interval_seconds=interval_seconds or settings.scheduler_interval_seconds,
            run_once_only=run_once_only,
        )
        self.lifecycle_service = LifecycleService(batch_size=batch_size)
        self.last_result: Optional[LifecycleRunResult] = None

    async def run_once(self):
        self.last_result = await self.lifecycle_service.run_all()
        logger.info(
            f"Scheduler iteration {self.iterations} done",
            extra={
                "worker_id": self.worker_id,
                "reset_count": self.last_result.reset_count,
                "expired_count": self.last_result.expired_count,
                "selections_cleared": self.last_result.selections_cleared,
            },
        )
