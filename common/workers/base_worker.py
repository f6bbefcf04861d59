import asyncio
from abc import ABC, abstractmethod
from typing import Optional
from uuid import uuid4

from common.core.otel_axiom_exporter import get_logger

logger = get_logger(__name__)


class PeriodicWorker(ABC):
    """Base worker that runs ``run_once`` every ``interval_seconds`` until stopped."""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        worker_id: Optional[str] = None,
        run_once_only: bool = False,
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self.worker_id = worker_id or f"{name}_worker_{uuid4()}"
        self.run_once_only = run_once_only
        self.running = False
        self.iterations = 0
        self._stop_event = asyncio.Event()

    async def setup(self):
        """Initialize worker dependencies."""

    async def cleanup(self):
        """Cleanup worker resources."""

    async def start(self):
        """Run iterations until stopped. A failed iteration is logged and retried next tick."""
        if self.running:
            logger.warning(f"Worker {self.worker_id} is already running")
            return

        self.running = True
        logger.info(
            f"Starting worker {self.worker_id} (interval={self.interval_seconds}s, once={self.run_once_only})"
        )

        try:
            await self.setup()
            while self.running:
                await self._tick()
                if self.run_once_only:
                    break
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(), timeout=self.interval_seconds
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            self.running = False
            await self.cleanup()

    async def stop(self):
        """Stop the worker after the current iteration."""
        self.running = False
        self._stop_event.set()
        logger.info(f"Stopping worker {self.worker_id}")

    async def _tick(self):
        self.iterations += 1
        try:
            await self.run_once()
        except Exception as e:
            logger.error(
                f"Iteration {self.iterations} of worker {self.worker_id} failed: {e}",
                exc_info=True,
            )
            if self.run_once_only:
                raise

    @abstractmethod
    async def run_once(self):
        """One unit of periodic work. Must be implemented by subclasses."""
        pass
