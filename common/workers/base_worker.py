import asyncio
from abc import ABC, abstractmethod
from typing import Optional
from uuid import uuid4

from common.core.otel_axiom_exporter import get_logger

logger = get_logger(__name__)


class BaseWorker(ABC):
    """Base worker class for periodic background jobs."""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        worker_id: Optional[str] = None,
        run_once: bool = False,
    ):
        self.name = name
        self.worker_id = worker_id or f"{name}_worker_{uuid4()}"
        self.interval_seconds = interval_seconds
        self.run_once = run_once
        self.running = False
        self._stop_event = asyncio.Event()

    async def setup(self):
        """Initialize worker dependencies."""
        try:
            # Setup lock provider if this worker has one
            if hasattr(self, "lock_provider"):
                await self.lock_provider.connect()

            logger.info(f"Worker {self.worker_id} setup completed")

        except Exception as e:
            logger.error(f"Error setting up worker {self.worker_id}: {e}")
            raise

    async def cleanup(self):
        """Cleanup worker resources."""
        try:
            # Cleanup lock provider if this worker has one
            if hasattr(self, "lock_provider"):
                await self.lock_provider.disconnect()

            logger.info(f"Worker {self.worker_id} cleanup completed")
        except Exception as e:
            logger.error(f"Error cleaning up worker {self.worker_id}: {e}")

    async def start(self):
        """Start the worker and tick until stopped."""
        if self.running:
            logger.warning(f"Worker {self.worker_id} is already running")
            return

        self.running = True
        self._stop_event.clear()
        logger.info(
            f"Starting worker {self.worker_id} every {self.interval_seconds}s"
        )

        try:
            await self.setup()
            while self.running:
                try:
                    await self.tick()
                except Exception as e:
                    # One failed tick must not stop the schedule
                    logger.error(
                        f"Error in worker {self.worker_id} tick: {e}", exc_info=True
                    )

                if self.run_once:
                    break
                await self._wait()
        finally:
            self.running = False
            await self.cleanup()

    async def _wait(self):
        try:
            await asyncio.wait_for(self._stop_event.wait(), self.interval_seconds)
        except asyncio.TimeoutError:
            pass

    async def stop(self):
        """Stop the worker."""
        self.running = False
        self._stop_event.set()
        logger.info(f"Stopping worker {self.worker_id}")

    @abstractmethod
    async def tick(self):
        """Run one unit of periodic work. Must be implemented by subclasses."""
        pass
