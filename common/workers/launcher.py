"""
Process entry point for periodic workers.

Owns what every worker process needs before its first tick: telemetry,
root logging, SIGINT/SIGTERM handling and a non-zero exit code when the
worker dies on an unexpected error.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Callable, Optional

from common.core.otel_axiom_exporter import _initialize_telemetry, get_logger
from common.workers.base_worker import BaseWorker

logger = get_logger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

CliSetup = Callable[[], tuple[argparse.Namespace, tuple, dict]]


class WorkerLauncher:
    """Runs one BaseWorker until it stops or the process is signalled."""

    def __init__(self):
        self.worker: Optional[BaseWorker] = None
        self.failed = False

    def _on_signal(self, signum: int) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, stopping worker")
        if self.worker:
            asyncio.ensure_future(self.worker.stop())

    async def _serve(self, worker: BaseWorker, worker_name: str):
        self.worker = worker
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._on_signal, signum)

        logger.info(f"Starting {worker_name} ({worker.worker_id})")
        try:
            await worker.start()
        except Exception as e:
            self.failed = True
            logger.error(f"{worker_name} crashed: {e}", exc_info=True)
        finally:
            for signum in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(signum)
            logger.info(f"{worker_name} stopped")

    def run(
        self,
        worker_factory: Callable[..., BaseWorker],
        worker_name: str,
        log_level: int = logging.INFO,
        factory_args: tuple = (),
        factory_kwargs: Optional[dict] = None,
    ) -> int:
        """
        Build the worker and block until it stops.

        Returns the process exit code: 0 after a clean stop, 1 when the
        worker raised out of start().
        """
        _initialize_telemetry()
        logging.basicConfig(level=log_level, format=LOG_FORMAT, force=True)

        worker = worker_factory(*factory_args, **(factory_kwargs or {}))
        try:
            asyncio.run(self._serve(worker, worker_name))
        except KeyboardInterrupt:
            logger.info("Interrupted before shutdown completed")
        return 1 if self.failed else 0

    def run_with_cli(
        self,
        worker_factory: Callable[..., BaseWorker],
        worker_name: str,
        cli_setup_func: Optional[CliSetup] = None,
    ):
        """Parse CLI options with cli_setup_func, run the worker, then exit."""
        log_level = logging.INFO
        factory_args, factory_kwargs = (), {}
        if cli_setup_func:
            args, factory_args, factory_kwargs = cli_setup_func()
            log_level = getattr(logging, getattr(args, "log_level", "INFO"))

        sys.exit(
            self.run(
                worker_factory,
                worker_name,
                log_level=log_level,
                factory_args=factory_args,
                factory_kwargs=factory_kwargs,
            )
        )
