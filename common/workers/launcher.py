"""
Common worker launcher: telemetry, logging, signals and lifecycle for worker processes.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional, Any, Callable

from common.core.otel_axiom_exporter import _initialize_telemetry, get_logger


class WorkerLauncher:
    """Common worker launcher that handles boilerplate setup, signals, and lifecycle."""

    def __init__(self):
        self.logger = get_logger(__name__)
        self.worker_instance: Optional[Any] = None

    def _setup_logging(self):
        """Configure logging at module level."""
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            force=True,  # This ensures it overrides any existing configuration
        )

    def _register_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> list:
        """Stop the worker gracefully on SIGINT/SIGTERM. Returns the signals registered."""
        registered = []
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(
                    signum, lambda s=signum: asyncio.ensure_future(self._shutdown(s))
                )
                registered.append(signum)
            except (NotImplementedError, RuntimeError):
                # Windows loops and non-main threads do not support signal handlers
                pass
        return registered

    async def _shutdown(self, signum: int):
        self.logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        if self.worker_instance:
            await self.worker_instance.stop()

    async def _run_worker_async(self, worker_instance: Any, worker_name: str) -> int:
        """Run worker with common lifecycle management. Returns the process exit code."""
        self.worker_instance = worker_instance
        loop = asyncio.get_running_loop()
        registered = self._register_signal_handlers(loop)

        try:
            self.logger.info(f"Starting {worker_name}...")
            await worker_instance.start()
            return 0
        except Exception as e:
            self.logger.error(f"Worker failed with error: {e}", exc_info=True)
            return 1
        finally:
            for signum in registered:
                loop.remove_signal_handler(signum)
            self.logger.info("Worker shutdown complete")

    def run(
        self,
        worker_factory: Callable,
        worker_name: str,
        setup_logging: bool = True,
        factory_args: tuple = (),
        factory_kwargs: dict = None,
        log_level: Optional[str] = None,
    ):
        """
        Main entry point to run a worker.

        Args:
            worker_factory: Function/class that creates the worker instance
            worker_name: Human readable name for logging
            setup_logging: Whether to setup logging configuration
            log_level: Root logger level name, applied after logging setup
            factory_args: Args to pass to worker factory
            factory_kwargs: Kwargs to pass to worker factory
        """
        if factory_kwargs is None:
            factory_kwargs = {}

        # Initialize telemetry
        _initialize_telemetry()

        if setup_logging:
            self._setup_logging()
        if log_level:
            logging.getLogger().setLevel(getattr(logging, log_level))

        self.logger.info(f"Configuring {worker_name}...")

        worker_instance = worker_factory(*factory_args, **factory_kwargs)

        try:
            exit_code = asyncio.run(self._run_worker_async(worker_instance, worker_name))
        except KeyboardInterrupt:
            self.logger.info("Final keyboard interrupt caught, exiting...")
            exit_code = 0
        sys.exit(exit_code)

    def run_with_cli(
        self,
        worker_factory: Callable,
        worker_name: str,
        setup_logging: bool = True,
        cli_setup_func: Optional[Callable] = None,
    ):
        """
        Run worker with CLI argument parsing support.

        Args:
            worker_factory: Function/class that creates the worker instance
            worker_name: Human readable name for logging
            setup_logging: Whether to setup logging configuration
            cli_setup_func: Function that sets up argument parser and returns (args, factory_args, factory_kwargs)
        """
        if cli_setup_func:
            args, factory_args, factory_kwargs = cli_setup_func()
        else:
            args, factory_args, factory_kwargs = None, (), {}

        self.run(
            worker_factory=worker_factory,
            worker_name=worker_name,
            setup_logging=setup_logging,
            factory_args=factory_args,
            factory_kwargs=factory_kwargs,
            log_level=getattr(args, "log_level", None),
        )
