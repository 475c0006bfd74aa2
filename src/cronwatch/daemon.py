"""Daemon wiring for the scheduler."""

from __future__ import annotations

import asyncio
import logging
import signal

from cronwatch.config import LOG_FORMAT, SchedulerConfig
from cronwatch.core import CronEngine
from cronwatch.executor import ExecutionTracker
from cronwatch.loader import DescriptorLoader
from cronwatch.metrics import SchedulerMetrics
from cronwatch.reconcile import DirectoryWatcher, Reconciler

logger = logging.getLogger(__name__)


def setup_logging(config: SchedulerConfig) -> None:
    """Setup logging configuration."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.log_file:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_file))

    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    if not config.verbose:
        # watchdog is chatty at debug level and uvicorn logs every request
        logging.getLogger("watchdog").setLevel(logging.WARNING)
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class SchedulerDaemon:
    """Scheduler daemon with an optional health check server."""

    def __init__(self, config: SchedulerConfig) -> None:
        self.config = config

        self.metrics = SchedulerMetrics()
        self.engine = CronEngine(max_workers=config.max_workers)
        self.tracker = ExecutionTracker(config, metrics=self.metrics)
        self.loader = DescriptorLoader(config.task_dir, metrics=self.metrics)
        self.reconciler = Reconciler(self.engine, self.loader, self.tracker, metrics=self.metrics)
        self.watcher = DirectoryWatcher(config.task_dir, self.reconciler.reconcile)

        self.server = None
        self._shutdown_event: asyncio.Event | None = None

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for shutdown."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.shutdown)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(self.shutdown))

    async def start(self) -> None:
        """Start the daemon and run until a shutdown is requested.

        Raises WatcherError or HealthServerError when the directory watch or
        the health check listener cannot be set up.
        """
        logger.info("Starting scheduler daemon...")

        self._shutdown_event = asyncio.Event()
        sock = None

        if self.config.health_enabled:
            from cronwatch.health import HealthServer, bind_socket, create_health_app
            import uvicorn

            sock = bind_socket(self.config.health_host, self.config.health_port)
            logger.info(
                f"Health check on http://{self.config.health_host}:{self.config.health_port}/healhtz"
            )
            server_config = uvicorn.Config(
                create_health_app(self.engine, self.tracker, self.metrics),
                log_level="debug" if self.config.verbose else "warning",
            )
            self.server = HealthServer(server_config)

        self.reconciler.reconcile()

        try:
            self.watcher.start()
        except Exception:
            if sock is not None:
                sock.close()
            raise

        self._setup_signal_handlers()

        tasks = [asyncio.create_task(self.engine.start())]
        if self.server is not None:
            tasks.append(asyncio.create_task(self.server.serve(sockets=[sock])))

        logger.info("Scheduler daemon started")

        try:
            await self._shutdown_event.wait()
        finally:
            self._stop_components()
            await asyncio.gather(*tasks, return_exceptions=True)
            if sock is not None:
                sock.close()
            self.engine.shutdown()
            terminated = self.tracker.terminate()
            if terminated:
                logger.info(f"Terminated {terminated} running command(s)")
            logger.info("Scheduler daemon stopped")

    def shutdown(self) -> None:
        """Request daemon shutdown."""
        logger.info("Shutting down scheduler daemon...")
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def _stop_components(self) -> None:
        self.engine.stop()
        self.watcher.stop()
        if self.server is not None:
            self.server.should_exit = True
