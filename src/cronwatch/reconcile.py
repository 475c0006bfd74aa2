"""Keeps the armed schedule in step with the descriptor directory."""

from __future__ import annotations

import functools
import logging
import threading
from collections import Counter
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from cronwatch.core import CronEngine
from cronwatch.errors import DirectoryReadError, ScheduleExpressionError, WatcherError
from cronwatch.executor import ExecutionTracker
from cronwatch.loader import DescriptorLoader
from cronwatch.metrics import SchedulerMetrics

logger = logging.getLogger(__name__)


class Reconciler:
    """Replaces the engine's entries with one per enabled descriptor."""

    def __init__(
        self,
        engine: CronEngine,
        loader: DescriptorLoader,
        tracker: ExecutionTracker,
        metrics: SchedulerMetrics | None = None,
    ) -> None:
        self.engine = engine
        self.loader = loader
        self.tracker = tracker
        self.metrics = metrics
        self._lock = threading.Lock()

    def reconcile(self) -> int:
        """Run one pass and return the number of armed entries."""
        with self._lock:
            try:
                tasks = self.loader.load()
            except DirectoryReadError as e:
                logger.error(f"Abandoning reconciliation: {e}")
                with self.engine.batch():
                    self._remove_all()
                self._report(0)
                return 0

            duplicates = [name for name, count in Counter(t.name for t in tasks).items() if count > 1]
            for name in duplicates:
                logger.warning(f"Task name '{name}' is declared by more than one descriptor")

            armed = 0
            with self.engine.batch():
                self._remove_all()

                for task in tasks:
                    if not task.enabled:
                        logger.debug(f"Skipping task {task.name} - task not enabled")
                        continue

                    logger.debug(f"Adding task {task.name}")

                    try:
                        self.engine.register(
                            task.schedule,
                            functools.partial(self.tracker.run, task),
                            task=task,
                        )
                    except ScheduleExpressionError as e:
                        logger.error(f"error: task '{task.name}': {e}")
                        if self.metrics:
                            self.metrics.schedule_failed(task.name)
                        continue

                    armed += 1

            self._report(armed)
            logger.info(f"Reconciled {armed} task(s) from {self.loader.directory}")
            return armed

    def _remove_all(self) -> None:
        for entry in self.engine.entries():
            logger.debug(f"Removing task #{entry.id}")
            self.engine.remove(entry.id)

    def _report(self, armed: int) -> None:
        if self.metrics:
            self.metrics.armed_tasks.set(armed)


class DescriptorEventHandler(FileSystemEventHandler):
    """Calls back on every write inside the watched directory."""

    def __init__(self, callback: Callable[[], object]) -> None:
        super().__init__()
        self.callback = callback

    def on_modified(self, event: FileSystemEvent) -> None:
        logger.debug(f"modified file: {event.src_path}")

        try:
            self.callback()
        except Exception:
            logger.exception("Reconciliation after file change failed")


class DirectoryWatcher:
    """Runs a watchdog observer on the descriptor directory."""

    def __init__(
        self,
        directory: Path | str,
        callback: Callable[[], object],
        recursive: bool = True,
    ) -> None:
        self.directory = Path(directory).expanduser()
        self.handler = DescriptorEventHandler(callback)
        self.recursive = recursive
        self._observer = None

    @property
    def is_alive(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def start(self) -> None:
        if not self.directory.is_dir():
            raise WatcherError(f"Cannot watch {self.directory}: not a directory")

        observer = Observer()
        observer.daemon = True
        try:
            observer.schedule(self.handler, str(self.directory), recursive=self.recursive)
            observer.start()
        except OSError as e:
            raise WatcherError(f"Cannot watch {self.directory}: {e}") from e

        self._observer = observer
        logger.info(f"Watching {self.directory} for changes")

    def stop(self, timeout: float = 2.0) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return

        observer.stop()
        observer.join(timeout=timeout)
