"""Cron scheduling engine with a single dispatch loop."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import re
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterator

from croniter import CroniterError, croniter

from cronwatch.config import DEFAULT_MAX_WORKERS, MAX_IDLE_SECONDS
from cronwatch.errors import ScheduleExpressionError
from cronwatch.models import ScheduleEntry, Task

logger = logging.getLogger(__name__)

SPECIAL_SCHEDULES = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

_DURATION_PART = re.compile(r"(\d+)(h|m|s)")


class CronSchedule:
    """A parsed cron expression."""

    def __init__(self, expression: str, cron: str) -> None:
        self.expression = expression
        self._iter = croniter(cron, datetime.now())

    def next_after(self, moment: datetime) -> datetime:
        self._iter.set_current(moment, force=True)
        try:
            return self._iter.get_next(datetime)
        except CroniterError as e:
            raise ScheduleExpressionError(self.expression, str(e)) from None


class EverySchedule:
    """A fixed interval, written as ``@every 1h30m``."""

    def __init__(self, expression: str, interval: timedelta) -> None:
        self.expression = expression
        self.interval = interval

    def next_after(self, moment: datetime) -> datetime:
        return moment.replace(microsecond=0) + self.interval


def parse_duration(text: str) -> timedelta:
    """Parse durations like ``90s``, ``5m`` or ``1h30m``."""
    text = text.strip().lower()
    if not text or _DURATION_PART.sub("", text):
        raise ValueError(f"bad duration {text!r}")

    units = {"h": 3600, "m": 60, "s": 1}
    seconds = sum(int(value) * units[unit] for value, unit in _DURATION_PART.findall(text))
    if seconds <= 0:
        raise ValueError("duration must be positive")
    return timedelta(seconds=seconds)


def parse_schedule(expression: str) -> CronSchedule | EverySchedule:
    """Parse a schedule expression or raise ScheduleExpressionError."""
    if not isinstance(expression, str) or not expression.strip():
        raise ScheduleExpressionError(str(expression), "empty expression")

    text = " ".join(expression.split())

    if text.startswith("@every "):
        try:
            return EverySchedule(text, parse_duration(text[len("@every "):]))
        except ValueError as e:
            raise ScheduleExpressionError(expression, str(e)) from None

    if text.startswith("@"):
        if text not in SPECIAL_SCHEDULES:
            raise ScheduleExpressionError(expression, "unknown descriptor")
        return CronSchedule(text, SPECIAL_SCHEDULES[text])

    if len(text.split(" ")) not in (5, 6):
        raise ScheduleExpressionError(expression, "expected 5 or 6 fields")

    if not croniter.is_valid(text):
        raise ScheduleExpressionError(expression)

    # is_valid accepts dates that never occur, such as 30 February
    schedule = CronSchedule(text, text)
    schedule.next_after(datetime.now())
    return schedule


@dataclass
class _Job:
    id: int
    schedule: CronSchedule | EverySchedule
    callback: Callable[[], object]
    next_run: datetime
    prev_run: datetime | None = None
    task: Task | None = None

    def snapshot(self) -> ScheduleEntry:
        return ScheduleEntry(
            id=self.id,
            schedule=self.schedule.expression,
            next_run=self.next_run,
            prev_run=self.prev_run,
            task=self.task,
        )


class CronEngine:
    """Owns the armed schedule entries and fires them when due.

    Every access to the entry set goes through one re-entrant lock, so a
    reconciliation pass holding ``batch()`` is seen by the dispatch loop
    either entirely before or entirely after it.
    """

    def __init__(
        self,
        executor: Executor | None = None,
        clock: Callable[[], datetime] = datetime.now,
        max_workers: int = DEFAULT_MAX_WORKERS,
        max_idle: float = MAX_IDLE_SECONDS,
    ) -> None:
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="cronwatch-run"
        )
        self.clock = clock
        self.max_idle = max_idle

        self._lock = threading.RLock()
        self._jobs: dict[int, _Job] = {}
        self._ids = itertools.count(1)
        self._inflight: set[Future] = set()
        self._inflight_lock = threading.Lock()

        self._running = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup: asyncio.Event | None = None

    def register(
        self,
        schedule: str,
        callback: Callable[[], object],
        task: Task | None = None,
    ) -> int:
        """Arm a callback; raises ScheduleExpressionError for bad syntax."""
        parsed = parse_schedule(schedule)

        with self._lock:
            entry_id = next(self._ids)
            self._jobs[entry_id] = _Job(
                id=entry_id,
                schedule=parsed,
                callback=callback,
                next_run=parsed.next_after(self.clock()),
                task=task,
            )

        self._notify()
        return entry_id

    def remove(self, entry_id: int) -> None:
        """Disarm an entry. Unknown ids are ignored."""
        with self._lock:
            removed = self._jobs.pop(entry_id, None)

        if removed is not None:
            self._notify()

    def entries(self) -> list[ScheduleEntry]:
        """Snapshot of the armed entries, soonest first."""
        with self._lock:
            jobs = list(self._jobs.values())

        return sorted((job.snapshot() for job in jobs), key=lambda e: (e.next_run, e.id))

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    @contextlib.contextmanager
    def batch(self) -> Iterator[CronEngine]:
        """Hold the entry lock across several register/remove calls."""
        with self._lock:
            yield self
        self._notify()

    @property
    def running_count(self) -> int:
        with self._inflight_lock:
            return len(self._inflight)

    def run_pending(self, now: datetime | None = None) -> list[ScheduleEntry]:
        """Fire every entry due at ``now`` and return what was fired."""
        fired = []

        with self._lock:
            now = now or self.clock()
            for job in list(self._jobs.values()):
                if job.next_run > now:
                    continue

                job.prev_run = job.next_run
                try:
                    job.next_run = job.schedule.next_after(now)
                except ScheduleExpressionError as e:
                    logger.error(f"Disarming entry #{job.id}: {e}")
                    del self._jobs[job.id]
                entry = job.snapshot()
                self._dispatch(entry, job.callback)
                fired.append(entry)

        return fired

    def _dispatch(self, entry: ScheduleEntry, callback: Callable[[], object]) -> None:
        logger.debug(f"Dispatching entry #{entry.id} ({entry.name or entry.schedule})")

        future = self.executor.submit(self._invoke, entry, callback)
        with self._inflight_lock:
            self._inflight.add(future)
        future.add_done_callback(self._discard)

    def _discard(self, future: Future) -> None:
        with self._inflight_lock:
            self._inflight.discard(future)

    @staticmethod
    def _invoke(entry: ScheduleEntry, callback: Callable[[], object]) -> None:
        try:
            callback()
        except Exception:
            logger.exception(f"Callback for entry #{entry.id} ({entry.name or entry.schedule}) failed")

    def seconds_until_next(self, now: datetime | None = None) -> float:
        """Time the dispatch loop may sleep before something is due."""
        with self._lock:
            now = now or self.clock()
            upcoming = [job.next_run for job in self._jobs.values()]

        if not upcoming:
            return self.max_idle

        delay = (min(upcoming) - now).total_seconds()
        return min(max(delay, 0.0), self.max_idle)

    async def start(self) -> None:
        """Run the dispatch loop until stop() is called."""
        if self._running:
            return

        self._running = True
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()

        logger.info("Scheduler started")

        try:
            while self._running:
                self._wakeup.clear()

                try:
                    self.run_pending()
                except Exception as e:
                    logger.error(f"Error in scheduler loop: {e}")

                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self.seconds_until_next())
        finally:
            self._running = False
            self._loop = None
            self._wakeup = None

    def stop(self) -> None:
        """Stop the dispatch loop. In-flight callbacks keep running."""
        self._running = False
        self._notify()
        logger.info("Scheduler stopped")

    def shutdown(self) -> None:
        """Release the worker pool. Runs not yet started are cancelled."""
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _notify(self) -> None:
        loop, wakeup = self._loop, self._wakeup
        if loop is None or wakeup is None or loop.is_closed():
            return

        try:
            loop.call_soon_threadsafe(wakeup.set)
        except RuntimeError:
            # loop closed between the check and the call
            pass
