"""Task execution and status artifact management."""

from __future__ import annotations

import contextlib
import functools
import logging
import os
import signal
import subprocess
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from cronwatch.config import SchedulerConfig
from cronwatch.errors import CommandExecutionError, PersistenceError
from cronwatch.metrics import SchedulerMetrics
from cronwatch.models import ExecutionRecord, Outcome, OverlapPolicy, SaveOutput, Task

logger = logging.getLogger(__name__)

LAST_START = "last-start"
LAST_SUCCESS = "last-success"
LAST_FAILURE = "last-failure"

OUTPUT_FILE_PATTERN = {
    SaveOutput.ON_START: "stdout-{ts}.started",
    SaveOutput.ON_SUCCESS: "stdout-{ts}.succeeded",
    SaveOutput.ON_FAILURE: "stdout-{ts}.failed",
}


@dataclass
class ExecutionResult:
    success: bool
    exit_code: int | None
    output: str
    error: CommandExecutionError | None = None


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    with contextlib.suppress(ProcessLookupError, PermissionError):
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, sig)
        else:
            proc.kill()


class ProcessRegistry:
    """Command processes that are still running."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._procs: set[subprocess.Popen] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._procs)

    def add(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._procs.add(proc)

    def discard(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._procs.discard(proc)

    def terminate_all(self) -> int:
        """Send SIGTERM to every registered process group."""
        with self._lock:
            procs = list(self._procs)

        for proc in procs:
            _signal_group(proc, signal.SIGTERM)
        return len(procs)


def execute_command(
    shell: str,
    command: str,
    timeout: int | None = None,
    processes: ProcessRegistry | None = None,
) -> ExecutionResult:
    """Run a command line through ``shell -c`` and capture combined output.

    The command gets its own process group so a timeout or shutdown can
    signal the shell together with everything it started.
    """
    try:
        proc = subprocess.Popen(
            [shell, "-c", command],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            start_new_session=True,
        )
    except OSError as e:
        return ExecutionResult(
            success=False,
            exit_code=None,
            output="",
            error=CommandExecutionError(str(e)),
        )

    if processes is not None:
        processes.add(proc)

    try:
        try:
            output, _ = proc.communicate(timeout=timeout if timeout else None)
        except subprocess.TimeoutExpired:
            _signal_group(proc, signal.SIGKILL)
            output, _ = proc.communicate()
            return ExecutionResult(
                success=False,
                exit_code=None,
                output=output or "",
                error=CommandExecutionError(f"command timed out after {timeout} seconds"),
            )
    finally:
        if processes is not None:
            processes.discard(proc)

    if proc.returncode < 0:
        return ExecutionResult(
            success=False,
            exit_code=proc.returncode,
            output=output,
            error=CommandExecutionError(f"terminated by signal {-proc.returncode}"),
        )

    if proc.returncode != 0:
        return ExecutionResult(
            success=False,
            exit_code=proc.returncode,
            output=output,
            error=CommandExecutionError(f"exit status {proc.returncode}"),
        )

    return ExecutionResult(success=True, exit_code=0, output=output)


def format_timestamp(moment: datetime) -> str:
    """Human readable timestamp used as marker content."""
    return moment.astimezone().strftime("%Y-%m-%d %H:%M:%S.%f %z %Z")


def write_output(directory: Path, filename: str, content: str) -> Path:
    """Write one status file, creating its directory on demand."""
    path = directory / filename
    try:
        directory.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise PersistenceError(f"Cannot write {path}: {e}") from e
    return path


class ExecutionTracker:
    """Runs tasks and records their start, outcome and output on disk."""

    def __init__(
        self,
        config: SchedulerConfig,
        metrics: SchedulerMetrics | None = None,
        runner: Callable[..., ExecutionResult] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.metrics = metrics
        self.processes = ProcessRegistry()
        self.runner = runner or functools.partial(execute_command, processes=self.processes)
        self.clock = clock

        self._lock = threading.Lock()
        self._active: dict[str, int] = {}
        self._queued: dict[str, deque[Task]] = {}

    @property
    def active_count(self) -> int:
        with self._lock:
            return sum(self._active.values())

    def is_running(self, name: str) -> bool:
        with self._lock:
            return self._active.get(name, 0) > 0

    def queued_count(self, name: str) -> int:
        with self._lock:
            return len(self._queued.get(name, ()))

    def policy_for(self, task: Task) -> OverlapPolicy:
        return task.overlap or self.config.overlap_policy

    def task_dir(self, task: Task) -> Path:
        return Path(self.config.output_dir) / task.name

    def run(self, task: Task) -> ExecutionRecord | None:
        """Execute one run of a task.

        Returns None when the run was skipped, or deferred under the queue
        policy. A deferred run is executed by the thread of the instance
        already running, after it finishes.
        """
        policy = self.policy_for(task)

        with self._lock:
            if self._active.get(task.name, 0) > 0:
                if policy is OverlapPolicy.SKIP:
                    logger.warning(f"Skipping task {task.name} - previous run still in progress")
                    return None
                if policy is OverlapPolicy.QUEUE:
                    self._queued.setdefault(task.name, deque()).append(task)
                    logger.info(f"Task {task.name} queued behind its running instance")
                    return None
            self._active[task.name] = self._active.get(task.name, 0) + 1

        released = False
        try:
            record = self._execute(task)
            while True:
                # pop and release under the same lock that run() enqueues under
                with self._lock:
                    pending = self._queued.get(task.name)
                    if not pending:
                        self._release(task.name)
                        released = True
                        break
                    queued = pending.popleft()
                    if not pending:
                        del self._queued[task.name]
                self._execute(queued)
        finally:
            if not released:
                with self._lock:
                    self._release(task.name)

        return record

    def _release(self, name: str) -> None:
        self._active[name] -= 1
        if not self._active[name]:
            del self._active[name]

    def terminate(self) -> int:
        """Drop queued runs and signal every command still running."""
        with self._lock:
            dropped = sum(len(pending) for pending in self._queued.values())
            self._queued.clear()

        if dropped:
            logger.info(f"Dropped {dropped} queued run(s)")
        return self.processes.terminate_all()

    def _execute(self, task: Task) -> ExecutionRecord:
        logger.debug(f"Starting task {task.name}")

        started_at = self.clock()
        self._write(task, LAST_START, format_timestamp(started_at))
        if task.saves(SaveOutput.ON_START):
            self._write_output(task, SaveOutput.ON_START, task.command)

        result = self.runner(self.config.shell, task.command, task.timeout or None)
        finished_at = max(self.clock(), started_at)

        if result.success:
            outcome = Outcome.SUCCEEDED
            self._write(task, LAST_SUCCESS, format_timestamp(finished_at))
            if task.saves(SaveOutput.ON_SUCCESS):
                self._write_output(task, SaveOutput.ON_SUCCESS, result.output)
            logger.info(f"[{task.name}] output is:\n{result.output}")
        else:
            outcome = Outcome.FAILED
            detail = str(result.error)
            if result.output:
                detail = f"{detail}\n{result.output}"
            self._write(task, LAST_FAILURE, format_timestamp(finished_at))
            if task.saves(SaveOutput.ON_FAILURE):
                self._write_output(task, SaveOutput.ON_FAILURE, detail)
            logger.error(f"Task '{task.name}' failed: {result.error}")

        if self.metrics:
            self.metrics.execution_finished(task.name, outcome.value)

        logger.debug(f"Ending task {task.name}")

        return ExecutionRecord(
            task_name=task.name,
            started_at=started_at,
            finished_at=finished_at,
            outcome=outcome,
            output=result.output,
            error=str(result.error) if result.error else "",
        )

    def _write_output(self, task: Task, kind: SaveOutput, text: str) -> None:
        now = self.clock()
        filename = OUTPUT_FILE_PATTERN[kind].format(ts=int(now.timestamp()))
        self._write(task, filename, f"{format_timestamp(now)}\n{text}")

    def _write(self, task: Task, filename: str, content: str) -> None:
        try:
            write_output(self.task_dir(task), filename, content)
        except PersistenceError as e:
            logger.error(f"error: {e}")
            if self.metrics:
                self.metrics.write_failed(task.name)
