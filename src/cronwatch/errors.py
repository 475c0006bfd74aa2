"""Exceptions raised by the scheduler."""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for scheduler errors."""


class DescriptorParseError(SchedulerError):
    """A descriptor file is malformed or misses required attributes."""

    def __init__(self, path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class ScheduleExpressionError(SchedulerError, ValueError):
    """A cron expression cannot be parsed."""

    def __init__(self, expression: str, reason: str = "") -> None:
        self.expression = expression
        message = f"Invalid cron expression: {expression!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


InvalidScheduleExpression = ScheduleExpressionError


class DirectoryReadError(SchedulerError):
    """The descriptor directory cannot be enumerated."""


class CommandExecutionError(SchedulerError):
    """A task command exited non-zero or failed to start."""


class PersistenceError(SchedulerError):
    """A marker or output file could not be written."""


class WatcherError(SchedulerError):
    """The descriptor directory watcher could not be started."""


class HealthServerError(SchedulerError):
    """The health check listener could not be bound."""
