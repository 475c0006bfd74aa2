"""cronwatch - cron scheduler driven by a watched directory of task descriptors."""

__version__ = "0.1.0"

from cronwatch.models import Task, ExecutionRecord, ScheduleEntry, SaveOutput, OverlapPolicy, Outcome
from cronwatch.config import SchedulerConfig
from cronwatch.loader import DescriptorLoader
from cronwatch.core import CronEngine
from cronwatch.executor import ExecutionTracker
from cronwatch.reconcile import Reconciler, DirectoryWatcher

__all__ = [
    "Task",
    "ExecutionRecord",
    "ScheduleEntry",
    "SaveOutput",
    "OverlapPolicy",
    "Outcome",
    "SchedulerConfig",
    "DescriptorLoader",
    "CronEngine",
    "ExecutionTracker",
    "Reconciler",
    "DirectoryWatcher",
]
