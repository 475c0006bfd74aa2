"""Task data models for the scheduler."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SaveOutput(str, Enum):
    ON_START = "on-start"
    ON_SUCCESS = "on-success"
    ON_FAILURE = "on-failure"


DEFAULT_SAVE_OUTPUT = frozenset({SaveOutput.ON_SUCCESS, SaveOutput.ON_FAILURE})


class OverlapPolicy(str, Enum):
    """What to do when a task is due while its previous run is still going."""

    ALLOW = "allow"
    SKIP = "skip"
    QUEUE = "queue"


class Outcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Task(BaseModel):
    """One task as declared by a descriptor file."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(alias="task_name")
    schedule: str
    command: str
    save_output: frozenset[SaveOutput] = DEFAULT_SAVE_OUTPUT
    enabled: bool = True
    timeout: int = Field(default=0, ge=0)
    overlap: OverlapPolicy | None = None
    source: Path | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Task name cannot be empty")
        if re.search(r'[<>:"/\\|?*]', v) or v.strip() in (".", ".."):
            raise ValueError("Task name contains invalid characters")
        return v.strip()

    @field_validator("schedule", "command")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("save_output", mode="before")
    @classmethod
    def parse_save_output(cls, v: Any) -> Any:
        if v is None:
            return DEFAULT_SAVE_OUTPUT
        if isinstance(v, str):
            v = [part.strip() for part in v.split(",")]
        if isinstance(v, (list, tuple, set, frozenset)):
            flags = set()
            for item in v:
                if isinstance(item, SaveOutput):
                    flags.add(item)
                    continue
                item = str(item).strip().lower()
                if not item:
                    continue
                try:
                    flags.add(SaveOutput(item))
                except ValueError:
                    raise ValueError(f"Unknown save_output flag: {item}") from None
            return frozenset(flags)
        return v

    @field_validator("overlap", mode="before")
    @classmethod
    def parse_overlap(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower() or None
        return v

    def saves(self, flag: SaveOutput) -> bool:
        return flag in self.save_output


class ExecutionRecord(BaseModel):
    task_name: str
    started_at: datetime
    finished_at: datetime
    outcome: Outcome
    output: str = ""
    error: str = ""

    @model_validator(mode="after")
    def check_timestamps(self) -> ExecutionRecord:
        if self.finished_at < self.started_at:
            raise ValueError("finished_at must not precede started_at")
        return self

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCEEDED

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


@dataclass(frozen=True)
class ScheduleEntry:
    """Point-in-time view of one armed schedule entry."""

    id: int
    schedule: str
    next_run: datetime
    prev_run: datetime | None = None
    task: Task | None = None

    @property
    def name(self) -> str | None:
        return self.task.name if self.task else None
