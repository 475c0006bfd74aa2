"""Tests for scheduler models."""

import pytest
from datetime import datetime, timedelta

from pydantic import ValidationError

from cronwatch.models import (
    DEFAULT_SAVE_OUTPUT,
    ExecutionRecord,
    Outcome,
    OverlapPolicy,
    SaveOutput,
    Task,
)


class TestTask:
    def test_task_creation(self):
        task = Task(
            task_name="test-task",
            schedule="0 2 * * *",
            command="echo hello",
        )

        assert task.name == "test-task"
        assert task.schedule == "0 2 * * *"
        assert task.command == "echo hello"
        assert task.enabled is True
        assert task.save_output == DEFAULT_SAVE_OUTPUT
        assert task.timeout == 0
        assert task.overlap is None

    def test_populate_by_field_name(self):
        task = Task(name="by-name", schedule="* * * * *", command="cmd")
        assert task.name == "by-name"

    def test_task_validation(self):
        Task(task_name="test", schedule="0 2 * * *", command="cmd")

        with pytest.raises(ValueError):
            Task(task_name="", schedule="* * * * *", command="cmd")

        with pytest.raises(ValueError):
            Task(task_name="a/b", schedule="* * * * *", command="cmd")

        with pytest.raises(ValueError):
            Task(task_name="test", schedule="   ", command="cmd")

        with pytest.raises(ValueError):
            Task(task_name="test", schedule="* * * * *", command="")

    def test_schedule_is_not_validated_by_model(self):
        task = Task(task_name="test", schedule="not a cron", command="cmd")
        assert task.schedule == "not a cron"

    def test_task_is_immutable(self):
        task = Task(task_name="test", schedule="* * * * *", command="cmd")

        with pytest.raises(ValidationError):
            task.command = "other"


class TestSaveOutput:
    def test_comma_separated(self):
        task = Task(task_name="t", schedule="* * * * *", command="c", save_output="on-start, on-failure")
        assert task.save_output == {SaveOutput.ON_START, SaveOutput.ON_FAILURE}

    def test_list(self):
        task = Task(task_name="t", schedule="* * * * *", command="c", save_output=["on-success"])
        assert task.saves(SaveOutput.ON_SUCCESS)
        assert not task.saves(SaveOutput.ON_FAILURE)

    def test_empty_string_saves_nothing(self):
        task = Task(task_name="t", schedule="* * * * *", command="c", save_output="")
        assert task.save_output == frozenset()

    def test_unknown_flag_rejected(self):
        with pytest.raises(ValueError):
            Task(task_name="t", schedule="* * * * *", command="c", save_output="on-success,always")


class TestOverlap:
    def test_parse(self):
        task = Task(task_name="t", schedule="* * * * *", command="c", overlap="Skip")
        assert task.overlap is OverlapPolicy.SKIP

    def test_invalid(self):
        with pytest.raises(ValueError):
            Task(task_name="t", schedule="* * * * *", command="c", overlap="sometimes")


class TestExecutionRecord:
    def test_duration(self):
        start = datetime(2024, 1, 1, 12, 0, 0)
        record = ExecutionRecord(
            task_name="t",
            started_at=start,
            finished_at=start + timedelta(seconds=3),
            outcome=Outcome.SUCCEEDED,
        )

        assert record.succeeded
        assert record.duration_seconds == 3

    def test_finish_before_start_rejected(self):
        start = datetime(2024, 1, 1, 12, 0, 0)

        with pytest.raises(ValueError):
            ExecutionRecord(
                task_name="t",
                started_at=start,
                finished_at=start - timedelta(seconds=1),
                outcome=Outcome.FAILED,
            )
