"""Shared fixtures for the scheduler tests."""

import functools
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import yaml

from cronwatch.config import SchedulerConfig
from cronwatch.metrics import SchedulerMetrics


class InlineExecutor(Executor):
    """Runs submitted callables immediately in the calling thread."""

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)
        return future


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 12, 0, 0))


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def metrics():
    return SchedulerMetrics()


@pytest.fixture
def task_dir(tmp_path):
    path = tmp_path / "tasks"
    path.mkdir()
    return path


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / "output"


@pytest.fixture
def config(task_dir, output_dir):
    return SchedulerConfig(task_dir=task_dir, output_dir=output_dir, health_enabled=False)


def write_descriptor(directory: Path, filename: str, **fields) -> Path:
    path = directory / filename
    path.write_text(yaml.safe_dump(fields), encoding="utf-8")
    return path


@pytest.fixture
def descriptor(task_dir):
    return functools.partial(write_descriptor, task_dir)
