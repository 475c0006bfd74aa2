"""Configuration and constants for the scheduler."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from cronwatch.models import OverlapPolicy

DEFAULT_TASK_DIR = Path("./example-tasks")
DEFAULT_OUTPUT_DIR = Path("/var/spool/cronwatch")
DEFAULT_SHELL = "/bin/sh"

DEFAULT_HEALTH_HOST = "0.0.0.0"
DEFAULT_HEALTH_PORT = 8000
DEFAULT_MAX_WORKERS = 32

# Upper bound for one dispatch sleep, so wall clock jumps are noticed.
MAX_IDLE_SECONDS = 60.0

DESCRIPTOR_SUFFIXES = (".yml", ".yaml", ".md")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SchedulerConfig(BaseModel):
    """Settings shared by every component of a running scheduler."""

    task_dir: Path = DEFAULT_TASK_DIR
    output_dir: Path = DEFAULT_OUTPUT_DIR
    shell: str = DEFAULT_SHELL
    health_enabled: bool = True
    health_host: str = DEFAULT_HEALTH_HOST
    health_port: int = Field(default=DEFAULT_HEALTH_PORT, ge=0, le=65535)
    overlap_policy: OverlapPolicy = OverlapPolicy.ALLOW
    max_workers: int = Field(default=DEFAULT_MAX_WORKERS, ge=1)
    verbose: bool = False
    log_file: Path | None = None
