"""Command line interface for cronwatch."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click
from colorama import Fore, init

from cronwatch import __version__
from cronwatch.config import (
    DEFAULT_HEALTH_HOST,
    DEFAULT_HEALTH_PORT,
    DEFAULT_MAX_WORKERS,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_SHELL,
    DEFAULT_TASK_DIR,
    SchedulerConfig,
)
from cronwatch.daemon import SchedulerDaemon, setup_logging
from cronwatch.errors import HealthServerError, WatcherError
from cronwatch.models import OverlapPolicy

init(autoreset=True)


@click.command(context_settings={"auto_envvar_prefix": "CRONWATCH"})
@click.version_option(version=__version__, prog_name="cronwatch")
@click.option(
    "--task-dir", "-c",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_TASK_DIR,
    show_default=True,
    help="Directory holding the task descriptor files",
)
@click.option(
    "--output-dir", "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_OUTPUT_DIR,
    show_default=True,
    help="Where to save task markers and output",
)
@click.option("--shell", "-sh", default=DEFAULT_SHELL, show_default=True, help="Shell path")
@click.option("--port", "-p", type=int, default=DEFAULT_HEALTH_PORT, show_default=True, help="Health check port")
@click.option("--host", default=DEFAULT_HEALTH_HOST, show_default=True, help="Health check host")
@click.option("--health/--no-health", default=True, help="Serve /healhtz and /metrics")
@click.option(
    "--overlap",
    type=click.Choice([p.value for p in OverlapPolicy]),
    default=OverlapPolicy.ALLOW.value,
    show_default=True,
    help="What to do when a task is due while still running",
)
@click.option("--max-workers", type=int, default=DEFAULT_MAX_WORKERS, show_default=True, help="Concurrent task runs")
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Also log to this file")
@click.option("--verbose", "-v", is_flag=True, help="Increase verbosity")
def main(
    task_dir: Path,
    output_dir: Path,
    shell: str,
    port: int,
    host: str,
    health: bool,
    overlap: str,
    max_workers: int,
    log_file: Path | None,
    verbose: bool,
) -> None:
    """Run tasks declared by descriptor files on their cron schedules."""
    try:
        config = SchedulerConfig(
            task_dir=task_dir,
            output_dir=output_dir,
            shell=shell,
            health_enabled=health,
            health_host=host,
            health_port=port,
            overlap_policy=OverlapPolicy(overlap),
            max_workers=max_workers,
            verbose=verbose,
            log_file=log_file,
        )
    except ValueError as e:
        click.echo(f"{Fore.RED}Error: {e}", err=True)
        sys.exit(2)

    setup_logging(config)
    daemon = SchedulerDaemon(config)

    try:
        asyncio.run(daemon.start())
    except (WatcherError, HealthServerError) as e:
        click.echo(f"{Fore.RED}Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
