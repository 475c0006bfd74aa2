"""Tests for daemon wiring and the command line entry point."""

import asyncio

from click.testing import CliRunner

from cronwatch import cli
from cronwatch.daemon import SchedulerDaemon


class TestSchedulerDaemon:
    def test_start_arms_tasks_and_shuts_down(self, config, descriptor):
        descriptor("a.yml", task_name="a", schedule="@daily", command="true")
        descriptor("b.yml", task_name="b", schedule="@hourly", command="true", enabled=False)
        daemon = SchedulerDaemon(config)

        async def scenario():
            running = asyncio.create_task(daemon.start())
            await asyncio.sleep(0.2)
            armed = [e.name for e in daemon.engine.entries()]
            watching = daemon.watcher.is_alive
            daemon.shutdown()
            await asyncio.wait_for(running, timeout=5)
            return armed, watching

        armed, watching = asyncio.run(scenario())

        assert armed == ["a"]
        assert watching
        assert not daemon.watcher.is_alive


class TestCli:
    def test_help(self):
        result = CliRunner().invoke(cli.main, ["--help"])

        assert result.exit_code == 0
        assert "--task-dir" in result.output
        assert "--overlap" in result.output

    def test_missing_task_directory_is_fatal(self, tmp_path, monkeypatch):
        monkeypatch.setattr(cli, "setup_logging", lambda config: None)

        result = CliRunner().invoke(
            cli.main,
            ["-c", str(tmp_path / "missing"), "-o", str(tmp_path / "out"), "--no-health"],
        )

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_invalid_overlap_policy(self):
        result = CliRunner().invoke(cli.main, ["--overlap", "sometimes"])

        assert result.exit_code == 2
