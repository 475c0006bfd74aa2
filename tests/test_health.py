"""Tests for the health check and metrics endpoints."""

import socket

import pytest
from starlette.testclient import TestClient

from cronwatch.core import CronEngine
from cronwatch.errors import HealthServerError
from cronwatch.executor import ExecutionTracker
from cronwatch.health import bind_socket, create_health_app
from cronwatch.loader import DescriptorLoader


@pytest.fixture
def engine(clock, inline_executor):
    return CronEngine(executor=inline_executor, clock=clock)


@pytest.fixture
def client(engine, config, metrics):
    app = create_health_app(engine, ExecutionTracker(config, metrics=metrics), metrics)
    return TestClient(app)


class TestHealthEndpoint:
    def test_reports_armed_tasks(self, client, engine):
        engine.register("* * * * *", lambda: None)
        engine.register("@daily", lambda: None)

        response = client.get("/healhtz")

        assert response.status_code == 200
        lines = response.text.splitlines()
        assert lines[0] == "tasks: 2"
        assert lines[1].startswith("processes: ")
        assert lines[2] == "running: 0"

    def test_conventional_spelling(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.text.startswith("tasks: 0\n")


class TestMetricsEndpoint:
    def test_exposes_parse_failures(self, client, task_dir, metrics):
        (task_dir / "broken.yml").write_text("schedule: '* * * * *'\n", encoding="utf-8")
        DescriptorLoader(task_dir, metrics).load()

        response = client.get("/metrics")

        assert response.status_code == 200
        assert 'scheduler_yaml_parse_failure_total{file_name="broken.yml"} 1.0' in response.text


class TestBindSocket:
    def test_busy_port_fails_at_startup(self):
        holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        holder.bind(("127.0.0.1", 0))
        holder.listen()
        port = holder.getsockname()[1]

        try:
            with pytest.raises(HealthServerError):
                bind_socket("127.0.0.1", port)
        finally:
            holder.close()

    def test_binds_free_port(self):
        sock = bind_socket("127.0.0.1", 0)
        try:
            assert sock.getsockname()[1] > 0
        finally:
            sock.close()
