"""Prometheus counters exposed on the metrics endpoint."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class SchedulerMetrics:
    """Holds the scheduler's collectors in a registry of its own."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.descriptor_parse_failures = Counter(
            "scheduler_yaml_parse_failure",
            "Malformed or incomplete descriptor file",
            ["file_name"],
            registry=self.registry,
        )
        self.schedule_parse_failures = Counter(
            "scheduler_job_parse_failure",
            "Job parse error",
            ["job_name"],
            registry=self.registry,
        )
        self.output_write_failures = Counter(
            "scheduler_output_write_failure",
            "Marker or output file could not be written",
            ["task_name"],
            registry=self.registry,
        )
        self.executions = Counter(
            "scheduler_task_executions",
            "Finished task executions",
            ["task_name", "outcome"],
            registry=self.registry,
        )
        self.armed_tasks = Gauge(
            "scheduler_armed_tasks",
            "Schedule entries armed by the last reconciliation pass",
            registry=self.registry,
        )

    def descriptor_failed(self, file_name: str) -> None:
        self.descriptor_parse_failures.labels(file_name).inc()

    def schedule_failed(self, job_name: str) -> None:
        self.schedule_parse_failures.labels(job_name).inc()

    def write_failed(self, task_name: str) -> None:
        self.output_write_failures.labels(task_name).inc()

    def execution_finished(self, task_name: str, outcome: str) -> None:
        self.executions.labels(task_name, outcome).inc()

    def render(self) -> bytes:
        return generate_latest(self.registry)
