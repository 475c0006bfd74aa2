"""Health check and metrics endpoints using Starlette."""

from __future__ import annotations

import contextlib
import logging
import socket
from typing import Iterator

import psutil
import uvicorn
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Route

from cronwatch.core import CronEngine
from cronwatch.errors import HealthServerError
from cronwatch.executor import ExecutionTracker
from cronwatch.metrics import SchedulerMetrics

logger = logging.getLogger(__name__)


def count_processes() -> int | None:
    try:
        return len(psutil.pids())
    except (psutil.Error, OSError) as e:
        logger.warning(f"Cannot list processes: {e}")
        return None


async def handle_health(request: Request) -> PlainTextResponse:
    """Report armed tasks, OS processes and in-flight runs."""
    engine: CronEngine = request.app.state.engine
    tracker: ExecutionTracker = request.app.state.tracker

    processes = count_processes()
    lines = [
        f"tasks: {len(engine)}",
        f"processes: {processes if processes is not None else 'N/A'}",
        f"running: {tracker.active_count}",
    ]
    return PlainTextResponse("\n".join(lines) + "\n")


async def handle_metrics(request: Request) -> Response:
    metrics: SchedulerMetrics = request.app.state.metrics
    return Response(metrics.render(), media_type=CONTENT_TYPE_LATEST)


def create_health_app(
    engine: CronEngine,
    tracker: ExecutionTracker,
    metrics: SchedulerMetrics,
) -> Starlette:
    """Create the health check application."""
    app = Starlette(
        routes=[
            Route("/healhtz", handle_health, methods=["GET"]),
            Route("/healthz", handle_health, methods=["GET"]),
            Route("/metrics", handle_metrics, methods=["GET"]),
        ],
    )

    app.state.engine = engine
    app.state.tracker = tracker
    app.state.metrics = metrics

    return app


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind the listener up front so a busy port fails at startup."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise HealthServerError(f"Cannot bind health check listener on {host}:{port}: {e}") from e
    sock.set_inheritable(True)
    return sock


class HealthServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the daemon."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield
