"""
Minimal HTTP server for governor monitoring.

Routes:
- GET /metrics: Prometheus exposition of the registry
- GET /healthz: JSON health info
- GET /status: JSON list of observed key statuses
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import orjson
from aiohttp import web
from prometheus_client import generate_latest

if TYPE_CHECKING:
    from prometheus_client.registry import CollectorRegistry

    from quotagate.observer.monitor import ObservedStatus

logger = logging.getLogger(__name__)

# Prometheus text exposition format
METRICS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

HealthFn = Callable[[], dict[str, Any]]
StatusFn = Callable[[], list["ObservedStatus"]]
ScrapeHook = Callable[[], None]


def _json_response(data: Any) -> web.Response:
    return web.Response(body=orjson.dumps(data), content_type="application/json")


def create_monitoring_app(
    registry: CollectorRegistry,
    *,
    health_fn: HealthFn | None = None,
    status_fn: StatusFn | None = None,
    on_scrape: ScrapeHook | None = None,
) -> web.Application:
    """
    Create aiohttp Application with /metrics, /healthz and /status routes.

    Args:
        registry: Prometheus CollectorRegistry to serve.
        health_fn: Callback for /healthz (default: {"status": "ok"}).
        status_fn: Callback listing current observations for /status
            (default: empty list).
        on_scrape: Hook run before each /metrics render, typically
            a MetricsExporter.update call.

    Returns:
        aiohttp.web.Application ready to be started.
    """

    async def metrics(request: web.Request) -> web.Response:
        if on_scrape is not None:
            on_scrape()
        return web.Response(
            body=generate_latest(registry),
            headers={"Content-Type": METRICS_CONTENT_TYPE},
        )

    async def healthz(request: web.Request) -> web.Response:
        return _json_response(health_fn() if health_fn is not None else {"status": "ok"})

    async def status(request: web.Request) -> web.Response:
        observed = status_fn() if status_fn is not None else []
        return _json_response([o.model_dump(mode="json") for o in observed])

    app = web.Application()
    app.add_routes(
        [
            web.get("/metrics", metrics),
            web.get("/healthz", healthz),
            web.get("/status", status),
        ]
    )
    return app


async def start_monitoring_server(
    registry: CollectorRegistry,
    host: str = "127.0.0.1",
    port: int = 9090,
    *,
    health_fn: HealthFn | None = None,
    status_fn: StatusFn | None = None,
    on_scrape: ScrapeHook | None = None,
) -> web.AppRunner:
    """
    Serve the monitoring app on host:port (port 0 picks a free port).

    Returns:
        The started AppRunner; hand it to stop_monitoring_server().
    """
    app = create_monitoring_app(
        registry, health_fn=health_fn, status_fn=status_fn, on_scrape=on_scrape
    )
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    await web.TCPSite(runner, host, port).start()
    logger.info("Monitoring server listening", extra={"addresses": runner.addresses})
    return runner


async def stop_monitoring_server(runner: web.AppRunner) -> None:
    """Shut down a runner returned by start_monitoring_server()."""
    await runner.cleanup()
    logger.info("Monitoring server stopped")
