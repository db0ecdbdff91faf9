"""Side-channel HTTP server for scraping coin server metrics.

The WebSocket service runs under uvicorn; this small ``aiohttp`` app listens
on ``METRICS_PORT`` next to it when ``METRICS_ENABLED`` is set.  Prometheus
scrapes ``/metrics``; ``/health`` answers with the session and aggregate
gauges so an operator can eyeball the service without a Prometheus server.
"""

from __future__ import annotations

import logging
from typing import Optional

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from coin_server.core.config import config
from .collector import MetricsCollector, collector as default_collector

logger = logging.getLogger(__name__)

COLLECTOR_KEY = web.AppKey("collector", MetricsCollector)


def _gauge(metrics: MetricsCollector, name: str) -> int:
    value = metrics.registry.get_sample_value(name)
    return int(value) if value is not None else 0


async def _scrape(request: web.Request) -> web.StreamResponse:
    body = generate_latest(request.app[COLLECTOR_KEY].registry)
    return web.Response(body=body, headers={"Content-Type": CONTENT_TYPE_LATEST})


async def _health(request: web.Request) -> web.StreamResponse:
    metrics = request.app[COLLECTOR_KEY]
    return web.json_response(
        {
            "status": "green",
            "active_sessions": _gauge(metrics, "ws_active_connections"),
            "aggregate": _gauge(metrics, "coin_aggregate_total"),
        }
    )


def create_app(metrics: Optional[MetricsCollector] = None) -> web.Application:
    app = web.Application()
    app[COLLECTOR_KEY] = metrics or default_collector
    app.router.add_get("/metrics", _scrape)
    app.router.add_get("/health", _health)
    return app


async def start_http_server(
    port: int | None = None, metrics: Optional[MetricsCollector] = None
) -> web.AppRunner:
    """Serve :func:`create_app` on ``config.ws_host``.

    The caller owns the returned runner and must ``cleanup()`` it on shutdown.
    """

    host = config.ws_host
    port = port or config.metrics_port

    runner = web.AppRunner(create_app(metrics))
    await runner.setup()
    await web.TCPSite(runner, host, port).start()
    logger.info("📊 Metrics for coin server on http://%s:%s/metrics", host, port)
    return runner


__all__ = ["create_app", "start_http_server"]
