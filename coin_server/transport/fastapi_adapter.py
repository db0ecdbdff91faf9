# coin_server/transport/fastapi_adapter.py
from __future__ import annotations

import logging as _logging
import os
import sys as _sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from ..core.aggregate import AggregationEngine
from ..core.config import Config, config as default_config
from ..core.errors import InvariantBreach, ProtocolViolation
from ..core.reconcile import Reconciler
from ..core.registry import ConnectionRegistry
from ..metrics.collector import MetricsCollector, collector as default_collector
from ..metrics.http_api import start_http_server
from ..protocol.events import parse_message
from .hub import ConnectionHub

logger = _logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Logging setup
# -----------------------------------------------------------------------------
def _configure_logging(level_name: str) -> None:
    level = getattr(_logging, level_name.upper(), _logging.INFO)
    fmt = os.getenv(
        "LOG_FORMAT",
        "%(asctime)s %(levelname)s [%(name)s:%(lineno)d] %(message)s",
    )

    # Dedicated handler for our namespace to bypass uvicorn's --log-level
    ns_logger = _logging.getLogger("coin_server")
    ns_logger.setLevel(level)
    if not any(getattr(h, "_coin_custom", False) for h in ns_logger.handlers):
        h = _logging.StreamHandler(_sys.stdout)
        h.setLevel(level)
        h.setFormatter(_logging.Formatter(fmt))
        h._coin_custom = True  # type: ignore[attr-defined]
        ns_logger.addHandler(h)
        ns_logger.propagate = False

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        _logging.getLogger(name).setLevel(level)

    _logging.captureWarnings(True)


# -----------------------------------------------------------------------------
# Application factory
# -----------------------------------------------------------------------------
def create_app(
    cfg: Optional[Config] = None,
    metrics: Optional[MetricsCollector] = None,
) -> FastAPI:
    """Build the FastAPI application with its own engine, registry and hub."""

    cfg = cfg or default_config
    metrics = metrics or default_collector
    _configure_logging(cfg.log_level)

    hub = ConnectionHub()
    engine = AggregationEngine(metrics)
    registry = ConnectionRegistry(engine, hub.send, metrics)
    reconciler = Reconciler(registry, cfg.reconcile_interval)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        metrics.start()
        reconciler.start()
        runner = None
        if cfg.metrics_enabled:
            runner = await start_http_server(cfg.metrics_port, metrics)
        logger.info("Coin server ready")
        try:
            yield
        finally:
            if runner is not None:
                await runner.cleanup()
            await reconciler.stop()
            await metrics.stop()
            reconciler.run_once()

    app = FastAPI(title="Coin Counter", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"]
    )
    app.state.hub = hub
    app.state.engine = engine
    app.state.registry = registry
    app.state.reconciler = reconciler

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/api/stats")
    def stats():
        report = registry.check_consistency()
        conn = registry.stats()
        return {
            "total": report.total,
            "active_sessions": conn.active,
            "total_sessions": conn.total,
            "consistent": report.consistent,
        }

    @app.websocket("/ws")
    async def ws_endpoint(ws: WebSocket):
        await ws.accept()
        connection_id = uuid4().hex
        hub.attach(connection_id, ws)
        await registry.on_connect(connection_id)
        try:
            while True:
                msg = await ws.receive()
                if msg["type"] == "websocket.disconnect":
                    break
                data = msg.get("text")
                if data is None:
                    logger.debug("ignored binary frame from %s", connection_id)
                    continue
                try:
                    event, payload = parse_message(data, connection_id)
                except ProtocolViolation as exc:
                    logger.warning("ignored frame from %s: %s", connection_id, exc)
                    metrics.protocol_violations_total.labels(signal=exc.signal).inc()
                    continue
                try:
                    await registry.on_message(connection_id, event, payload)
                except ProtocolViolation:
                    # already logged by the registry; no reply for this request
                    continue
        except WebSocketDisconnect:
            logger.debug("WebSocket %s disconnected", connection_id)
        finally:
            hub.detach(connection_id)
            try:
                await registry.on_disconnect(connection_id)
            except (ProtocolViolation, InvariantBreach) as exc:
                logger.debug("disconnect of %s not applied: %s", connection_id, exc)

    static_dir = Path(cfg.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")
        logger.debug("serving client assets from %s", static_dir)

    return app


__all__ = ["create_app"]
