"""Metrics collector using the Prometheus client.

This module exposes a singleton :data:`collector` that the registry, the
aggregation engine and the transport use to record counters and gauges.  The
collector tracks active connections, handled events, protocol violations and
the current aggregate.  A background task samples process CPU and memory
through ``psutil`` without blocking the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import psutil
from prometheus_client import CollectorRegistry, Counter, Gauge

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Central metrics registry used by the coin server."""

    def __init__(self) -> None:
        self.registry = CollectorRegistry()

        # Gauges
        self.active_connections = Gauge(
            "ws_active_connections",
            "Number of active WebSocket sessions",
            registry=self.registry,
        )
        self.aggregate_total = Gauge(
            "coin_aggregate_total",
            "Current global coin total across all active sessions",
            registry=self.registry,
        )
        self.cpu_percent = Gauge(
            "system_cpu_percent",
            "System wide CPU utilisation in percent",
            registry=self.registry,
        )
        self.memory_rss_bytes = Gauge(
            "process_resident_memory_bytes",
            "Resident memory size of the server process in bytes",
            registry=self.registry,
        )

        # Counters
        self.connections_total = Counter(
            "ws_connections_total",
            "Number of sessions opened since start",
            registry=self.registry,
        )
        self.events_total = Counter(
            "coin_events_total",
            "Count of handled session events",
            ["event"],
            registry=self.registry,
        )
        self.protocol_violations_total = Counter(
            "coin_protocol_violations_total",
            "Signals rejected because the session was not in the expected state",
            ["signal"],
            registry=self.registry,
        )
        self.invariant_breaches_total = Counter(
            "coin_invariant_breaches_total",
            "Detected inconsistencies between session counts and the aggregate",
            registry=self.registry,
        )

        self._system_task: Optional[asyncio.Task] = None
        self._process = psutil.Process()

    # ------------------------------------------------------------------
    def start(self) -> None:
        """Start background tasks for system metrics collection."""

        if self._system_task is None:
            loop = asyncio.get_event_loop()
            self._system_task = loop.create_task(self._update_system_metrics())

    async def stop(self) -> None:
        if self._system_task is None:
            return
        self._system_task.cancel()
        try:
            await self._system_task
        except asyncio.CancelledError:
            pass
        self._system_task = None

    async def _update_system_metrics(self) -> None:
        while True:
            try:
                self.cpu_percent.set(psutil.cpu_percent())
                self.memory_rss_bytes.set(self._process.memory_info().rss)
            except Exception as exc:  # pragma: no cover - diagnostic only
                logger.debug("system metrics failed: %s", exc)
            await asyncio.sleep(5)


# Singleton instance used by the application
collector = MetricsCollector()

__all__ = ["collector", "MetricsCollector"]
