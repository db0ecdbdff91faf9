"""Connection registry: per-session state machine driving the aggregate."""

from __future__ import annotations

import logging
import threading
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..metrics.collector import MetricsCollector, collector as default_collector
from ..protocol.events import INCREMENT, QUERY_TOTAL, UNKNOWN_EVENT, canonical_event, reply_event
from .aggregate import AggregationEngine
from .connections import ConnectionStats, ConsistencyReport, Session
from .errors import InvariantBreach, ProtocolViolation

logger = logging.getLogger(__name__)

SendFn = Callable[[str, str, Any], Awaitable[None]]


class ConnectionRegistry:
    """Tracks active sessions and applies their signals to the aggregate.

    Every session is either absent or active.  ``on_connect`` makes it active
    with a zero count, ``on_message`` handles increments and total queries,
    ``on_disconnect`` returns the session's coins to the engine and removes it.
    A signal for a session that is not in the expected state raises
    :class:`ProtocolViolation` and changes nothing.

    Replies go through ``send`` to the asking connection only, after all locks
    have been released.
    """

    def __init__(
        self,
        engine: AggregationEngine,
        send: SendFn,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.engine = engine
        self._send = send
        self._metrics = metrics or default_collector
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        self._connected_total = 0

    # ------------------------------------------------------------------
    async def on_connect(self, connection_id: str) -> Session:
        with self._lock:
            if connection_id in self._sessions:
                session = None
            else:
                session = Session(connection_id)
                self._sessions[connection_id] = session
                self._connected_total += 1
                active = len(self._sessions)
        if session is None:
            self._reject(connection_id, "connect", "connection is already active")
        self._metrics.connections_total.inc()
        self._metrics.active_connections.set(active)
        logger.info("A new user has connected (%s, %d active)", connection_id, active)
        return session

    async def on_message(self, connection_id: str, event: str, payload: Any = None) -> None:
        kind = canonical_event(event)
        if kind == INCREMENT:
            self._increment(connection_id)
        elif kind == QUERY_TOTAL:
            if not self.is_active(connection_id):
                self._reject(connection_id, QUERY_TOTAL, "connection is not active")
            total = self.engine.total()
            await self._send(connection_id, reply_event(event), total)
        else:
            # client-chosen names stay out of metric labels
            self._reject(connection_id, UNKNOWN_EVENT, f"unknown event {event!r}")
        self._metrics.events_total.labels(event=kind).inc()

    async def on_disconnect(self, connection_id: str) -> Session:
        breach: Optional[InvariantBreach] = None
        with self._lock:
            session = self._sessions.get(connection_id)
            if session is not None:
                try:
                    self.engine.decrement(session.local_count)
                except InvariantBreach as exc:
                    breach = exc
                else:
                    del self._sessions[connection_id]
                active = len(self._sessions)
        if session is None:
            self._reject(connection_id, "disconnect", "connection is not active")
        self._metrics.active_connections.set(active)
        if breach is not None:
            # the session stays registered so reconciliation keeps reporting it
            logger.error(
                "Disconnect of %s could not return %d coins: %s",
                connection_id,
                session.local_count,
                breach,
            )
            raise breach
        logger.info(
            "User %s disconnected after %.1fs, returned %d coins",
            connection_id,
            session.duration(),
            session.local_count,
        )
        return session

    # ------------------------------------------------------------------
    def _increment(self, connection_id: str) -> None:
        # Local and global counts move together under the registry lock, so
        # check_consistency always sees a matching pair.
        with self._lock:
            session = self._sessions.get(connection_id)
            if session is not None:
                session.local_count += 1
                self.engine.increment(1)
        if session is None:
            self._reject(connection_id, INCREMENT, "connection is not active")

    def _reject(self, connection_id: str, signal: str, reason: str) -> None:
        logger.warning("Rejected %s for %s: %s", signal, connection_id, reason)
        self._metrics.protocol_violations_total.labels(signal=signal).inc()
        raise ProtocolViolation(
            f"{signal} rejected for {connection_id}: {reason}",
            connection_id=connection_id,
            signal=signal,
        )

    # ------------------------------------------------------------------
    def is_active(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._sessions

    def local_count(self, connection_id: str) -> Optional[int]:
        with self._lock:
            session = self._sessions.get(connection_id)
            return session.local_count if session is not None else None

    def active_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def stats(self) -> ConnectionStats:
        with self._lock:
            return ConnectionStats(active=len(self._sessions), total=self._connected_total)

    def check_consistency(self) -> ConsistencyReport:
        """Compare the aggregate with the sum of all session counts.

        A mismatch is logged and counted but never corrected here.
        """

        with self._lock:
            expected = sum(s.local_count for s in self._sessions.values())
            report = ConsistencyReport(
                total=self.engine.total(),
                expected=expected,
                sessions=len(self._sessions),
            )
        if not report.consistent:
            logger.error(
                "Aggregate drift: total=%d but %d sessions hold %d",
                report.total,
                report.sessions,
                report.expected,
            )
            self._metrics.invariant_breaches_total.inc()
        return report


__all__ = ["ConnectionRegistry", "SendFn"]
