"""Global coin aggregate shared by all sessions."""

from __future__ import annotations

import threading
from typing import Optional

from ..metrics.collector import MetricsCollector, collector as default_collector
from .errors import InvariantBreach


class AggregationEngine:
    """Owns the global total and serializes every mutation of it.

    ``increment`` and ``decrement`` are the only write paths.  Both take the
    same lock for the duration of a single add or subtract, so the engine can
    be shared between asyncio tasks and OS threads.  Callers never perform I/O
    while holding it.
    """

    def __init__(self, metrics: Optional[MetricsCollector] = None) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._metrics = metrics or default_collector
        self._metrics.aggregate_total.set(0)

    def increment(self, n: int = 1) -> int:
        if n <= 0:
            raise ValueError(f"increment must be positive, got {n}")
        with self._lock:
            self._total += n
            self._metrics.aggregate_total.set(self._total)
            return self._total

    def decrement(self, n: int) -> int:
        """Subtract ``n`` from the total.

        ``n`` larger than the current total means some session is returning
        coins that were never added.  That is reported as
        :class:`InvariantBreach` and the total is left as it was.  Logging
        is left to the caller, which may still hold its own lock here.
        """

        if n < 0:
            raise ValueError(f"decrement must not be negative, got {n}")
        with self._lock:
            current = self._total
            if n <= current:
                self._total = current - n
                self._metrics.aggregate_total.set(self._total)
                return self._total
        self._metrics.invariant_breaches_total.inc()
        raise InvariantBreach(f"decrement of {n} exceeds aggregate {current}")

    def total(self) -> int:
        with self._lock:
            return self._total


__all__ = ["AggregationEngine"]
