"""Periodic consistency check between sessions and the aggregate."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .connections import ConsistencyReport
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class Reconciler:
    """Runs :meth:`ConnectionRegistry.check_consistency` on an interval.

    The reconciler only reports.  A drift is logged by the registry and
    remembered in ``last_report``; the aggregate is never rewritten.
    """

    def __init__(self, registry: ConnectionRegistry, interval: float) -> None:
        self.registry = registry
        self.interval = interval
        self.last_report: Optional[ConsistencyReport] = None
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self.interval <= 0:
            logger.info("Reconciliation disabled")
            return
        if self._task is None:
            loop = asyncio.get_event_loop()
            self._task = loop.create_task(self._run())
            logger.debug("Reconciliation every %.1fs", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def run_once(self) -> ConsistencyReport:
        self.last_report = self.registry.check_consistency()
        return self.last_report

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.run_once()


__all__ = ["Reconciler"]
