"""Directed delivery of outbound events to individual WebSockets."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import WebSocket

from ..protocol.events import build_message

logger = logging.getLogger(__name__)


class ConnectionHub:
    """Maps connection ids to their live sockets.

    Every outbound event names exactly one connection.
    """

    def __init__(self) -> None:
        self._sockets: Dict[str, WebSocket] = {}

    def attach(self, connection_id: str, ws: WebSocket) -> None:
        self._sockets[connection_id] = ws

    def detach(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._sockets

    def __len__(self) -> int:
        return len(self._sockets)

    async def send(self, connection_id: str, event: str, payload: Any = None) -> None:
        ws = self._sockets.get(connection_id)
        if ws is None:
            logger.debug("drop %s for detached connection %s", event, connection_id)
            return
        await ws.send_json(build_message(event, payload))


__all__ = ["ConnectionHub"]
