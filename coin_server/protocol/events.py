"""JSON event format spoken on the coin WebSocket."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

from ..core.errors import MalformedMessage

logger = logging.getLogger(__name__)

INCREMENT = "increment"
QUERY_TOTAL = "query-total"
TOTAL_UPDATE = "total-update"
UNKNOWN_EVENT = "unknown-event"

# Event names sent by the first browser client.
LEGACY_ALIASES: Dict[str, str] = {
    "I clicked a coin": INCREMENT,
    "How many coins": QUERY_TOTAL,
}

# ...and the reply name that client listens for.
LEGACY_REPLIES: Dict[str, str] = {
    "How many coins": "Update coins",
}


def canonical_event(name: str) -> str:
    return LEGACY_ALIASES.get(name, name)


def reply_event(name: str) -> str:
    """Name of the total reply for a query sent as ``name``."""
    return LEGACY_REPLIES.get(name, TOTAL_UPDATE)


def parse_message(data: str, connection_id: Optional[str] = None) -> Tuple[str, Any]:
    """Decode one text frame into ``(event, payload)``.

    Accepts ``{"event": ...}`` as well as the ``{"type": ...}`` variant, and a
    bare JSON string holding just the event name.  The name is returned as
    sent; see :func:`canonical_event` for the legacy mapping.
    """

    try:
        msg = json.loads(data)
    except (TypeError, ValueError) as exc:
        raise MalformedMessage(f"invalid JSON: {exc}", connection_id=connection_id) from exc

    if isinstance(msg, str):
        event, payload = msg, None
    elif isinstance(msg, dict):
        event = msg.get("event") or msg.get("type")
        payload = msg.get("payload")
    else:
        raise MalformedMessage("frame must be an object or a string", connection_id=connection_id)

    if not isinstance(event, str) or not event.strip():
        raise MalformedMessage("frame carries no event name", connection_id=connection_id)
    return event.strip(), payload


def build_message(event: str, payload: Any = None) -> Dict[str, Any]:
    """Return the outbound representation of an event."""
    return {"event": event, "payload": payload}


__all__ = [
    "INCREMENT",
    "QUERY_TOTAL",
    "TOTAL_UPDATE",
    "UNKNOWN_EVENT",
    "LEGACY_ALIASES",
    "LEGACY_REPLIES",
    "canonical_event",
    "reply_event",
    "parse_message",
    "build_message",
]
