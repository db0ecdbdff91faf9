"""WebSocket transport for the coin server."""

from .hub import ConnectionHub

__all__ = ["ConnectionHub"]
