"""Exceptions raised by the session registry and the aggregation engine."""

from __future__ import annotations

from typing import Optional


class CoinServerError(RuntimeError):
    """Base class for all coin server errors."""


class ProtocolViolation(CoinServerError):
    """A signal arrived for a connection that is not in the expected state.

    Typical causes are a message after disconnect, a duplicate disconnect or a
    duplicate connect for the same id.  Nothing is mutated on this path.
    """

    def __init__(self, message: str, connection_id: Optional[str] = None, signal: str = "unknown") -> None:
        super().__init__(message)
        self.connection_id = connection_id
        self.signal = signal


class MalformedMessage(ProtocolViolation):
    """A frame could not be decoded into an event."""

    def __init__(self, message: str, connection_id: Optional[str] = None) -> None:
        super().__init__(message, connection_id=connection_id, signal="malformed")


class InvariantBreach(CoinServerError):
    """The aggregate no longer matches the sessions it is built from."""


__all__ = ["CoinServerError", "ProtocolViolation", "MalformedMessage", "InvariantBreach"]
