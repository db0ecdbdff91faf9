"""Core session and aggregate handling for the coin server."""

from .aggregate import AggregationEngine
from .config import load_env
from .connections import ConnectionStats, ConsistencyReport, Session
from .errors import InvariantBreach, MalformedMessage, ProtocolViolation

__all__ = [
    "AggregationEngine",
    "load_env",
    "ConnectionStats",
    "ConsistencyReport",
    "Session",
    "InvariantBreach",
    "MalformedMessage",
    "ProtocolViolation",
]
