"""Session records and connection bookkeeping."""

import time
from dataclasses import dataclass, field


@dataclass
class Session:
    id: str
    local_count: int = 0
    connected_at: float = field(default_factory=time.monotonic)

    def duration(self) -> float:
        return time.monotonic() - self.connected_at


@dataclass
class ConnectionStats:
    active: int = 0
    total: int = 0


@dataclass
class ConsistencyReport:
    total: int
    expected: int
    sessions: int

    @property
    def consistent(self) -> bool:
        return self.total == self.expected


__all__ = ["Session", "ConnectionStats", "ConsistencyReport"]
