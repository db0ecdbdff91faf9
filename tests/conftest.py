import logging
import sys
from dataclasses import replace
from pathlib import Path

import pytest

# Ensure project root is importable
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from aiohttp.test_utils import unused_port  # noqa: E402

from coin_server.core.aggregate import AggregationEngine  # noqa: E402
from coin_server.core.config import Config  # noqa: E402
from coin_server.core.registry import ConnectionRegistry  # noqa: E402
from coin_server.metrics.collector import MetricsCollector  # noqa: E402


@pytest.fixture
def unused_tcp_port() -> int:
    """Free TCP port picked by ``aiohttp.test_utils``."""

    return unused_port()


@pytest.fixture(autouse=True)
def _propagate_coin_logs(monkeypatch):
    # the app factory detaches the coin_server namespace from root; caplog needs it
    monkeypatch.setattr(logging.getLogger("coin_server"), "propagate", True)


class RecordingSender:
    """Stand-in for the transport's directed send."""

    def __init__(self) -> None:
        self.sent = []

    async def __call__(self, connection_id, event, payload=None) -> None:
        self.sent.append((connection_id, event, payload))

    def to(self, connection_id):
        return [(e, p) for cid, e, p in self.sent if cid == connection_id]


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def engine(metrics) -> AggregationEngine:
    return AggregationEngine(metrics)


@pytest.fixture
def registry(engine, sender, metrics) -> ConnectionRegistry:
    return ConnectionRegistry(engine, sender, metrics)


@pytest.fixture
def app_config(tmp_path) -> Config:
    return replace(
        Config.from_env(),
        metrics_enabled=False,
        reconcile_interval=0.0,
        static_dir=str(tmp_path / "no-static"),
        log_level="DEBUG",
    )
