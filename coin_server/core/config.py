"""Runtime configuration helpers."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Central default values, applied to the environment by ``load_env``.
DEFAULT_ENV: dict[str, str] = {
    "WS_HOST": "127.0.0.1",
    "WS_PORT": "8081",
    "METRICS_ENABLED": "0",
    "METRICS_PORT": "8082",
    "STATIC_DIR": "public",
    "RECONCILE_INTERVAL": "30",
    "LOG_LEVEL": "INFO",
}


def load_env(path: Optional[str | Path] = None) -> None:
    """Load environment variables and apply defaults.

    Parameters
    ----------
    path:
        Optional path to a ``.env`` file. If ``None`` the ``.env`` in the
        working directory is used when present.
    """

    env_path = Path(path) if path else Path(".env")
    if env_path.exists():
        load_dotenv(env_path, override=False)

    for key, value in DEFAULT_ENV.items():
        os.environ.setdefault(key, value)


def _as_bool(value: str) -> bool:
    return value.lower() in {"1", "true", "yes", "on"}


def _as_interval(value: str) -> float:
    try:
        interval = float(value)
    except ValueError:
        logger.warning("Invalid RECONCILE_INTERVAL %r, using default", value)
        return float(DEFAULT_ENV["RECONCILE_INTERVAL"])
    return max(0.0, interval)


@dataclass
class Config:
    """Central application configuration loaded from environment."""

    ws_host: str
    ws_port: int
    metrics_enabled: bool
    metrics_port: int
    static_dir: str
    reconcile_interval: float
    log_level: str

    @classmethod
    def from_env(cls) -> "Config":
        """Construct configuration using the current environment."""

        load_env()

        return cls(
            ws_host=os.getenv("WS_HOST", DEFAULT_ENV["WS_HOST"]),
            ws_port=int(os.getenv("WS_PORT", DEFAULT_ENV["WS_PORT"])),
            metrics_enabled=_as_bool(os.getenv("METRICS_ENABLED", DEFAULT_ENV["METRICS_ENABLED"])),
            metrics_port=int(os.getenv("METRICS_PORT", DEFAULT_ENV["METRICS_PORT"])),
            static_dir=os.getenv("STATIC_DIR", DEFAULT_ENV["STATIC_DIR"]),
            reconcile_interval=_as_interval(
                os.getenv("RECONCILE_INTERVAL", DEFAULT_ENV["RECONCILE_INTERVAL"])
            ),
            log_level=os.getenv("LOG_LEVEL", DEFAULT_ENV["LOG_LEVEL"]).upper(),
        )


# Load configuration once at import time for convenience
config = Config.from_env()


__all__ = ["Config", "config", "load_env", "DEFAULT_ENV"]
