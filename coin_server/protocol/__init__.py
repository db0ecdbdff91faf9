"""Wire protocol helpers."""

from .events import (
    INCREMENT,
    QUERY_TOTAL,
    TOTAL_UPDATE,
    build_message,
    parse_message,
)

__all__ = ["INCREMENT", "QUERY_TOTAL", "TOTAL_UPDATE", "build_message", "parse_message"]
