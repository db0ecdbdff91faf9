# package
# The singleton lives at ``coin_server.metrics.collector.collector``; it is not
# re-exported here so the submodule name stays bound to the module.
from .collector import MetricsCollector

__all__ = ["MetricsCollector"]
