"""
Monitoring module exports.
"""

from adaptive_flow.monitoring.logger import (
    ContextLogAdapter,
    JSONFormatter,
    SanitizingHandler,
    get_logger,
    log_flow_event,
    log_performance_metric,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "log_flow_event",
    "log_performance_metric",
    "JSONFormatter",
    "SanitizingHandler",
    "ContextLogAdapter",
]
