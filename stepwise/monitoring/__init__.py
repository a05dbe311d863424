"""
Monitoring and logging for Stepwise.
"""

from stepwise.monitoring.logger import (
    JSONFormatter,
    RunLogAdapter,
    get_logger,
    log_performance_metric,
    log_run_event,
    setup_logging,
)

__all__ = [
    "JSONFormatter",
    "RunLogAdapter",
    "get_logger",
    "log_performance_metric",
    "log_run_event",
    "setup_logging",
]
