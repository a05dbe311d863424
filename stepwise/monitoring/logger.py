"""
Logging for the Stepwise runner.

Records carry run context (run, test case, step, browser) as ``extra``
fields. The JSON formatter lifts those fields to the top level so a run can
be followed with a single filter on ``run_id``.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

from stepwise.config.settings import get_settings
from stepwise.core.types import RunUpdateEvent

_CONTEXT_FIELDS = ("run_id", "test_case_id", "step_id", "step_order", "browser")

TEXT_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Third-party loggers that flood DEBUG output
_QUIET_LOGGERS = ("asyncio", "playwright", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class RunLogAdapter(logging.LoggerAdapter):
    """Log adapter that stamps run context onto every record."""

    def process(
        self, msg: str, kwargs: Dict[str, Any]
    ) -> tuple[str, Dict[str, Any]]:
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def _console_handler(format_type: str) -> logging.Handler:
    if format_type == "json":
        handler: logging.Handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        return handler
    return RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)


def _file_handler(path: str, format_type: str) -> logging.Handler:
    handler = logging.FileHandler(path)
    if format_type == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FILE_FORMAT))
    return handler


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Replace the root logger's handlers.

    JSON goes to stdout; text goes through rich on stderr. Arguments left
    as None fall back to the settings.

    Returns:
        Root logger instance
    """
    settings = get_settings()
    level_name = (log_level or settings.log_level).upper()
    format_type = log_format or settings.log_format
    file_path = log_file or settings.log_file
    level = getattr(logging, level_name)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers = [_console_handler(format_type)]
    if file_path:
        handlers.append(_file_handler(file_path, format_type))
    for handler in handlers:
        handler.setLevel(level)
        root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("stepwise").info(
        "Stepwise logging initialized",
        extra={"log_level": level_name, "log_format": format_type, "log_file": file_path},
    )
    return root_logger


def get_logger(name: str, **context: Any) -> logging.Logger:
    """Plain logger, or a RunLogAdapter when context keywords are given."""
    logger = logging.getLogger(name)
    if context:
        return RunLogAdapter(logger, context)
    return logger


def log_run_event(event: RunUpdateEvent) -> None:
    """Log a lifecycle event as published to subscribers."""
    extra: Dict[str, Any] = {
        "event_type": event.type.value,
        "run_id": event.run_id,
    }
    if event.step_id:
        extra["step_id"] = event.step_id
    if event.step_order is not None:
        extra["step_order"] = event.step_order
    if event.step_status is not None:
        extra["step_status"] = event.step_status.value
    if event.run_status is not None:
        extra["run_status"] = event.run_status.value

    message = f"Run event: {event.type.value}"
    if event.message:
        message = f"{message} ({event.message})"

    logging.getLogger("stepwise.run_events").info(message, extra=extra)


def log_performance_metric(
    metric_name: str,
    value: float,
    unit: str = "ms",
    context: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log a timing or size measurement.

    Args:
        metric_name: Name of the metric
        value: Measured value
        unit: Unit appended to the value in the message
        context: Extra fields such as ``run_id``
    """
    extra: Dict[str, Any] = {"metric_name": metric_name, "value": value, "unit": unit}
    if context:
        extra.update(context)

    logging.getLogger("stepwise.performance").info(
        f"Performance metric: {metric_name}={value}{unit}", extra=extra
    )
