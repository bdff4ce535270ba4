"""Logging setup for the installment engine.

Engine modules log through ``logging.getLogger(__name__)``. Mutations attach
the aggregate they touched with ``extra=log_context(plan_id=...)`` so the JSON
output can be filtered per plan, modification or customer.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

STANDARD_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Record attributes lifted to top-level keys of a JSON log line
CONTEXT_FIELDS = ("plan_id", "modification_id", "customer_id", "installment_number")

QUIET_LOGGERS = ("confluent_kafka", "faker")


def setup_logging(
    level: str = "INFO",
    format_type: str = "standard",
    stream: TextIO | None = None,
) -> None:
    """Configure the root logger for the engine and its scripts.

    Parameters
    ----------
    level : str
        Log level name. Unknown names fall back to INFO.
    format_type : str
        ``"standard"`` for pipe-separated text, ``"json"`` for one JSON object per line.
    stream : TextIO | None
        Output stream (default: stdout).
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=STANDARD_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    logging.getLogger("installment_engine").setLevel(log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_context(**ids: Any) -> dict[str, Any]:
    """Build an ``extra`` mapping for a log call, dropping unset ids."""
    return {key: value for key, value in ids.items() if value is not None}


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Free-form fields passed as ``extra={"extra": {...}}``
        if isinstance(getattr(record, "extra", None), dict):
            log_data.update(record.extra)

        return json.dumps(log_data, default=str)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for ``name`` (usually ``__name__``)."""
    return logging.getLogger(name)
