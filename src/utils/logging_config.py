"""
Logging configuration for merged table sync

Human-readable console output by default; one JSON object per line when
json_format is set or the JSON_LOGGING environment variable is "true".
Every record carries the current correlation ID and sync table.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

from src.utils.correlation import setup_correlation_logging

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(correlation_id)s %(sync_table)s]: %(message)s"

# Extra attributes copied into JSON output when set on a record
EXTRA_FIELDS = ("table", "action_type", "duration", "counts", "dry_run")


class StructuredJSONFormatter(logging.Formatter):
    """JSON formatter with correlation ID support."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', 'N/A'),
            'sync_table': getattr(record, 'sync_table', '-'),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def json_logging_requested() -> bool:
    """True when the JSON_LOGGING environment variable asks for JSON output."""
    return os.getenv('JSON_LOGGING', 'false').lower() == 'true'


def setup_logging(
    level: str = "INFO",
    json_format: Optional[bool] = None,
    stream=None
) -> logging.Handler:
    """
    Configure root logging for the sync tools.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit JSON lines (defaults to the JSON_LOGGING env var)
        stream: Output stream (stderr if omitted)

    Returns:
        The installed handler
    """
    if json_format is None:
        json_format = json_logging_requested()

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    setup_correlation_logging(handler)

    if json_format:
        handler.setFormatter(StructuredJSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root_logger.addHandler(handler)

    # Set levels for noisy third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("hvac").setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging initialized: level={level}, json={json_format}")
    return handler
