"""
Correlation ID Utility for merged table sync

Tags every log line of a sync run with the run's correlation ID and the
destination table being processed, so interleaved output from concurrent
table syncs can be told apart.
"""

import uuid
import contextvars
from typing import Any, Optional
import logging

logger = logging.getLogger(__name__)

# Sync run the current thread or task belongs to
_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id',
    default=None
)

# Destination table currently being synced
_sync_table: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'sync_table',
    default=None
)


def generate_correlation_id() -> str:
    """Return a new UUID4 string identifying one sync run."""
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    """Correlation ID of the sync run in the current context, if any."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """
    Set the correlation ID in the current context.

    Args:
        correlation_id: Correlation ID to set

    Raises:
        ValueError: If correlation_id is empty or invalid
    """
    if not correlation_id or not isinstance(correlation_id, str):
        raise ValueError("Correlation ID must be a non-empty string")

    _correlation_id.set(correlation_id)


def clear_correlation_id() -> None:
    """Clear the correlation ID from context."""
    _correlation_id.set(None)


def get_sync_table() -> Optional[str]:
    """Destination table being synced in the current context, if any."""
    return _sync_table.get()


class CorrelationContext:
    """
    Context manager scoping a correlation ID to one sync run.

    The previous ID, if any, is restored on exit.
    """

    def __init__(self, correlation_id: Optional[str] = None):
        """
        Initialize correlation context.

        Args:
            correlation_id: Optional correlation ID to use. If not provided,
                          a new one will be generated.
        """
        self.correlation_id = correlation_id
        self._token = None

    def __enter__(self) -> str:
        """
        Enter the correlation context.

        Returns:
            The correlation ID for this context
        """
        if not self.correlation_id:
            self.correlation_id = generate_correlation_id()
        elif not isinstance(self.correlation_id, str):
            raise ValueError("Correlation ID must be a non-empty string")

        self._token = _correlation_id.set(self.correlation_id)
        logger.debug(f"Entered correlation context: {self.correlation_id}")
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit the correlation context and restore the previous ID."""
        _correlation_id.reset(self._token)
        self._token = None


class TableContext:
    """Context manager naming the destination table for log records."""

    def __init__(self, table_name: str):
        self.table_name = table_name
        self._token = None

    def __enter__(self) -> str:
        self._token = _sync_table.set(self.table_name)
        return self.table_name

    def __exit__(self, exc_type, exc_val, exc_tb):
        _sync_table.reset(self._token)
        self._token = None


def correlation_id_filter(record):
    """
    Logging filter to add correlation ID and sync table to log records.

    Args:
        record: Log record to augment

    Returns:
        True (always allow record)
    """
    record.correlation_id = get_correlation_id() or "N/A"
    record.sync_table = get_sync_table() or "-"
    return True


def setup_correlation_logging(target: Any) -> None:
    """
    Attach the correlation filter to a logger or handler.

    Args:
        target: Logger or handler instance to configure
    """
    target.addFilter(correlation_id_filter)
