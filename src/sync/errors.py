"""
Error types for merged table synchronization.

Pipeline errors are non-fatal: they are collected on the table result and
logged, and the sync continues with the next row, batch or table.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Categories of sync errors."""
    SHAPE_MISMATCH = "shape_mismatch"
    PERMISSION_DENIED = "permission_denied"
    LOOKUP_MISS = "lookup_miss"
    WRITE_FAILURE = "write_failure"
    PIPELINE_FAILURE = "pipeline_failure"


class SyncError(Exception):
    """Base class for errors recorded during a sync run."""

    kind = ErrorKind.PIPELINE_FAILURE

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        row: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.table = table
        self.row = row

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for reports and JSON logs."""
        data = {
            "kind": self.kind.value,
            "message": self.message,
            "table": self.table,
        }
        if self.row is not None:
            data["row"] = self.row
        return data


class ShapeMismatch(SyncError):
    """A nested-typed cell value did not have the expected structure."""
    kind = ErrorKind.SHAPE_MISMATCH


class PermissionDenied(SyncError):
    """The destination store refused (or would refuse) a mutation."""
    kind = ErrorKind.PERMISSION_DENIED


class LookupMiss(SyncError):
    """A stale row could not be matched to a destination record id."""
    kind = ErrorKind.LOOKUP_MISS


class WriteFailure(SyncError):
    """A create or delete call against the destination store failed."""
    kind = ErrorKind.WRITE_FAILURE


class StoreError(Exception):
    """Raised when a table store operation fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ThrottledError(StoreError):
    """Raised when the store rejects a request because of its rate limit."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class TableNotFoundError(StoreError):
    """Raised when a named table does not exist in the base."""

    def __init__(self, table_name: str):
        super().__init__(f"Table not found: {table_name}", status_code=404)
        self.table_name = table_name


class ConfigurationError(Exception):
    """Raised when sync settings are missing or invalid."""
    pass


class TransientStoreError(StoreError):
    """Raised for server-side store failures that may succeed on retry."""
    pass
