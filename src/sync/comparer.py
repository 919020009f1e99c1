"""
Row Comparer for merged table synchronization

Provides value-equality comparison between rows read from different tables.
Record identifiers never take part in the comparison, and a field holding
None is equal to a field that is absent.
"""

import logging
from typing import Dict, Any, List, Optional, Tuple, Union
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from src.sync.models import Row

logger = logging.getLogger(__name__)

RowLike = Union[Row, Dict[str, Any]]

# Keys that identify a record rather than describe it
ID_FIELDS = frozenset({"id"})


class RowComparer:
    """
    Compares rows by field value.

    Handles normalization of nested values and provides hashable
    signatures for multiset comparison.
    """

    def __init__(self, ignore_fields: Optional[List[str]] = None):
        """
        Initialize the row comparer.

        Args:
            ignore_fields: Extra field names to exclude from every comparison
        """
        self.ignore_fields = set(ID_FIELDS) | set(ignore_fields or [])
        logger.debug("Initialized RowComparer")

    def compare_rows_detailed(
        self,
        left: RowLike,
        right: RowLike,
        ignore_fields: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """
        Compare rows field by field.

        Used to explain why a stale row found no destination record.

        Args:
            left: First row
            right: Second row
            ignore_fields: Fields to ignore

        Returns:
            Dictionary with:
            - is_equal: bool
            - matching_fields: List[str]
            - differing_fields: List[str]
            - differences: Dict[str, Dict[str, Any]]
        """
        norm_left = self.normalize_row(left)
        norm_right = self.normalize_row(right)

        skip = self.ignore_fields | set(ignore_fields or [])
        all_fields = (set(norm_left) | set(norm_right)) - skip

        matching_fields = []
        differing_fields = []
        differences = {}

        for name in all_fields:
            left_value = norm_left.get(name)
            right_value = norm_right.get(name)

            if left_value == right_value:
                matching_fields.append(name)
            else:
                differing_fields.append(name)
                differences[name] = {
                    "left": left_value,
                    "right": right_value
                }

        return {
            "is_equal": len(differing_fields) == 0,
            "matching_fields": sorted(matching_fields),
            "differing_fields": sorted(differing_fields),
            "differences": differences
        }

    def row_signature(self, row: RowLike) -> Tuple[Tuple[str, Any], ...]:
        """
        Build a hashable canonical form of a row.

        Identifier fields and None values are left out, so rows that differ
        only in ids or in absent-versus-None fields share a signature.

        Args:
            row: Row to sign

        Returns:
            Sorted tuple of (field name, frozen value) pairs
        """
        normalized = self.normalize_row(row)
        return tuple(sorted(
            (name, self.freeze_value(value))
            for name, value in normalized.items()
            if name not in self.ignore_fields and value is not None
        ))

    def normalize_row(self, row: RowLike) -> Dict[str, Any]:
        """
        Normalize row for comparison.

        Handles:
        - UUID objects -> strings
        - Decimal precision normalization
        - Naive datetime objects -> UTC
        - Nested lists and dictionaries

        Args:
            row: Row or plain field mapping

        Returns:
            Normalized field dictionary
        """
        fields = row.fields if isinstance(row, Row) else row
        return {key: self._normalize_value(value) for key, value in fields.items()}

    def normalize_value(self, value: Any) -> Any:
        """Normalize a single cell value."""
        return self._normalize_value(value)

    def _normalize_value(self, value: Any) -> Any:
        if value is None:
            return None

        if isinstance(value, UUID):
            return str(value)

        if isinstance(value, Decimal):
            return value.normalize()

        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc)

        if isinstance(value, (list, tuple)):
            return [self._normalize_value(item) for item in value]

        if isinstance(value, dict):
            return {k: self._normalize_value(v) for k, v in value.items()}

        return value

    def freeze_value(self, value: Any) -> Any:
        """Convert a normalized value into a hashable equivalent."""
        if isinstance(value, dict):
            return ("__dict__", tuple(sorted(
                (k, self.freeze_value(v)) for k, v in value.items()
            )))
        if isinstance(value, list):
            return ("__list__", tuple(self.freeze_value(v) for v in value))
        return value
