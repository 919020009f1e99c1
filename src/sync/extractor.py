"""
Table Extractor for merged table synchronization

Reads every record and field of a table into an immutable snapshot,
stripping store-internal identifiers from nested cell values.
"""

import copy
import logging
from typing import TYPE_CHECKING, Any, List

from src.sync.errors import ShapeMismatch
from src.sync.models import FieldDescriptor, FieldType, Row, TableSnapshot

if TYPE_CHECKING:
    from src.store.base import TableStore

logger = logging.getLogger(__name__)


class TableExtractor:
    """
    Captures table snapshots from a store.

    Shape problems found while cleaning nested values are not fatal; they
    are collected on ``errors`` for the caller to report.
    """

    def __init__(self, store: "TableStore"):
        """
        Initialize the extractor.

        Args:
            store: Store to read tables from
        """
        self.store = store
        self.errors: List[ShapeMismatch] = []
        logger.debug("Initialized TableExtractor")

    def snapshot(self, table_name: str, include_record_ids: bool = False) -> TableSnapshot:
        """
        Capture all rows and fields of a table.

        Args:
            table_name: Table to read
            include_record_ids: Keep each row's store identifier

        Returns:
            TableSnapshot with one Row per record

        Raises:
            TableNotFoundError: If the table does not exist
        """
        fields = self.store.list_fields(table_name)
        records = self.store.list_records(table_name)

        rows = []
        for record in records:
            values = {}
            for descriptor in fields:
                values[descriptor.name] = self.clean_value(
                    descriptor,
                    record.fields.get(descriptor.name),
                    table_name=table_name
                )
            rows.append(Row(
                fields=values,
                record_id=record.record_id if include_record_ids else None
            ))

        logger.info(f"Captured {len(rows)} rows and {len(fields)} fields from {table_name}")

        return TableSnapshot(
            table_name=table_name,
            rows=tuple(rows),
            fields=tuple(fields)
        )

    def clean_value(self, descriptor: FieldDescriptor, value: Any, table_name: str = None) -> Any:
        """
        Strip identifiers from a nested cell value.

        Values are copied; store data is never mutated.

        Args:
            descriptor: Field the value belongs to
            value: Raw cell value
            table_name: Table name used for error reporting

        Returns:
            Cleaned value, or the original value if its shape is unexpected
        """
        if value is None or not descriptor.type.is_nested:
            return value

        if descriptor.type.is_list:
            if not isinstance(value, list):
                return self._shape_mismatch(descriptor, value, "a list", table_name)
            cleaned = []
            for item in value:
                if isinstance(item, dict):
                    cleaned.append(self._without_id(item))
                else:
                    # Link fields read over REST hold plain record id strings
                    cleaned.append(item)
            return cleaned

        if isinstance(value, dict):
            return self._without_id(value)

        if isinstance(value, str) and descriptor.type is FieldType.SINGLE_SELECT:
            # Some stores return the choice name directly
            return value

        return self._shape_mismatch(descriptor, value, "an object", table_name)

    def _without_id(self, value: dict) -> dict:
        cleaned = copy.deepcopy(value)
        cleaned.pop("id", None)
        return cleaned

    def _shape_mismatch(self, descriptor: FieldDescriptor, value: Any, expected: str, table_name: str) -> Any:
        error = ShapeMismatch(
            f"Field '{descriptor.name}' ({descriptor.type.value}) expected {expected}, "
            f"got {type(value).__name__}",
            table=table_name
        )
        self.errors.append(error)
        logger.warning(error.message)
        return value

    def drain_errors(self) -> List[ShapeMismatch]:
        """Return and clear the collected shape errors."""
        errors, self.errors = self.errors, []
        return errors
