"""
Table store interface

The pipeline only needs enumerable records, per-field values, stable record
ids, table creation and record create/delete, each with a permission
pre-check.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List

from src.sync.models import FieldDescriptor


@dataclass(frozen=True)
class StoreRecord:
    """One record as returned by a store."""

    record_id: str
    fields: Dict[str, Any] = field(default_factory=dict)


class TableStore(ABC):
    """Abstract base for stores holding the source, mapping and merged tables."""

    #: Maximum records per create/delete call
    max_batch_size: int = 10

    @abstractmethod
    def table_exists(self, table_name: str) -> bool:
        """Return True if a table with this name exists."""

    @abstractmethod
    def list_fields(self, table_name: str) -> List[FieldDescriptor]:
        """
        List the fields of a table.

        Raises:
            TableNotFoundError: If the table does not exist
        """

    @abstractmethod
    def list_records(self, table_name: str) -> List[StoreRecord]:
        """
        List every record of a table.

        Raises:
            TableNotFoundError: If the table does not exist
        """

    @abstractmethod
    def create_table(self, table_name: str, field_definitions: List[Dict[str, Any]]) -> str:
        """Create a table and return its id."""

    @abstractmethod
    def create_records(self, table_name: str, rows: List[Dict[str, Any]]) -> List[str]:
        """Create records from field mappings and return their ids."""

    @abstractmethod
    def delete_records(self, table_name: str, record_ids: List[str]) -> List[str]:
        """Delete records by id and return the deleted ids."""

    def can_create_table(self, table_name: str, field_definitions: List[Dict[str, Any]]) -> bool:
        return True

    def can_create_records(self, table_name: str, rows: List[Dict[str, Any]]) -> bool:
        return True

    def can_delete_records(self, table_name: str, record_ids: List[str]) -> bool:
        return True

    def refresh(self) -> None:
        """Forget cached table metadata before a new sync run."""

    def close(self) -> None:
        """Release any held resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
