"""
In-memory table store

Dict-backed base used by tests and by the CLI demo mode. Supports denying
individual operations and injecting throttling to exercise error paths.
"""

import copy
import itertools
import logging
import threading
from typing import Any, Dict, List, Optional

from src.store.base import StoreRecord, TableStore
from src.sync.errors import StoreError, TableNotFoundError, ThrottledError
from src.sync.models import FieldDescriptor

logger = logging.getLogger(__name__)


class InMemoryStore(TableStore):
    """
    Table store held in process memory.

    Attributes:
        denied_operations: Operation names ("create_table", "create_records",
            "delete_records") whose permission check answers False
        throttle_next: Number of upcoming write calls that raise ThrottledError
        fail_next: Number of upcoming write calls that raise StoreError
        calls: Log of (operation, table_name, size) for every write call
    """

    def __init__(self, max_batch_size: int = 10):
        self.max_batch_size = max_batch_size
        self._tables: Dict[str, Dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self.denied_operations = set()
        self.throttle_next = 0
        self.throttle_retry_after: Optional[float] = None
        self.fail_next = 0
        self.calls: List[tuple] = []

    def add_table(
        self,
        table_name: str,
        fields: List[FieldDescriptor],
        rows: Optional[List[Dict[str, Any]]] = None
    ) -> str:
        """
        Seed a table with fields and rows.

        Returns:
            New table id
        """
        with self._lock:
            table_id = f"tbl{next(self._ids):05d}"
            self._tables[table_name] = {
                "id": table_id,
                "fields": list(fields),
                "records": {},
            }
            for row in rows or []:
                self._insert(table_name, row)
            return table_id

    def _table(self, table_name: str) -> Dict[str, Any]:
        table = self._tables.get(table_name)
        if table is None:
            raise TableNotFoundError(table_name)
        return table

    def _insert(self, table_name: str, row: Dict[str, Any]) -> str:
        record_id = f"rec{next(self._ids):05d}"
        # Empty cells are not stored, as in Airtable
        self._tables[table_name]["records"][record_id] = {
            name: copy.deepcopy(value) for name, value in row.items() if value is not None
        }
        return record_id

    def _check_faults(self, operation: str) -> None:
        if self.throttle_next > 0:
            self.throttle_next -= 1
            raise ThrottledError(
                f"Rate limit exceeded during {operation}",
                retry_after=self.throttle_retry_after
            )
        if self.fail_next > 0:
            self.fail_next -= 1
            raise StoreError(f"Injected failure during {operation}", status_code=500)

    def table_exists(self, table_name: str) -> bool:
        with self._lock:
            return table_name in self._tables

    def table_names(self) -> List[str]:
        with self._lock:
            return list(self._tables)

    def list_fields(self, table_name: str) -> List[FieldDescriptor]:
        with self._lock:
            return list(self._table(table_name)["fields"])

    def list_records(self, table_name: str) -> List[StoreRecord]:
        with self._lock:
            records = self._table(table_name)["records"]
            return [
                StoreRecord(record_id=record_id, fields=copy.deepcopy(values))
                for record_id, values in records.items()
            ]

    def create_table(self, table_name: str, field_definitions: List[Dict[str, Any]]) -> str:
        with self._lock:
            self.calls.append(("create_table", table_name, len(field_definitions)))
            if table_name in self._tables:
                raise StoreError(f"Table already exists: {table_name}", status_code=422)
            fields = [FieldDescriptor.from_dict(d) for d in field_definitions]
            return self.add_table(table_name, fields)

    def create_records(self, table_name: str, rows: List[Dict[str, Any]]) -> List[str]:
        with self._lock:
            self.calls.append(("create_records", table_name, len(rows)))
            self._check_faults("create_records")
            self._check_batch(rows)
            self._table(table_name)
            return [self._insert(table_name, row) for row in rows]

    def delete_records(self, table_name: str, record_ids: List[str]) -> List[str]:
        with self._lock:
            self.calls.append(("delete_records", table_name, len(record_ids)))
            self._check_faults("delete_records")
            self._check_batch(record_ids)
            records = self._table(table_name)["records"]
            missing = [rid for rid in record_ids if rid not in records]
            if missing:
                raise StoreError(f"Records not found: {missing}", status_code=404)
            for record_id in record_ids:
                del records[record_id]
            return list(record_ids)

    def _check_batch(self, items: List[Any]) -> None:
        if len(items) > self.max_batch_size:
            raise StoreError(
                f"Batch of {len(items)} exceeds limit of {self.max_batch_size}",
                status_code=422
            )

    def can_create_table(self, table_name: str, field_definitions: List[Dict[str, Any]]) -> bool:
        return "create_table" not in self.denied_operations

    def can_create_records(self, table_name: str, rows: List[Dict[str, Any]]) -> bool:
        return "create_records" not in self.denied_operations

    def can_delete_records(self, table_name: str, record_ids: List[str]) -> bool:
        return "delete_records" not in self.denied_operations

    def rows(self, table_name: str) -> List[Dict[str, Any]]:
        """Return the field mappings of every record in a table."""
        return [record.fields for record in self.list_records(table_name)]
