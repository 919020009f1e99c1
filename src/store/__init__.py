"""
Table stores for merged table synchronization.

Main components:
- base: TableStore interface and StoreRecord
- airtable: Airtable Web API implementation
- memory: in-memory implementation for tests and demo runs
"""

from src.store.base import StoreRecord, TableStore
from src.store.memory import InMemoryStore
from src.store.airtable import AirtableStore

__all__ = [
    "StoreRecord",
    "TableStore",
    "InMemoryStore",
    "AirtableStore",
]
