"""
Merged Table Sync Module

Keeps one merged table per mapping table in step with the right join of a
shared source table and that mapping table.

Main components:
- extractor: Table snapshots with nested values cleaned
- joiner: Right join on the configured keys
- classifier: New/stale row classification against the merged table
- writer: Batched, rate-limited inserts and deletes
- provisioner: Merged table creation
- pipeline: Per-table orchestration and concurrent runs

Usage:
    from src.store import InMemoryStore
    from src.config import SyncSettings
    from src.sync import SyncPipeline

    pipeline = SyncPipeline(store, SyncSettings())
    run = pipeline.run()
    states = run.provisioning_states
"""

from src.sync.classifier import Classification, RowClassifier
from src.sync.comparer import RowComparer
from src.sync.extractor import TableExtractor
from src.sync.joiner import TableJoiner
from src.sync.models import FieldDescriptor, FieldType, ProvisioningState, Row, TableSnapshot
from src.sync.pipeline import SyncPipeline, SyncRunResult, TableSyncResult
from src.sync.provisioner import TableProvisioner
from src.sync.writer import RecordWriter, WriteReport

__all__ = [
    "Classification",
    "FieldDescriptor",
    "FieldType",
    "ProvisioningState",
    "RecordWriter",
    "Row",
    "RowClassifier",
    "RowComparer",
    "SyncPipeline",
    "SyncRunResult",
    "TableExtractor",
    "TableJoiner",
    "TableProvisioner",
    "TableSnapshot",
    "TableSyncResult",
    "WriteReport",
]

__version__ = "1.0.0"
