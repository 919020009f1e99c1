"""
Sync Pipeline for merged tables

Runs extract, join, provision, classify and write for each mapping table,
producing one merged table per mapping table.
"""

import contextvars
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from src.sync.classifier import Classification, RowClassifier
from src.sync.errors import ErrorKind, StoreError, SyncError, TableNotFoundError
from src.sync.extractor import TableExtractor
from src.sync.joiner import TableJoiner
from src.sync.models import ProvisioningState, Row, TableSnapshot
from src.sync.provisioner import TableProvisioner
from src.sync.writer import RecordWriter
from src.utils.correlation import CorrelationContext, TableContext
from src.utils.rate_limiter import RateLimiter

if TYPE_CHECKING:
    from src.config.settings import SyncSettings
    from src.monitoring.metrics import SyncMetrics
    from src.store.base import TableStore

logger = logging.getLogger(__name__)


@dataclass
class TableSyncResult:
    """Outcome of syncing one mapping table into its merged table."""

    mapping_table: str
    destination_table: str
    provisioning_state: ProvisioningState = ProvisioningState.NOT_PROVISIONED
    dry_run: bool = False
    source_count: int = 0
    mapping_count: int = 0
    joined_count: int = 0
    new_count: int = 0
    stale_count: int = 0
    unchanged_count: int = 0
    inserted_count: int = 0
    deleted_count: int = 0
    planned_actions: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[SyncError] = field(default_factory=list)
    failed: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        """True unless the run aborted or a write failed."""
        if self.failed:
            return False
        return not any(error.kind is ErrorKind.WRITE_FAILURE for error in self.errors)

    def counts(self) -> Dict[str, int]:
        return {
            "source": self.source_count,
            "mapping": self.mapping_count,
            "joined": self.joined_count,
            "new": self.new_count,
            "stale": self.stale_count,
            "unchanged": self.unchanged_count,
            "inserted": self.inserted_count,
            "deleted": self.deleted_count,
        }

    def to_dict(self, include_rows: bool = False) -> Dict[str, Any]:
        actions = []
        for action in self.planned_actions:
            summary = {
                "action_type": action["action_type"],
                "batch_size": action["batch_size"],
                "status": action["status"],
            }
            if include_rows:
                summary["row_data"] = action["row_data"]
            actions.append(summary)

        return {
            "mapping_table": self.mapping_table,
            "destination_table": self.destination_table,
            "provisioning_state": self.provisioning_state.value,
            "dry_run": self.dry_run,
            "succeeded": self.succeeded,
            "counts": self.counts(),
            "planned_actions": actions,
            "errors": [error.to_dict() for error in self.errors],
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class SyncRunResult:
    """Outcome of one pass over every configured mapping table."""

    correlation_id: str
    results: List[TableSyncResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return all(result.succeeded for result in self.results)

    @property
    def provisioning_states(self) -> Dict[str, ProvisioningState]:
        """Provisioning state per destination table, to carry into the next run."""
        return {result.destination_table: result.provisioning_state for result in self.results}

    def to_dict(self, include_rows: bool = False) -> Dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "succeeded": self.succeeded,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "tables": [result.to_dict(include_rows) for result in self.results],
        }


class SyncPipeline:
    """
    Synchronizes merged tables from a source table and its mapping tables.

    For each mapping table the pipeline:
    1. Extracts the source and mapping tables
    2. Right-joins them on the configured keys
    3. Provisions the merged table if needed
    4. Classifies joined rows against the merged table as new or stale
    5. Deletes stale rows and inserts new ones

    Runs against the same merged table are serialized; different merged
    tables may be processed concurrently and share one rate limiter.
    """

    def __init__(
        self,
        store: "TableStore",
        settings: "SyncSettings",
        metrics: Optional["SyncMetrics"] = None,
        rate_limiter: Optional[RateLimiter] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        """
        Initialize the pipeline.

        Args:
            store: Store holding every table of the base
            settings: Validated sync settings
            metrics: Optional metrics sink
            rate_limiter: Shared write limiter (built from settings if omitted)
            sleep: Sleep function used between retries, replaceable in tests
        """
        self.store = store
        self.settings = settings
        self.metrics = metrics
        self.rate_limiter = rate_limiter or RateLimiter(
            rate=settings.requests_per_second,
            burst=settings.burst
        )
        self.joiner = TableJoiner()
        self.classifier = RowClassifier()
        self.writer = RecordWriter(
            store,
            rate_limiter=self.rate_limiter,
            max_retries=settings.max_retries,
            backoff_base_seconds=settings.backoff_base_seconds,
            max_backoff_seconds=settings.max_backoff_seconds,
            batch_size=settings.batch_size,
            metrics=metrics,
            sleep=sleep
        )

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        logger.info(
            f"Initialized SyncPipeline: source={settings.source_table}, "
            f"mapping_tables={settings.mapping_tables}"
        )

    def _lock_for(self, table_name: str) -> threading.Lock:
        with self._locks_guard:
            if table_name not in self._locks:
                self._locks[table_name] = threading.Lock()
            return self._locks[table_name]

    def sync_table(
        self,
        mapping_table: str,
        provisioning_state: ProvisioningState = ProvisioningState.NOT_PROVISIONED,
        dry_run: Optional[bool] = None
    ) -> TableSyncResult:
        """
        Sync one mapping table into its merged table.

        Errors are collected on the result; an unexpected exception marks the
        result failed instead of propagating.

        Args:
            mapping_table: Mapping table to join against the source table
            provisioning_state: Known state of the merged table
            dry_run: Override settings.dry_run

        Returns:
            TableSyncResult
        """
        dry_run = self.settings.dry_run if dry_run is None else dry_run
        destination = self.settings.merged_table_name(mapping_table)
        result = TableSyncResult(
            mapping_table=mapping_table,
            destination_table=destination,
            provisioning_state=provisioning_state,
            dry_run=dry_run
        )
        extractor = TableExtractor(self.store)
        started = time.monotonic()

        with TableContext(destination):
            logger.info(f"Syncing {mapping_table} into {destination} (dry_run={dry_run})")

            try:
                self._sync(extractor, result, dry_run)
            except SyncError as e:
                e.table = e.table or destination
                logger.error(f"Sync of {destination} failed: {e}")
                result.errors.append(e)
                result.failed = True
            except StoreError as e:
                logger.error(f"Sync of {destination} failed: {e}")
                result.errors.append(SyncError(f"Store error: {e}", table=destination))
                result.failed = True
            except Exception as e:
                logger.exception(f"Sync of {destination} failed")
                result.errors.append(SyncError(f"Unexpected error: {e}", table=destination))
                result.failed = True
            finally:
                result.errors[:0] = extractor.drain_errors()
                result.duration_seconds = time.monotonic() - started

            self._record_metrics(result)

            logger.info(
                f"Finished {destination}: inserted={result.inserted_count}, "
                f"deleted={result.deleted_count}, unchanged={result.unchanged_count}, "
                f"errors={len(result.errors)}, duration={result.duration_seconds:.2f}s"
            )

        return result

    def _sync(self, extractor: TableExtractor, result: TableSyncResult, dry_run: bool) -> None:
        settings = self.settings

        source = extractor.snapshot(settings.source_table)
        mapping = extractor.snapshot(result.mapping_table)
        result.source_count = len(source)
        result.mapping_count = len(mapping)

        fields = self.joiner.union_fields(source.fields, mapping.fields)
        joined = self.joiner.right_join(
            source.rows,
            mapping.rows,
            settings.left_key,
            settings.right_key,
            fields
        )
        result.joined_count = len(joined)

        with self._lock_for(result.destination_table):
            state = self._provision(result, fields, dry_run)
            result.provisioning_state = state

            if state is ProvisioningState.NOT_PROVISIONED and not dry_run:
                logger.warning(f"{result.destination_table} is not provisioned; skipping writes")
                return

            current = self._destination_snapshot(extractor, result.destination_table)
            candidates = self._project(joined, current)
            classification = self.classifier.classify(candidates, current.rows)
            self._apply(result, classification, current, dry_run)

    def _provision(self, result: TableSyncResult, fields, dry_run: bool) -> ProvisioningState:
        if dry_run:
            # Planning never creates tables
            if result.provisioning_state is ProvisioningState.PROVISIONED:
                return result.provisioning_state
            if self.store.table_exists(result.destination_table):
                return ProvisioningState.PROVISIONED
            return ProvisioningState.NOT_PROVISIONED

        provisioner = TableProvisioner(self.store)
        state = provisioner.ensure_table(
            result.destination_table,
            fields,
            key_field=self.settings.right_key,
            state=result.provisioning_state
        )
        result.errors.extend(provisioner.errors)
        return state

    def _destination_snapshot(self, extractor: TableExtractor, table_name: str) -> TableSnapshot:
        try:
            return extractor.snapshot(table_name, include_record_ids=True)
        except TableNotFoundError:
            logger.info(f"{table_name} does not exist yet; treating it as empty")
            return TableSnapshot(table_name=table_name, rows=(), fields=())

    def _project(self, joined: List[Row], current: TableSnapshot) -> List[Row]:
        """Restrict joined rows to the fields the merged table actually has."""
        if not current.fields:
            return joined

        names = current.field_names
        extra = {name for row in joined for name in row.fields if name not in names}
        if extra:
            logger.warning(
                f"{current.table_name} lacks fields {sorted(extra)}; "
                f"they are left out of the comparison and writes"
            )
        return [Row(fields={name: row.fields.get(name) for name in names}) for row in joined]

    def _apply(
        self,
        result: TableSyncResult,
        classification: Classification,
        current: TableSnapshot,
        dry_run: bool
    ) -> None:
        table_name = result.destination_table
        result.new_count = len(classification.new_rows)
        result.stale_count = len(classification.stale_rows)
        result.unchanged_count = classification.unchanged_count

        if classification.is_noop:
            logger.info(f"{table_name} is up to date")
            return

        # Deletes go first so the table never holds both versions of a changed row
        delete_report = self.writer.delete_rows(
            table_name,
            classification.stale_rows,
            current.rows,
            dry_run=dry_run
        )
        insert_report = self.writer.insert_rows(
            table_name,
            classification.new_rows,
            dry_run=dry_run
        )

        for report in (delete_report, insert_report):
            result.planned_actions.extend(report.actions)
            result.errors.extend(report.errors)

        result.deleted_count = delete_report.records_written
        result.inserted_count = insert_report.records_written

    def _record_metrics(self, result: TableSyncResult) -> None:
        if not self.metrics:
            return

        self.metrics.record_table_run(
            table=result.destination_table,
            status="success" if result.succeeded else "failure",
            duration_seconds=result.duration_seconds,
            counts=result.counts(),
            dry_run=result.dry_run
        )
        for error in result.errors:
            self.metrics.record_error(table=result.destination_table, kind=error.kind.value)

    def run(
        self,
        states: Optional[Dict[str, ProvisioningState]] = None,
        max_workers: Optional[int] = None,
        dry_run: Optional[bool] = None,
        correlation_id: Optional[str] = None
    ) -> SyncRunResult:
        """
        Sync every configured mapping table once.

        Args:
            states: Provisioning state per destination table from a previous run
            max_workers: Tables processed concurrently (settings.max_workers if omitted)
            dry_run: Override settings.dry_run
            correlation_id: Correlation id for the run (generated if omitted)

        Returns:
            SyncRunResult with one TableSyncResult per mapping table, in
            configuration order
        """
        states = states or {}
        workers = max_workers or self.settings.max_workers
        started = time.monotonic()

        with CorrelationContext(correlation_id) as run_id:
            run = SyncRunResult(correlation_id=run_id)
            # Fields may have changed upstream since the previous run
            self.store.refresh()
            logger.info(
                f"Starting sync run of {len(self.settings.mapping_tables)} tables "
                f"with {workers} worker(s)"
            )

            def job(mapping_table: str) -> TableSyncResult:
                destination = self.settings.merged_table_name(mapping_table)
                state = states.get(destination, ProvisioningState.NOT_PROVISIONED)
                return self.sync_table(mapping_table, state, dry_run=dry_run)

            if workers > 1:
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync") as executor:
                    futures = [
                        executor.submit(contextvars.copy_context().run, job, mapping_table)
                        for mapping_table in self.settings.mapping_tables
                    ]
                    run.results = [future.result() for future in futures]
            else:
                run.results = [job(mapping_table) for mapping_table in self.settings.mapping_tables]

            run.duration_seconds = time.monotonic() - started
            failed = [r.destination_table for r in run.results if not r.succeeded]
            if failed:
                logger.error(f"Sync run finished with failures in {failed}")
            else:
                logger.info(f"Sync run finished in {run.duration_seconds:.2f}s")

        return run

    def watch(
        self,
        interval_seconds: Optional[float] = None,
        iterations: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
        on_result: Optional[Callable[[SyncRunResult], None]] = None
    ) -> Dict[str, ProvisioningState]:
        """
        Run repeatedly, carrying provisioning states between runs.

        Args:
            interval_seconds: Pause between runs (settings.interval_seconds if omitted)
            iterations: Stop after this many runs (run until stopped if None)
            stop_event: Event that ends the loop when set
            on_result: Callback invoked with each run's result

        Returns:
            Provisioning states after the last run
        """
        interval = interval_seconds or self.settings.interval_seconds
        stop_event = stop_event or threading.Event()
        states: Dict[str, ProvisioningState] = {}
        completed = 0

        while not stop_event.is_set():
            run = self.run(states=states)
            states.update(run.provisioning_states)
            completed += 1

            if on_result:
                on_result(run)

            if iterations is not None and completed >= iterations:
                break

            stop_event.wait(interval)

        logger.info(f"Watch loop stopped after {completed} run(s)")
        return states
