"""
Record Writer for merged table synchronization

Generates insert/delete actions from classified rows and applies them to the
destination table in batches. Every mutation is gated by the store's
permission check and paced by a shared rate limiter; throttled calls are
retried with backoff.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple

from src.sync.comparer import RowComparer
from src.sync.errors import (
    LookupMiss,
    PermissionDenied,
    StoreError,
    SyncError,
    ThrottledError,
    WriteFailure,
)
from src.sync.models import Row
from src.utils.rate_limiter import RateLimiter
from src.utils.retry import call_with_backoff

if TYPE_CHECKING:
    from src.monitoring.metrics import SyncMetrics
    from src.store.base import TableStore

logger = logging.getLogger(__name__)

INSERT = "INSERT"
DELETE = "DELETE"


@dataclass
class WriteReport:
    """Outcome of applying one kind of write to a table."""

    action_type: str
    table: str
    actions: List[Dict[str, Any]] = field(default_factory=list)
    records_written: int = 0
    errors: List[SyncError] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return sum(len(action["row_data"]) for action in self.actions)


class RecordWriter:
    """
    Applies inserts and deletes to a destination table.

    Failures never propagate: permission denials, unresolved rows and
    failed calls are recorded on the returned WriteReport and logged.
    """

    def __init__(
        self,
        store: "TableStore",
        rate_limiter: Optional[RateLimiter] = None,
        max_retries: int = 5,
        backoff_base_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0,
        batch_size: Optional[int] = None,
        metrics: Optional["SyncMetrics"] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        """
        Initialize the record writer.

        Args:
            store: Destination store
            rate_limiter: Shared limiter (a private 5 req/s limiter if omitted)
            max_retries: Retries for throttled calls
            backoff_base_seconds: Initial backoff delay
            max_backoff_seconds: Backoff ceiling
            batch_size: Records per call, capped at the store's limit
            metrics: Optional metrics sink
            sleep: Sleep function used between retries, replaceable in tests
        """
        self.store = store
        self.rate_limiter = rate_limiter or RateLimiter()
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.batch_size = min(batch_size or store.max_batch_size, store.max_batch_size)
        self.metrics = metrics
        self.comparer = RowComparer()
        self._sleep = sleep
        logger.debug(f"Initialized RecordWriter (batch_size={self.batch_size})")

    # ------------------------------------------------------------------
    # Action generation
    # ------------------------------------------------------------------

    def generate_insert_actions(self, rows: Sequence[Row], table_name: str) -> List[Dict[str, Any]]:
        """
        Generate batched INSERT actions for new rows.

        Identifiers are stripped from every row.

        Args:
            rows: Rows to insert
            table_name: Destination table

        Returns:
            List of INSERT actions, empty if there are no rows
        """
        if not rows:
            return []

        payloads = [dict(row.fields) for row in rows]
        for payload in payloads:
            payload.pop("id", None)

        return [
            self._action(INSERT, table_name, batch)
            for batch in self._batches(payloads)
        ]

    def generate_delete_actions(self, record_ids: Sequence[str], table_name: str) -> List[Dict[str, Any]]:
        """
        Generate batched DELETE actions for resolved record ids.

        Args:
            record_ids: Destination record ids
            table_name: Destination table

        Returns:
            List of DELETE actions, empty if there are no ids
        """
        if not record_ids:
            return []

        return [
            self._action(DELETE, table_name, batch)
            for batch in self._batches(list(record_ids))
        ]

    def resolve_record_ids(
        self,
        stale_rows: Sequence[Row],
        destination_rows: Sequence[Row],
        table_name: Optional[str] = None
    ) -> Tuple[List[str], List[LookupMiss]]:
        """
        Map stale rows to destination record ids by value equality.

        A row's own record id is used when it belongs to the destination.
        Each destination id is handed out at most once.

        Args:
            stale_rows: Rows to delete
            destination_rows: Destination snapshot rows carrying record ids
            table_name: Table name used for error reporting

        Returns:
            Tuple of (resolved ids, lookup misses)
        """
        by_signature = defaultdict(deque)
        known_ids = set()
        for row in destination_rows:
            if row.record_id:
                by_signature[self.comparer.row_signature(row)].append(row.record_id)
                known_ids.add(row.record_id)

        used = set()
        resolved = []
        misses = []

        for row in stale_rows:
            record_id = None

            if row.record_id and row.record_id in known_ids and row.record_id not in used:
                record_id = row.record_id
            else:
                candidates = by_signature[self.comparer.row_signature(row)]
                while candidates and candidates[0] in used:
                    candidates.popleft()
                if candidates:
                    record_id = candidates.popleft()

            if record_id is None:
                message = "No destination record matches stale row"
                closest = self._closest_difference(row, destination_rows)
                if closest:
                    message += f" (closest record differs in {', '.join(closest)})"
                miss = LookupMiss(message, table=table_name, row=dict(row.fields))
                logger.error(f"{miss.message} in {table_name}: {row.fields}")
                misses.append(miss)
                continue

            used.add(record_id)
            resolved.append(record_id)

        return resolved, misses

    def _closest_difference(self, row: Row, destination_rows: Sequence[Row]) -> List[str]:
        """Field names in which the most similar destination row differs from ``row``."""
        best = None
        for candidate in destination_rows:
            detail = self.comparer.compare_rows_detailed(row, candidate)
            if best is None or len(detail["differing_fields"]) < len(best["differing_fields"]):
                best = detail
        if best is None:
            return []

        logger.debug(f"Closest destination row differences: {best['differences']}")
        return best["differing_fields"]

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def insert_rows(self, table_name: str, rows: Sequence[Row], dry_run: bool = False) -> WriteReport:
        """
        Insert new rows into the destination table.

        No call is made when ``rows`` is empty.

        Args:
            table_name: Destination table
            rows: Rows to insert
            dry_run: Generate actions without calling the store

        Returns:
            WriteReport
        """
        report = WriteReport(action_type=INSERT, table=table_name)
        report.actions = self.generate_insert_actions(rows, table_name)
        self._apply(report, dry_run)
        return report

    def delete_rows(
        self,
        table_name: str,
        stale_rows: Sequence[Row],
        destination_rows: Sequence[Row],
        dry_run: bool = False
    ) -> WriteReport:
        """
        Delete stale rows from the destination table.

        Rows that cannot be resolved to a record id are reported as
        LookupMiss and skipped.

        Args:
            table_name: Destination table
            stale_rows: Rows to delete
            destination_rows: Destination snapshot used for id lookup
            dry_run: Generate actions without calling the store

        Returns:
            WriteReport
        """
        report = WriteReport(action_type=DELETE, table=table_name)
        record_ids, misses = self.resolve_record_ids(stale_rows, destination_rows, table_name)
        report.errors.extend(misses)
        report.actions = self.generate_delete_actions(record_ids, table_name)
        self._apply(report, dry_run)
        return report

    def _apply(self, report: WriteReport, dry_run: bool) -> None:
        for i, action in enumerate(report.actions):
            action["dry_run"] = dry_run

            if dry_run:
                action["status"] = "planned"
                continue

            batch = action["row_data"]

            if not self._permitted(action["action_type"], report.table, batch):
                error = PermissionDenied(
                    f"{action['action_type']} of {len(batch)} records not permitted",
                    table=report.table
                )
                logger.warning(f"{error.message} on {report.table}; skipping")
                action["status"] = "skipped"
                report.errors.append(error)
                self._record_metric(report.table, action["action_type"], "denied", len(batch))
                continue

            try:
                logger.debug(
                    f"Executing action {i + 1}/{len(report.actions)}: "
                    f"{action['action_type']} of {len(batch)} records on {report.table}"
                )
                written = self._execute(action["action_type"], report.table, batch)
                action["status"] = "executed"
                action["executed_at"] = datetime.now(timezone.utc).isoformat()
                report.records_written += len(written)
                self._record_metric(report.table, action["action_type"], "success", len(written))

            except PermissionDenied as e:
                e.table = e.table or report.table
                logger.warning(f"Store refused {action['action_type']} on {report.table}: {e}")
                action["status"] = "skipped"
                report.errors.append(e)
                self._record_metric(report.table, action["action_type"], "denied", len(batch))

            except StoreError as e:
                error = WriteFailure(
                    f"{action['action_type']} of {len(batch)} records failed: {e}",
                    table=report.table
                )
                logger.error(f"Failed to execute action on {report.table}: {e}")
                action["status"] = "failed"
                action["error"] = str(e)
                report.errors.append(error)
                self._record_metric(report.table, action["action_type"], "failure", len(batch))

        if report.actions and not dry_run:
            logger.info(
                f"{report.action_type}: wrote {report.records_written}/{report.attempted} "
                f"records on {report.table}"
            )

    def _permitted(self, action_type: str, table_name: str, batch: List[Any]) -> bool:
        if action_type == INSERT:
            return self.store.can_create_records(table_name, batch)
        return self.store.can_delete_records(table_name, batch)

    def _execute(self, action_type: str, table_name: str, batch: List[Any]) -> List[str]:
        operation = self.store.create_records if action_type == INSERT else self.store.delete_records

        def paced_call():
            self.rate_limiter.acquire()
            return operation(table_name, batch)

        return call_with_backoff(
            paced_call,
            max_retries=self.max_retries,
            base_delay=self.backoff_base_seconds,
            max_delay=self.max_backoff_seconds,
            retryable_exceptions=(ThrottledError,),
            on_retry=self._on_throttled,
            sleep=self._sleep
        )

    def _on_throttled(self, attempt: int, error: Exception, delay: float) -> None:
        self.rate_limiter.penalize(delay)
        if self.metrics:
            self.metrics.record_throttle()

    def _record_metric(self, table: str, action_type: str, status: str, count: int) -> None:
        if self.metrics:
            self.metrics.record_write_action(
                table=table,
                action_type=action_type,
                status=status,
                count=count
            )

    def _batches(self, items: List[Any]) -> List[List[Any]]:
        return [items[i:i + self.batch_size] for i in range(0, len(items), self.batch_size)]

    def _action(self, action_type: str, table_name: str, batch: List[Any]) -> Dict[str, Any]:
        return {
            "action_type": action_type,
            "table": table_name,
            "row_data": batch,
            "batch_size": len(batch),
            "status": "pending",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
