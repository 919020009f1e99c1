"""
Prometheus Metrics for merged table sync

Tracks sync runs, row classification, write actions, throttling and errors.
Metrics are exposed on a configurable port for Prometheus scraping.
"""

import logging
from typing import Dict, Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
)

logger = logging.getLogger(__name__)

ROW_CLASSES = ("new", "stale", "unchanged")


class SyncMetrics:
    """
    Prometheus metrics for merged table sync runs.

    Pass a private CollectorRegistry to keep instances independent (tests,
    several pipelines in one process); the default registry is used otherwise.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None, port: int = 9090):
        """
        Initialize sync metrics.

        Args:
            registry: Registry to register metrics with
            port: Port for the Prometheus metrics server
        """
        self.registry = registry if registry is not None else REGISTRY
        self.port = port

        # Table sync runs
        self.sync_runs_total = Counter(
            'airtable_sync_runs_total',
            'Total number of table sync runs',
            ['table', 'status', 'mode'],
            registry=self.registry
        )

        # Classified rows
        self.rows_classified_total = Counter(
            'airtable_sync_rows_classified_total',
            'Total rows classified by outcome',
            ['table', 'classification'],
            registry=self.registry
        )

        # Write actions
        self.write_actions_total = Counter(
            'airtable_sync_write_actions_total',
            'Total records affected by write actions',
            ['table', 'action_type', 'status'],
            registry=self.registry
        )

        # Throttled calls
        self.throttled_requests_total = Counter(
            'airtable_sync_throttled_requests_total',
            'Total store calls rejected by rate limiting',
            registry=self.registry
        )

        # Errors
        self.errors_total = Counter(
            'airtable_sync_errors_total',
            'Total sync errors by kind',
            ['table', 'kind'],
            registry=self.registry
        )

        # Sync duration
        self.sync_duration_seconds = Histogram(
            'airtable_sync_duration_seconds',
            'Duration of table sync runs in seconds',
            ['table'],
            buckets=[0.5, 1, 5, 10, 30, 60, 120, 300, 600],
            registry=self.registry
        )

        # Current table sizes
        self.joined_rows = Gauge(
            'airtable_sync_joined_rows',
            'Rows produced by the latest join',
            ['table'],
            registry=self.registry
        )

        self.pending_changes = Gauge(
            'airtable_sync_pending_changes',
            'Rows the latest run classified as new or stale',
            ['table'],
            registry=self.registry
        )

        self.last_success_timestamp = Gauge(
            'airtable_sync_last_success_timestamp_seconds',
            'Unix time of the latest successful sync',
            ['table'],
            registry=self.registry
        )

        self.sync_info = Info(
            'airtable_sync',
            'Merged table sync information',
            registry=self.registry
        )
        self.sync_info.info({'version': '1.0.0', 'store': 'airtable'})

        logger.info("SyncMetrics initialized")

    def record_table_run(
        self,
        table: str,
        status: str,
        duration_seconds: float,
        counts: Dict[str, int],
        dry_run: bool = False
    ) -> None:
        """
        Record a table sync run.

        Args:
            table: Destination table name
            status: Run status (success/failure)
            duration_seconds: Duration in seconds
            counts: Dict with joined, new, stale and unchanged counts
            dry_run: Whether the run only planned changes
        """
        mode = 'dry_run' if dry_run else 'apply'

        self.sync_runs_total.labels(table=table, status=status, mode=mode).inc()
        self.sync_duration_seconds.labels(table=table).observe(duration_seconds)

        for classification in ROW_CLASSES:
            self.rows_classified_total.labels(
                table=table,
                classification=classification
            ).inc(counts.get(classification, 0))

        self.joined_rows.labels(table=table).set(counts.get('joined', 0))
        self.pending_changes.labels(table=table).set(
            counts.get('new', 0) + counts.get('stale', 0)
        )

        if status == 'success' and not dry_run:
            self.last_success_timestamp.labels(table=table).set_to_current_time()

        logger.debug(
            f"Recorded sync metrics for {table}: status={status}, "
            f"mode={mode}, duration={duration_seconds:.2f}s, counts={counts}"
        )

    def record_write_action(
        self,
        table: str,
        action_type: str,
        status: str,
        count: int = 1
    ) -> None:
        """
        Record a write action.

        Args:
            table: Destination table name
            action_type: INSERT or DELETE
            status: success, denied or failure
            count: Records in the action
        """
        self.write_actions_total.labels(
            table=table,
            action_type=action_type,
            status=status
        ).inc(count)

    def record_throttle(self) -> None:
        """Record a throttled store call."""
        self.throttled_requests_total.inc()

    def record_error(self, table: str, kind: str) -> None:
        """Record a sync error by kind."""
        self.errors_total.labels(table=table, kind=kind).inc()

    def start_server(self) -> None:
        """Start Prometheus metrics HTTP server."""
        try:
            start_http_server(self.port, registry=self.registry)
            logger.info(f"Metrics server started on port {self.port}")
        except OSError as e:
            if "Address already in use" in str(e):
                logger.warning(f"Metrics server already running on port {self.port}")
            else:
                raise


# Singleton instance
_sync_metrics: Optional[SyncMetrics] = None


def get_sync_metrics(port: int = 9090) -> SyncMetrics:
    """
    Get or create the process-wide metrics instance.

    Args:
        port: Port for metrics server

    Returns:
        SyncMetrics registered with the default registry
    """
    global _sync_metrics

    if _sync_metrics is None:
        _sync_metrics = SyncMetrics(port=port)

    return _sync_metrics
