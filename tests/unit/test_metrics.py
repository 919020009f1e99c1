"""
Unit tests for monitoring metrics module.
"""

import pytest
from unittest.mock import patch

from prometheus_client import CollectorRegistry

from src.monitoring.metrics import SyncMetrics

TABLE = "Team A Mapping Merged Table"


class TestSyncMetrics:
    """Test suite for SyncMetrics."""

    @pytest.fixture
    def registry(self):
        return CollectorRegistry()

    @pytest.fixture
    def metrics(self, registry):
        return SyncMetrics(registry=registry, port=9999)

    def test_instances_with_separate_registries(self):
        """Test that private registries avoid duplicate registration."""
        SyncMetrics(registry=CollectorRegistry())
        SyncMetrics(registry=CollectorRegistry())

    def test_record_table_run(self, metrics, registry):
        """Test run counters, classification counters and gauges."""
        metrics.record_table_run(
            table=TABLE,
            status="success",
            duration_seconds=1.5,
            counts={"joined": 4, "new": 1, "stale": 2, "unchanged": 3}
        )

        assert registry.get_sample_value(
            "airtable_sync_runs_total", {"table": TABLE, "status": "success", "mode": "apply"}
        ) == 1
        assert registry.get_sample_value(
            "airtable_sync_rows_classified_total", {"table": TABLE, "classification": "stale"}
        ) == 2
        assert registry.get_sample_value("airtable_sync_joined_rows", {"table": TABLE}) == 4
        assert registry.get_sample_value("airtable_sync_pending_changes", {"table": TABLE}) == 3
        assert registry.get_sample_value(
            "airtable_sync_duration_seconds_count", {"table": TABLE}
        ) == 1
        assert registry.get_sample_value(
            "airtable_sync_last_success_timestamp_seconds", {"table": TABLE}
        ) > 0

    def test_dry_run_does_not_mark_success_time(self, metrics, registry):
        """Test that planning runs are labelled and leave the success time alone."""
        metrics.record_table_run(
            table=TABLE, status="success", duration_seconds=0.1, counts={}, dry_run=True
        )

        assert registry.get_sample_value(
            "airtable_sync_runs_total", {"table": TABLE, "status": "success", "mode": "dry_run"}
        ) == 1
        assert registry.get_sample_value(
            "airtable_sync_last_success_timestamp_seconds", {"table": TABLE}
        ) is None

    def test_record_write_action(self, metrics, registry):
        """Test write action counts."""
        metrics.record_write_action(table=TABLE, action_type="DELETE", status="success", count=10)
        metrics.record_write_action(table=TABLE, action_type="DELETE", status="success", count=3)

        assert registry.get_sample_value(
            "airtable_sync_write_actions_total",
            {"table": TABLE, "action_type": "DELETE", "status": "success"}
        ) == 13

    def test_record_error_and_throttle(self, metrics, registry):
        """Test error and throttling counters."""
        metrics.record_error(table=TABLE, kind="lookup_miss")
        metrics.record_throttle()
        metrics.record_throttle()

        assert registry.get_sample_value(
            "airtable_sync_errors_total", {"table": TABLE, "kind": "lookup_miss"}
        ) == 1
        assert registry.get_sample_value("airtable_sync_throttled_requests_total") == 2

    def test_start_server_uses_registry(self, metrics, registry):
        """Test that the HTTP server exposes this instance's registry."""
        with patch("src.monitoring.metrics.start_http_server") as mock_server:
            metrics.start_server()

        mock_server.assert_called_once_with(9999, registry=registry)

    def test_start_server_port_in_use(self, metrics):
        """Test that an occupied port only logs a warning."""
        with patch("src.monitoring.metrics.start_http_server",
                   side_effect=OSError("Address already in use")):
            metrics.start_server()

    def test_start_server_other_error(self, metrics):
        """Test that other OS errors propagate."""
        with patch("src.monitoring.metrics.start_http_server",
                   side_effect=OSError("Permission denied")):
            with pytest.raises(OSError):
                metrics.start_server()
