"""
Unit tests for sync writer module.

Tests insert/delete action generation, batching, permission gating and
throttling behaviour against the in-memory store.
"""

import pytest
from unittest.mock import MagicMock, patch

from prometheus_client import CollectorRegistry

from src.monitoring.metrics import SyncMetrics
from src.store.memory import InMemoryStore
from src.sync.errors import ErrorKind, PermissionDenied
from src.sync.models import FieldDescriptor, Row

TABLE = "Team A Mapping Merged Table"


@pytest.fixture
def destination():
    store = InMemoryStore()
    store.add_table(TABLE, [FieldDescriptor(name="Concept Name"), FieldDescriptor(name="X")])
    return store


@pytest.fixture
def writer(destination, fast_limiter, no_sleep):
    """Create a RecordWriter that never sleeps."""
    from src.sync.writer import RecordWriter
    return RecordWriter(destination, rate_limiter=fast_limiter, sleep=no_sleep)


def make_rows(count, prefix="C"):
    return [Row(fields={"Concept Name": f"{prefix}{i}", "X": i}) for i in range(count)]


def destination_rows(store):
    return [
        Row(fields=record.fields, record_id=record.record_id)
        for record in store.list_records(TABLE)
    ]


class TestActionGeneration:
    """Test action generation."""

    def test_insert_actions_are_batched_by_ten(self, writer):
        """Test that 23 rows become batches of 10, 10 and 3."""
        actions = writer.generate_insert_actions(make_rows(23), TABLE)

        assert [action["batch_size"] for action in actions] == [10, 10, 3]
        assert all(action["action_type"] == "INSERT" for action in actions)
        assert all(action["status"] == "pending" for action in actions)

    def test_insert_actions_strip_ids(self, writer):
        """Test that no payload carries an id."""
        rows = [Row(fields={"Concept Name": "A", "id": "rec1"}, record_id="rec1")]

        actions = writer.generate_insert_actions(rows, TABLE)

        assert actions[0]["row_data"] == [{"Concept Name": "A"}]
        assert rows[0].fields["id"] == "rec1"

    def test_no_rows_no_actions(self, writer):
        """Test that empty inputs generate nothing."""
        assert writer.generate_insert_actions([], TABLE) == []
        assert writer.generate_delete_actions([], TABLE) == []

    def test_configured_batch_size_is_capped(self, destination, fast_limiter):
        """Test that a batch size above the store limit is capped."""
        from src.sync.writer import RecordWriter

        writer = RecordWriter(destination, rate_limiter=fast_limiter, batch_size=50)

        assert writer.batch_size == 10


class TestRecordIdResolution:
    """Test mapping stale rows to destination ids."""

    def test_resolves_by_value(self, writer):
        """Test lookup of rows that lost their ids."""
        current = [
            Row(fields={"Concept Name": "A", "X": 1}, record_id="r1"),
            Row(fields={"Concept Name": "B", "X": 2}, record_id="r2"),
        ]
        stale = [Row(fields={"Concept Name": "B", "X": 2})]

        ids, misses = writer.resolve_record_ids(stale, current, TABLE)

        assert ids == ["r2"]
        assert misses == []

    def test_each_id_used_once(self, writer):
        """Test that equal stale rows resolve to distinct records."""
        current = [
            Row(fields={"Concept Name": "A"}, record_id="r1"),
            Row(fields={"Concept Name": "A"}, record_id="r2"),
        ]
        stale = [Row(fields={"Concept Name": "A"}), Row(fields={"Concept Name": "A"})]

        ids, _ = writer.resolve_record_ids(stale, current, TABLE)

        assert sorted(ids) == ["r1", "r2"]

    def test_own_id_preferred(self, writer):
        """Test that a stale row's own id is used when it belongs to the table."""
        current = [
            Row(fields={"Concept Name": "A"}, record_id="r1"),
            Row(fields={"Concept Name": "A"}, record_id="r2"),
        ]
        stale = [Row(fields={"Concept Name": "A"}, record_id="r2")]

        ids, _ = writer.resolve_record_ids(stale, current, TABLE)

        assert ids == ["r2"]

    def test_unmatched_row_is_lookup_miss(self, writer):
        """Test that unresolvable rows are reported, not raised."""
        stale = [Row(fields={"Concept Name": "Ghost"})]

        ids, misses = writer.resolve_record_ids(stale, [], TABLE)

        assert ids == []
        assert misses[0].kind is ErrorKind.LOOKUP_MISS
        assert misses[0].row == {"Concept Name": "Ghost"}

    def test_lookup_miss_names_differing_fields(self, writer):
        """Test that a miss reports where the nearest destination row differs."""
        current = [
            Row(fields={"Concept Name": "A", "X": 1}, record_id="r1"),
            Row(fields={"Concept Name": "B", "X": 5}, record_id="r2"),
        ]
        stale = [Row(fields={"Concept Name": "A", "X": 2})]

        ids, misses = writer.resolve_record_ids(stale, current, TABLE)

        assert ids == []
        assert misses[0].message.endswith("(closest record differs in X)")


class TestApplyingWrites:
    """Test applying actions to the store."""

    def test_insert_writes_all_rows(self, writer, destination):
        """Test inserting 23 rows in three calls."""
        report = writer.insert_rows(TABLE, make_rows(23))

        assert report.records_written == 23
        assert len(destination.list_records(TABLE)) == 23
        create_calls = [call for call in destination.calls if call[0] == "create_records"]
        assert [call[2] for call in create_calls] == [10, 10, 3]
        assert all(action["status"] == "executed" for action in report.actions)

    def test_empty_insert_makes_no_calls(self, writer, destination):
        """Test that nothing is sent for empty inputs."""
        report = writer.insert_rows(TABLE, [])

        assert report.records_written == 0
        assert destination.calls == []

    def test_delete_removes_resolved_records(self, writer, destination):
        """Test deleting stale rows by value."""
        writer.insert_rows(TABLE, make_rows(3))
        current = destination_rows(destination)
        stale = [Row(fields={"Concept Name": "C1", "X": 1})]

        report = writer.delete_rows(TABLE, stale, current)

        assert report.records_written == 1
        remaining = sorted(row["Concept Name"] for row in destination.rows(TABLE))
        assert remaining == ["C0", "C2"]

    def test_dry_run_writes_nothing(self, writer, destination):
        """Test that dry runs only plan actions."""
        report = writer.insert_rows(TABLE, make_rows(3), dry_run=True)

        assert report.records_written == 0
        assert report.attempted == 3
        assert report.actions[0]["status"] == "planned"
        assert report.actions[0]["dry_run"] is True
        assert destination.list_records(TABLE) == []

    def test_denied_permission_skips_batch(self, writer, destination):
        """Test that a refused permission check makes no call."""
        destination.denied_operations.add("create_records")

        report = writer.insert_rows(TABLE, make_rows(2))

        assert report.records_written == 0
        assert report.actions[0]["status"] == "skipped"
        assert report.errors[0].kind is ErrorKind.PERMISSION_DENIED
        assert not any(call[0] == "create_records" for call in destination.calls)

    def test_store_refusal_is_recorded(self, fast_limiter, no_sleep):
        """Test that a 403 from the store skips the batch."""
        from src.sync.writer import RecordWriter

        store = MagicMock()
        store.max_batch_size = 10
        store.can_create_records.return_value = True
        store.create_records.side_effect = PermissionDenied("forbidden")
        writer = RecordWriter(store, rate_limiter=fast_limiter, sleep=no_sleep)

        report = writer.insert_rows(TABLE, make_rows(1))

        assert report.actions[0]["status"] == "skipped"
        assert report.errors[0].table == TABLE

    def test_throttled_batch_is_retried(self, writer, destination, no_sleep):
        """Test that 429 responses are retried after the advised delay."""
        destination.throttle_next = 2
        destination.throttle_retry_after = 0.5

        report = writer.insert_rows(TABLE, make_rows(1))

        assert report.records_written == 1
        assert no_sleep.delays == [0.5, 0.5]
        assert report.errors == []

    def test_throttle_holds_back_the_limiter(self, writer, destination, fast_limiter):
        """Test that the advised delay drains the shared bucket for other workers."""
        destination.throttle_next = 1
        destination.throttle_retry_after = 0.5

        with patch.object(fast_limiter, "penalize", wraps=fast_limiter.penalize) as penalize:
            writer.insert_rows(TABLE, make_rows(1))

        penalize.assert_called_once_with(0.5)
        assert fast_limiter.total_wait_seconds == pytest.approx(0.5, abs=0.01)

    def test_exhausted_retries_are_write_failure(self, destination, fast_limiter, no_sleep):
        """Test that persistent throttling becomes a WriteFailure."""
        from src.sync.writer import RecordWriter

        writer = RecordWriter(destination, rate_limiter=fast_limiter, max_retries=2, sleep=no_sleep)
        destination.throttle_next = 10

        report = writer.insert_rows(TABLE, make_rows(1))

        assert report.records_written == 0
        assert report.actions[0]["status"] == "failed"
        assert report.errors[0].kind is ErrorKind.WRITE_FAILURE
        assert len(no_sleep.delays) == 2

    def test_failed_batch_does_not_stop_later_batches(self, writer, destination):
        """Test continue-on-error across batches."""
        destination.fail_next = 1

        report = writer.insert_rows(TABLE, make_rows(15))

        assert [action["status"] for action in report.actions] == ["failed", "executed"]
        assert report.records_written == 5
        assert len(report.errors) == 1

    def test_metrics_are_recorded(self, destination, fast_limiter, no_sleep):
        """Test that write outcomes reach the metrics sink."""
        from src.sync.writer import RecordWriter

        registry = CollectorRegistry()
        metrics = SyncMetrics(registry=registry)
        writer = RecordWriter(destination, rate_limiter=fast_limiter, metrics=metrics, sleep=no_sleep)
        destination.throttle_next = 1

        writer.insert_rows(TABLE, make_rows(3))

        assert registry.get_sample_value(
            "airtable_sync_write_actions_total",
            {"table": TABLE, "action_type": "INSERT", "status": "success"}
        ) == 3
        assert registry.get_sample_value("airtable_sync_throttled_requests_total") == 1
