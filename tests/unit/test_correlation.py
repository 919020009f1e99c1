"""
Unit tests for correlation module.
"""

import logging
import uuid

import pytest

from src.utils.correlation import (
    CorrelationContext,
    TableContext,
    clear_correlation_id,
    correlation_id_filter,
    generate_correlation_id,
    get_correlation_id,
    get_sync_table,
    set_correlation_id,
    setup_correlation_logging,
)


def make_record():
    return logging.LogRecord("test", logging.INFO, __file__, 1, "message", None, None)


class TestCorrelationIdGeneration:
    """Test correlation ID generation functions."""

    def test_generate_correlation_id_returns_valid_uuid(self):
        """Test that generated correlation ID is a valid UUID."""
        correlation_id = generate_correlation_id()

        assert str(uuid.UUID(correlation_id)) == correlation_id

    def test_generate_correlation_id_returns_unique_values(self):
        """Test that multiple generated IDs are unique."""
        assert len({generate_correlation_id() for _ in range(3)}) == 3


class TestCorrelationIdContext:
    """Test correlation ID context management."""

    def test_set_and_get(self):
        set_correlation_id("run-1")
        assert get_correlation_id() == "run-1"

        clear_correlation_id()
        assert get_correlation_id() is None

    @pytest.mark.parametrize("bad", ["", None, 123])
    def test_set_rejects_invalid(self, bad):
        with pytest.raises(ValueError):
            set_correlation_id(bad)

    def test_context_generates_id(self):
        """Test that a context without an ID creates one."""
        with CorrelationContext() as correlation_id:
            assert get_correlation_id() == correlation_id

        assert get_correlation_id() is None

    def test_context_restores_previous_id(self):
        """Test nesting of correlation contexts."""
        with CorrelationContext("outer"):
            with CorrelationContext("inner") as inner:
                assert inner == "inner"
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"

    def test_context_restores_after_exception(self):
        with pytest.raises(RuntimeError):
            with CorrelationContext("run-2"):
                raise RuntimeError("boom")

        assert get_correlation_id() is None

    def test_table_context(self):
        """Test naming the table being synced."""
        with TableContext("Team A Mapping Merged Table") as table:
            assert get_sync_table() == table

        assert get_sync_table() is None


class TestCorrelationLogging:
    """Test the logging filter."""

    def test_filter_adds_fields(self):
        record = make_record()

        with CorrelationContext("run-3"), TableContext("Merged"):
            assert correlation_id_filter(record) is True

        assert record.correlation_id == "run-3"
        assert record.sync_table == "Merged"

    def test_filter_defaults(self):
        record = make_record()

        correlation_id_filter(record)

        assert record.correlation_id == "N/A"
        assert record.sync_table == "-"

    def test_setup_correlation_logging(self):
        handler = logging.NullHandler()

        setup_correlation_logging(handler)

        assert correlation_id_filter in handler.filters
