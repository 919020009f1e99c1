"""
Pytest configuration and shared fixtures for unit and integration tests.

Provides an in-memory base seeded with a source table and two team mapping
tables, plus settings and a rate limiter that never slow tests down.
"""

import pytest

from src.config.settings import SyncSettings
from src.store.memory import InMemoryStore
from src.sync.models import FieldDescriptor, FieldType
from src.utils.correlation import clear_correlation_id
from src.utils.rate_limiter import RateLimiter

SOURCE_TABLE = "Source Data"
TEAM_A = "Team A Mapping"
TEAM_B = "Team B Mapping"
KEY = "Concept Name"

SOURCE_FIELDS = [
    FieldDescriptor(name=KEY, field_id="fldKey"),
    FieldDescriptor(name="Definition", type=FieldType.MULTILINE_TEXT, field_id="fldDef"),
    FieldDescriptor(
        name="Owner Group",
        type=FieldType.SINGLE_SELECT,
        options={"choices": [
            {"id": "selPlat", "name": "Platform", "color": "blueLight2"},
            {"id": "selData", "name": "Data", "color": "greenLight2"},
        ]},
        field_id="fldOwner"
    ),
]

MAPPING_FIELDS = [
    FieldDescriptor(name=KEY, field_id="fldMapKey"),
    FieldDescriptor(name="Team Field", field_id="fldTeam"),
]

SOURCE_ROWS = [
    {KEY: "Active User", "Definition": "Signed in within 30 days",
     "Owner Group": {"id": "selPlat", "name": "Platform", "color": "blueLight2"}},
    {KEY: "Churned Account", "Definition": "No paid seats for 90 days",
     "Owner Group": {"id": "selData", "name": "Data", "color": "greenLight2"}},
    {KEY: "Trial", "Definition": "Account in its first 14 days"},
]

TEAM_A_ROWS = [
    {KEY: "Active User", "Team Field": "dau_flag"},
    {KEY: "Trial", "Team Field": "is_trial"},
    {KEY: "Unmapped Concept", "Team Field": "legacy_col"},
]

TEAM_B_ROWS = [
    {KEY: "Churned Account", "Team Field": "churned_at"},
]


@pytest.fixture(autouse=True)
def reset_correlation():
    """Start every test without a correlation ID."""
    clear_correlation_id()
    yield
    clear_correlation_id()


@pytest.fixture
def store():
    """In-memory base with the source table and both mapping tables."""
    base = InMemoryStore()
    base.add_table(SOURCE_TABLE, SOURCE_FIELDS, SOURCE_ROWS)
    base.add_table(TEAM_A, MAPPING_FIELDS, TEAM_A_ROWS)
    base.add_table(TEAM_B, MAPPING_FIELDS, TEAM_B_ROWS)
    return base


@pytest.fixture
def settings():
    """Default settings with fast retries."""
    return SyncSettings(
        base_id="appTest",
        backoff_base_seconds=0.01,
        max_backoff_seconds=0.05
    )


@pytest.fixture
def fast_limiter():
    """
    Rate limiter that never blocks a test.

    Waits advance a fake clock, so throttling penalties cost no real time.
    """
    now = [0.0]

    def sleep(seconds):
        now[0] += seconds

    return RateLimiter(rate=10000.0, burst=50, clock=lambda: now[0], sleep=sleep)


@pytest.fixture
def no_sleep():
    """Sleep replacement recording requested delays."""
    delays = []

    def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep
