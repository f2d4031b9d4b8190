"""
Pytest configuration and shared fixtures

Fun fact: The name "conftest" comes from pytest's configuration testing
framework. Files named conftest.py are automatically discovered and their
fixtures are available to all tests in the same directory and subdirectories!
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from fund_control import FundControl
from fund_control.integrations import (
    InMemoryAuditSink,
    InMemoryNotificationDispatcher,
    StaticRoleDirectory,
)
from fund_control.kernel.event_store import SQLiteEventStore
from fund_control.kernel.policy import FundControlPolicy
from fund_control.kernel.time import TestTimeProvider


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup (WAL side files included)
    for suffix in ("", "-wal", "-shm"):
        path = Path(f"{db_path}{suffix}")
        if path.exists():
            path.unlink()


@pytest.fixture
def event_store(temp_db: Path) -> SQLiteEventStore:
    """Provide a fresh event store for each test"""
    return SQLiteEventStore(str(temp_db))


@pytest.fixture
def test_time() -> TestTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC - a Wednesday early in Q2 of
    FY2025, so FY2025 is the current fiscal year and FY2024 ended three
    and a half months ago.
    """
    return TestTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def policy() -> FundControlPolicy:
    """
    Provide default fund control policy for tests

    Fun fact: The default 10% variance band is the same one most federal
    budget offices use before a program manager has to explain themselves!
    """
    return FundControlPolicy()


@pytest.fixture
def role_directory() -> StaticRoleDirectory:
    """
    Role assignments used across the approval tests

    - alice: budget analyst (level 1 in the standard workflow)
    - bob: comptroller (level 2)
    - carol: a second comptroller
    - dave: no roles at all (delegation target)
    - root: administrator (may roll back without approval)
    """
    return StaticRoleDirectory(
        {
            "alice": ["budget_analyst"],
            "bob": ["comptroller"],
            "carol": ["comptroller"],
            "dave": [],
            "root": ["admin"],
        }
    )


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def dispatcher() -> InMemoryNotificationDispatcher:
    return InMemoryNotificationDispatcher()


@pytest.fixture
def fc(
    temp_db: Path,
    policy: FundControlPolicy,
    test_time: TestTimeProvider,
    role_directory: StaticRoleDirectory,
    audit_sink: InMemoryAuditSink,
    dispatcher: InMemoryNotificationDispatcher,
) -> FundControl:
    """
    Provide a FundControl façade wired to in-memory integrations

    Every dependency is a fixture of its own, so a test can inspect the
    audit trail or notifications it caused.
    """
    return FundControl(
        temp_db,
        policy=policy,
        time_provider=test_time,
        role_directory=role_directory,
        audit_sink=audit_sink,
        notification_dispatcher=dispatcher,
    )


@pytest.fixture
def fiscal_year(fc: FundControl) -> dict:
    """FY2025, opened as the current fiscal year"""
    return fc.open_fiscal_year(2025, state="current")


@pytest.fixture
def appropriation(fc: FundControl, fiscal_year: dict) -> dict:
    """One-year O&M money: $100,000.00 expiring 2025-09-30"""
    return fc.establish_appropriation(
        fiscal_year["fiscal_year_id"], "OM-2025", "Operation and Maintenance", "OM", "100000.00"
    )
