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

from fund_ledger.budget.models import Budget
from fund_ledger.kernel.authz import Actor, Role
from fund_ledger.kernel.event_store import SQLiteEventStore
from fund_ledger.kernel.policy import LedgerPolicy
from fund_ledger.kernel.time import TestTimeProvider
from fund_ledger.ledger import FundLedger
from fund_ledger.notifications.dispatcher import InMemoryDispatcher


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup (WAL mode leaves sidecar files behind)
    for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
        if path.exists():
            path.unlink()


@pytest.fixture
def event_store(temp_db: Path) -> SQLiteEventStore:
    """Provide a fresh event store for each test"""
    return SQLiteEventStore(temp_db)


@pytest.fixture
def test_time() -> TestTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC (a well-known Wednesday in the
    middle of the month - nowhere near a period close)
    """
    return TestTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def policy() -> LedgerPolicy:
    """Provide default ledger policy for tests"""
    return LedgerPolicy()


@pytest.fixture
def admin() -> Actor:
    return Actor(actor_id="alice", role=Role.ADMIN)


@pytest.fixture
def owner() -> Actor:
    return Actor(actor_id="bob")


@pytest.fixture
def dispatcher() -> InMemoryDispatcher:
    """Collects notifications so tests can read every inbox"""
    return InMemoryDispatcher()


@pytest.fixture
def ledger(
    temp_db: Path,
    test_time: TestTimeProvider,
    policy: LedgerPolicy,
    dispatcher: InMemoryDispatcher,
) -> FundLedger:
    """Provide a ledger on a fresh database, with alice as the admin"""
    return FundLedger(
        temp_db,
        policy=policy,
        time_provider=test_time,
        dispatcher=dispatcher,
        admin_ids=["alice"],
    )


@pytest.fixture
def funded_ledger(ledger: FundLedger, admin: Actor) -> FundLedger:
    """
    Ledger whose pool holds 1,000,000

    Fun fact: Kenya's shilling (the default currency) is split into 100
    cents, which is why every amount here carries two decimal places.
    """
    ledger.adjust_pool(admin, "1000000", note="Opening balance")
    return ledger


@pytest.fixture
def approved_budget(funded_ledger: FundLedger, admin: Actor, owner: Actor) -> Budget:
    """Budget asking for 100,000 with 80,000 approved, paid in full"""
    budget = funded_ledger.create_budget(
        owner,
        title="Library books",
        requested_amount="100000",
        items=[{"name": "Textbooks", "unit_price": "1000", "quantity": 100}],
    )
    return funded_ledger.approve_budget(admin, budget.budget_id, allocated_amount="80000")
