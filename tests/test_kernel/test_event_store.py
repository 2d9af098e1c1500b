"""
Tests for the SQLite event store

Covers appends, optimistic versioning, command idempotency, multi-stream
atomicity and the audit rows written alongside events.
"""

import sqlite3
from datetime import datetime, timezone

import pytest

from fund_ledger.kernel.audit import AuditRecorder, audit_entries_for
from fund_ledger.kernel.errors import (
    AuditWriteError,
    CommandIdempotencyViolation,
    EventStoreError,
    StreamVersionConflict,
)
from fund_ledger.kernel.event_store import SQLiteEventStore
from fund_ledger.kernel.events import Event, create_event
from fund_ledger.kernel.ids import generate_id
from fund_ledger.kernel.retry import is_lock_contention

NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def make_event(
    stream_id: str,
    version: int,
    command_id: str,
    event_type: str = "BudgetSubmitted",
    stream_type: str = "budget",
    **payload,
) -> Event:
    return create_event(
        event_id=generate_id(),
        stream_id=stream_id,
        stream_type=stream_type,
        event_type=event_type,
        occurred_at=NOW,
        command_id=command_id,
        version=version,
        actor_id="alice",
        payload={"budget_id": stream_id, **payload},
    )


def test_append_and_load_stream(event_store: SQLiteEventStore) -> None:
    """Appended events come back in version order with positions"""
    first = make_event("b-1", 1, "cmd-1")
    second = make_event("b-1", 2, "cmd-2")

    event_store.append("b-1", 0, [first])
    event_store.append("b-1", 1, [second])

    loaded = event_store.load_stream("b-1")
    assert [e.version for e in loaded] == [1, 2]
    assert loaded[0].position < loaded[1].position
    assert event_store.get_stream_version("b-1") == 2
    assert event_store.get_stream_version("missing") == 0


def test_append_rejects_stale_version(event_store: SQLiteEventStore) -> None:
    """Two writers built against the same version: the second one loses"""
    event_store.append("b-1", 0, [make_event("b-1", 1, "cmd-1")])

    with pytest.raises(StreamVersionConflict) as exc_info:
        event_store.append_many([make_event("b-1", 1, "cmd-2")])

    assert exc_info.value.stream_id == "b-1"
    assert len(event_store.load_stream("b-1")) == 1


def test_append_rejects_event_for_other_stream(event_store: SQLiteEventStore) -> None:
    with pytest.raises(EventStoreError):
        event_store.append("b-1", 0, [make_event("b-2", 1, "cmd-1")])


def test_replayed_command_returns_stored_events(event_store: SQLiteEventStore) -> None:
    """Re-sending a committed command id writes nothing new"""
    original = event_store.append_many([make_event("b-1", 1, "cmd-1")])

    replay = event_store.append_many([make_event("b-1", 1, "cmd-1")])

    assert [e.event_id for e in replay] == [e.event_id for e in original]
    assert event_store.count_events() == 1


def test_command_id_reused_for_other_stream(event_store: SQLiteEventStore) -> None:
    event_store.append_many([make_event("b-1", 1, "cmd-1")])

    with pytest.raises(CommandIdempotencyViolation):
        event_store.append_many([make_event("b-2", 1, "cmd-1")])


def test_multi_stream_append_is_atomic(event_store: SQLiteEventStore) -> None:
    """A conflict on one stream keeps every stream of the command unwritten"""
    event_store.append_many(
        [make_event("fund-pool", 1, "cmd-0", "PoolAdjusted", "fund_pool")]
    )

    with pytest.raises(StreamVersionConflict):
        event_store.append_many(
            [
                make_event("b-1", 1, "cmd-1", "BudgetApproved"),
                make_event("fund-pool", 1, "cmd-1", "PoolDebited", "fund_pool"),
            ]
        )

    assert event_store.load_stream("b-1") == []
    assert event_store.get_stream_version("fund-pool") == 1


def test_audit_rows_written_with_events(event_store: SQLiteEventStore) -> None:
    events = [
        make_event("b-1", 1, "cmd-1", "BudgetApproved"),
        make_event("fund-pool", 1, "cmd-1", "PoolDebited", "fund_pool"),
    ]
    event_store.append_many(events, audit_entries_for(events))

    entries = event_store.list_audit_entries()
    assert [e.action for e in entries] == ["BUDGET_APPROVE", "FUND_POOL_DEDUCT"]
    assert entries[0].entity == "Budget"
    assert entries[0].entity_id == "b-1"
    assert entries[0].user_id == "alice"

    pool_rows = event_store.list_audit_entries(entity="FundPool")
    assert len(pool_rows) == 1
    assert pool_rows[0].stream_id == "fund-pool"


class BrokenAuditRecorder(AuditRecorder):
    """Fails every audit write, as a full disk would"""

    def record(self, conn: sqlite3.Connection, entries) -> None:
        raise sqlite3.OperationalError("disk I/O error")


def test_failed_audit_write_rolls_back_events(temp_db) -> None:
    """No audit row, no mutation"""
    store = SQLiteEventStore(temp_db, audit_recorder=BrokenAuditRecorder())
    events = [make_event("b-1", 1, "cmd-1", "BudgetApproved")]

    with pytest.raises(AuditWriteError):
        store.append_many(events, audit_entries_for(events))

    assert store.count_events() == 0
    assert store.load_stream("b-1") == []


def test_load_all_events_after_position(event_store: SQLiteEventStore) -> None:
    event_store.append_many([make_event("b-1", 1, "cmd-1")])
    event_store.append_many([make_event("b-2", 1, "cmd-2")])
    event_store.append_many([make_event("b-1", 2, "cmd-3")])

    everything = event_store.load_all_events()
    assert len(everything) == 3

    later = event_store.load_all_events(after_position=everything[0].position)
    assert [e.command_id for e in later] == ["cmd-2", "cmd-3"]
    assert event_store.count_streams() == 2


def test_find_by_payload(event_store: SQLiteEventStore) -> None:
    event_store.append_many(
        [
            make_event(
                "b-1", 1, "cmd-1", "DisbursementDispatched", channel_ref="mm-42"
            )
        ]
    )

    found = event_store.find_by_payload("DisbursementDispatched", "channel_ref", "mm-42")
    assert [e.stream_id for e in found] == ["b-1"]
    assert event_store.find_by_payload("DisbursementDispatched", "channel_ref", "nope") == []


def test_ping(event_store: SQLiteEventStore) -> None:
    assert event_store.ping() is True


@pytest.mark.parametrize(
    "error, retried",
    [
        (sqlite3.OperationalError("database is locked"), True),
        (sqlite3.OperationalError("database table is locked"), True),
        (sqlite3.OperationalError("no such table: events"), False),
        (sqlite3.IntegrityError("database is locked"), False),
    ],
)
def test_only_lock_contention_is_retried(error, retried) -> None:
    assert is_lock_contention(error) is retried
