"""
SQLite Event Store - Append-only ledger with idempotency

The event store is the ledger of record. It provides:
- Append-only semantics (events never modified or deleted)
- Idempotency via command_id (same command = same events)
- Optimistic locking via per-stream versioning
- Atomic multi-stream commits (a budget and the fund pool move together)
- Audit rows written in the same transaction as the events they describe

Fun fact: The append-only log pattern is one of the oldest database techniques,
dating back to the 1960s IMS database. Bookkeepers were doing it in ink long before.
"""

import json
import sqlite3
from collections import OrderedDict
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from fund_ledger.kernel.audit import AuditEntry, AuditRecorder
from fund_ledger.kernel.errors import (
    AuditWriteError,
    CommandIdempotencyViolation,
    EventStoreError,
    StreamVersionConflict,
)
from fund_ledger.kernel.events import Event
from fund_ledger.kernel.logging import get_logger
from fund_ledger.kernel.metrics import (
    events_appended_total,
    events_loaded_total,
    stream_version_conflicts_total,
)
from fund_ledger.kernel.retry import is_lock_contention, retry_on_sqlite_lock

logger = get_logger(__name__)

EVENT_COLUMNS = """
    rowid AS position, event_id, stream_id, stream_type, version,
    command_id, event_type, occurred_at, actor_id, payload_json
"""


class SQLiteEventStore:
    """
    SQLite-based event store with append-only semantics

    This implementation uses SQLite with WAL (Write-Ahead Logging) mode
    for crash safety and good concurrent read performance. Writers take
    the database write lock up front (BEGIN IMMEDIATE), so the stream
    version check and the insert are one atomic step.

    Schema:
    - events table: append-only event log (rowid doubles as global position)
    - audit_log table: one row per event, written in the same transaction
    - Unique constraints: (stream_id, version)
    - Indices: stream_id, event_type, occurred_at, command_id
    """

    def __init__(
        self,
        db_path: str | Path,
        audit_recorder: AuditRecorder | None = None,
        busy_timeout_seconds: float = 30.0,
    ) -> None:
        """
        Initialize event store with SQLite database

        Args:
            db_path: Path to SQLite database file
            audit_recorder: Writer for audit rows (default AuditRecorder)
            busy_timeout_seconds: How long a writer waits for the write lock
        """
        self.db_path = Path(db_path)
        self.audit_recorder = audit_recorder or AuditRecorder()
        self.busy_timeout_seconds = busy_timeout_seconds
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables and indices if they don't exist"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")  # Enable WAL mode for safety
            conn.execute("PRAGMA synchronous=NORMAL")  # Balance safety and performance

            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    event_id TEXT PRIMARY KEY,
                    stream_id TEXT NOT NULL,
                    stream_type TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    command_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    actor_id TEXT,
                    payload_json TEXT NOT NULL,

                    UNIQUE(stream_id, version)
                )
            """)

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_stream "
                "ON events(stream_id, version)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_type " "ON events(event_type)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_time " "ON events(occurred_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_command " "ON events(command_id)"
            )

            self.audit_recorder.ensure_schema(conn)
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database connections

        Ensures connections are properly closed and transactions
        are committed or rolled back appropriately.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout_seconds)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
        finally:
            conn.close()

    def append(
        self,
        stream_id: str,
        expected_version: int,
        events: list[Event],
        audit_entries: list[AuditEntry] | None = None,
    ) -> list[Event]:
        """
        Append events to a single stream with optimistic locking

        Args:
            stream_id: Aggregate root identifier
            expected_version: Expected current stream version
            events: Events to append (must have sequential versions)
            audit_entries: Audit rows to write in the same transaction

        Returns:
            The appended events (may be from previous execution if idempotent)

        Raises:
            StreamVersionConflict: If stream version doesn't match expected
            EventStoreError: If events belong to another stream or on database errors
        """
        if any(event.stream_id != stream_id for event in events):
            raise EventStoreError(f"All events must belong to stream {stream_id}")
        if events and events[0].version != expected_version + 1:
            raise EventStoreError(
                f"First event version {events[0].version} does not follow "
                f"expected version {expected_version}"
            )
        return self.append_many(events, audit_entries)

    @retry_on_sqlite_lock()
    def append_many(
        self,
        events: list[Event],
        audit_entries: list[AuditEntry] | None = None,
    ) -> list[Event]:
        """
        Append events across one or more streams in a single transaction

        This is the core write operation. It ensures:
        1. Idempotency: a command_id that already committed returns its events
        2. Consistency: every touched stream is still at the version the
           events were built against (first event version - 1)
        3. Atomicity: all events and all audit rows land together or none do

        Args:
            events: Events to append, grouped by stream in version order
            audit_entries: Audit rows describing the events

        Returns:
            The committed events, or the previously committed events when the
            command_id was already processed

        Raises:
            StreamVersionConflict: If any stream moved since the events were built
            AuditWriteError: If the audit rows cannot be written (nothing commits)
            EventStoreError: On other database errors
        """
        if not events:
            return []

        command_id = events[0].command_id
        expected_versions: OrderedDict[str, int] = OrderedDict()
        stream_types: dict[str, str] = {}
        for event in events:
            if event.stream_id not in expected_versions:
                expected_versions[event.stream_id] = event.version - 1
                stream_types[event.stream_id] = event.stream_type

        with self._connect() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")

                existing = self._get_events_by_command_id(conn, command_id)
                if existing:
                    conn.rollback()
                    if {e.stream_id for e in existing} != set(expected_versions):
                        # Same command id reused for a different command
                        raise CommandIdempotencyViolation(command_id)
                    logger.info(
                        "Command already committed, returning stored events",
                        command_id=command_id,
                        event_count=len(existing),
                    )
                    return existing

                for stream_id, expected_version in expected_versions.items():
                    current_version = self._get_stream_version(conn, stream_id)
                    if current_version != expected_version:
                        raise StreamVersionConflict(stream_id, expected_version, current_version)

                committed: list[Event] = []
                for event in events:
                    cursor = conn.execute(
                        """
                        INSERT INTO events (
                            event_id, stream_id, stream_type, version,
                            command_id, event_type, occurred_at, actor_id, payload_json
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                        (
                            event.event_id,
                            event.stream_id,
                            event.stream_type,
                            event.version,
                            event.command_id,
                            event.event_type,
                            event.occurred_at.isoformat(),
                            event.actor_id,
                            json.dumps(event.payload),
                        ),
                    )
                    committed.append(event.model_copy(update={"position": cursor.lastrowid}))

                if audit_entries:
                    try:
                        self.audit_recorder.record(conn, audit_entries)
                    except sqlite3.Error as e:
                        raise AuditWriteError(audit_entries[0].action, str(e)) from e

                conn.commit()

            except sqlite3.IntegrityError as e:
                conn.rollback()
                error_msg = str(e).lower()

                # Another writer took the same stream version between our check and insert
                if "stream_id" in error_msg and "version" in error_msg:
                    stream_id = next(iter(expected_versions))
                    stream_version_conflicts_total.labels(
                        stream_type=stream_types[stream_id]
                    ).inc()
                    current = self._get_stream_version(conn, stream_id)
                    raise StreamVersionConflict(
                        stream_id, expected_versions[stream_id], current
                    ) from e

                raise EventStoreError(f"Failed to append events: {e}") from e

            except StreamVersionConflict as e:
                conn.rollback()
                stream_version_conflicts_total.labels(
                    stream_type=stream_types.get(e.stream_id, "unknown")
                ).inc()
                raise

            except (AuditWriteError, CommandIdempotencyViolation):
                conn.rollback()
                raise

            except sqlite3.OperationalError as e:
                conn.rollback()
                if is_lock_contention(e):
                    raise
                raise EventStoreError(f"Database error appending events: {e}") from e

            except sqlite3.Error as e:
                conn.rollback()
                raise EventStoreError(f"Unexpected error appending events: {e}") from e

        for event in committed:
            events_appended_total.labels(
                stream_type=event.stream_type, event_type=event.event_type
            ).inc()
        return committed

    def load_stream(self, stream_id: str) -> list[Event]:
        """
        Load all events for a stream in version order

        This is used to reconstruct aggregate state by replaying events.

        Args:
            stream_id: Aggregate root identifier

        Returns:
            List of events in version order (empty if stream doesn't exist)
        """
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                SELECT {EVENT_COLUMNS}
                FROM events
                WHERE stream_id = ?
                ORDER BY version ASC
            """,
                (stream_id,),
            )
            events = [self._row_to_event(row) for row in cursor.fetchall()]

        if events:
            events_loaded_total.labels(stream_type=events[0].stream_type).inc(len(events))
        return events

    def load_all_events(
        self,
        after_position: int = 0,
        limit: int | None = None,
    ) -> list[Event]:
        """
        Load events in commit order (for projection catch-up and rebuilds)

        Args:
            after_position: Only events committed after this position
            limit: Maximum number of events to return, or None for all

        Returns:
            List of events in commit order
        """
        query = f"""
            SELECT {EVENT_COLUMNS}
            FROM events
            WHERE rowid > ?
            ORDER BY rowid ASC
        """
        params: list = [after_position]
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def query_events(
        self,
        *,
        stream_type: str | None = None,
        event_type: str | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        """
        Query events by stream and event type (e.g., every remittance stream)

        Args:
            stream_type: Filter by stream type ("budget", "fund_pool", "remittance", ...)
            event_type: Filter by event type (e.g., "BudgetApproved")
            limit: Maximum number of events to return

        Returns:
            List of matching events in commit order
        """
        conditions = []
        params: list = []

        if stream_type:
            conditions.append("stream_type = ?")
            params.append(stream_type)

        if event_type:
            conditions.append("event_type = ?")
            params.append(event_type)

        where_clause = " AND ".join(conditions) if conditions else "1=1"

        query = f"""
            SELECT {EVENT_COLUMNS}
            FROM events
            WHERE {where_clause}
            ORDER BY rowid ASC
        """

        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def find_by_payload(self, event_type: str, key: str, value: str) -> list[Event]:
        """
        Find events of a type whose payload field equals value

        Used to resolve a payment channel reference back to its budget.

        Args:
            event_type: Event type to search (e.g., "DisbursementDispatched")
            key: Top-level payload key (e.g., "channel_ref")
            value: Value to match
        """
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                SELECT {EVENT_COLUMNS}
                FROM events
                WHERE event_type = ? AND json_extract(payload_json, ?) = ?
                ORDER BY rowid ASC
            """,
                (event_type, f"$.{key}", value),
            )
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def get_events_by_command_id(self, command_id: str) -> list[Event]:
        """Get the events a command produced (empty if it never committed)"""
        with self._connect() as conn:
            return self._get_events_by_command_id(conn, command_id)

    def list_audit_entries(self, **filters) -> list[AuditEntry]:
        """
        Read audit rows (see AuditRecorder.list_entries for filters)
        """
        with self._connect() as conn:
            return self.audit_recorder.list_entries(conn, **filters)

    def get_stream_version(self, stream_id: str) -> int:
        """
        Get current version of a stream

        Args:
            stream_id: Aggregate root identifier

        Returns:
            Current stream version (0 if stream doesn't exist)
        """
        with self._connect() as conn:
            return self._get_stream_version(conn, stream_id)

    def _get_stream_version(self, conn: sqlite3.Connection, stream_id: str) -> int:
        """Internal helper to get stream version within a connection"""
        cursor = conn.execute(
            "SELECT MAX(version) FROM events WHERE stream_id = ?",
            (stream_id,),
        )
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def _get_events_by_command_id(
        self, conn: sqlite3.Connection, command_id: str
    ) -> list[Event]:
        cursor = conn.execute(
            f"""
            SELECT {EVENT_COLUMNS}
            FROM events
            WHERE command_id = ?
            ORDER BY rowid ASC
        """,
            (command_id,),
        )
        return [self._row_to_event(row) for row in cursor.fetchall()]

    def _row_to_event(self, row: sqlite3.Row) -> Event:
        """Convert SQLite row to Event object"""
        return Event(
            event_id=row["event_id"],
            stream_id=row["stream_id"],
            stream_type=row["stream_type"],
            version=row["version"],
            command_id=row["command_id"],
            event_type=row["event_type"],
            occurred_at=datetime.fromisoformat(row["occurred_at"]),
            actor_id=row["actor_id"],
            payload=json.loads(row["payload_json"]),
            position=row["position"],
        )

    def count_events(self) -> int:
        """Get total number of events in store"""
        with self._connect() as conn:
            cursor = conn.execute("SELECT COUNT(*) FROM events")
            return cursor.fetchone()[0]

    def count_streams(self) -> int:
        """Get total number of distinct streams"""
        with self._connect() as conn:
            cursor = conn.execute("SELECT COUNT(DISTINCT stream_id) FROM events")
            return cursor.fetchone()[0]

    def ping(self) -> bool:
        """Check the database answers a trivial query (readiness probe)"""
        with self._connect() as conn:
            return conn.execute("SELECT 1").fetchone()[0] == 1
