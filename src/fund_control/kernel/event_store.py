"""
SQLite Event Store - Append-only event log with idempotency

The event store is the source of truth for the entire system. It provides:
- Append-only semantics (events never modified or deleted)
- Idempotency via command_id (same command = same events)
- Optimistic locking via stream versioning
- A global position for deterministic replay and incremental catch-up
- Write transactions (BEGIN IMMEDIATE) that other ledgers can join, so a
  balance update and the events recording it commit together or not at all

Fun fact: The append-only log pattern is one of the oldest database techniques,
and double-entry bookkeeping is older still - Luca Pacioli wrote it down in 1494!
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from fund_control.kernel.errors import (
    EventStoreError,
    PersistenceUnavailable,
    StreamVersionConflict,
)
from fund_control.kernel.events import Event
from fund_control.kernel.logging import get_logger
from fund_control.kernel.metrics import events_appended_total, stream_version_conflicts_total
from fund_control.kernel.retry import retry_on_sqlite_lock

logger = get_logger(__name__)

_EVENT_COLUMNS = """
    position, event_id, stream_id, stream_type, version,
    command_id, event_type, occurred_at, actor_id, payload_json
"""


class Transaction:
    """
    One write transaction on the event store's database

    Handed out by SQLiteEventStore.transaction(). Ledgers that keep
    balance tables in the same database run their guarded updates on
    ``connection`` so they commit atomically with the appended events.
    """

    def __init__(self, store: "SQLiteEventStore", connection: sqlite3.Connection) -> None:
        self.store = store
        self.connection = connection
        self.appended: list[Event] = []

    def append(self, stream_id: str, expected_version: int, events: list[Event]) -> list[Event]:
        """Append events to a stream inside this transaction"""
        appended = self.store._append_within(self.connection, stream_id, expected_version, events)
        self.appended.extend(appended)
        return appended


class SQLiteEventStore:
    """
    SQLite-based event store with append-only semantics

    This implementation uses SQLite with WAL (Write-Ahead Logging) mode
    for crash safety and good concurrent read performance.

    Schema:
    - events table: append-only event log
    - position: global, monotonically increasing order of appends
    - Unique constraints: event_id, (stream_id, version)
    - Indices: stream_id, event_type, occurred_at, command_id
    """

    def __init__(
        self,
        db_path: str | Path,
        busy_timeout_seconds: float = 5.0,
        write_lock_attempts: int = 3,
    ) -> None:
        """
        Initialize event store with SQLite database

        Args:
            db_path: Path to SQLite database file
            busy_timeout_seconds: How long a connection waits on a locked database
            write_lock_attempts: Attempts to acquire the write lock
        """
        self.db_path = Path(db_path)
        self.busy_timeout_seconds = busy_timeout_seconds
        self._begin_immediate = retry_on_sqlite_lock(max_attempts=write_lock_attempts)(
            self._begin
        )
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables and indices if they don't exist"""
        with self.connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    position INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT NOT NULL UNIQUE,
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
                "CREATE INDEX IF NOT EXISTS idx_events_stream ON events(stream_id, version)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_time ON events(occurred_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_command ON events(command_id)")

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database connections

        Connections run in autocommit mode; write transactions are opened
        explicitly by transaction().
        """
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_seconds,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise PersistenceUnavailable(str(self.db_path), str(e)) from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _begin(self, conn: sqlite3.Connection) -> None:
        conn.execute("BEGIN IMMEDIATE")

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """
        Open a write transaction (BEGIN IMMEDIATE)

        Commits when the block exits normally, rolls back on any exception.

        Raises:
            PersistenceUnavailable: If the write lock cannot be acquired
        """
        with self.connect() as conn:
            try:
                self._begin_immediate(conn)
            except sqlite3.OperationalError as e:
                raise PersistenceUnavailable(str(self.db_path), str(e)) from e

            tx = Transaction(self, conn)
            try:
                yield tx
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise EventStoreError(f"Failed to commit transaction: {e}") from e

        for event in tx.appended:
            events_appended_total.labels(
                stream_type=event.stream_type, event_type=event.event_type
            ).inc()

    def append(
        self,
        stream_id: str,
        expected_version: int,
        events: list[Event],
    ) -> list[Event]:
        """
        Append events to a stream with optimistic locking

        Args:
            stream_id: Aggregate root identifier
            expected_version: Expected current stream version (for optimistic locking)
            events: Events to append (must have sequential versions)

        Returns:
            The appended events (may be from previous execution if idempotent)

        Raises:
            StreamVersionConflict: If stream version doesn't match expected
            EventStoreError: On other database errors
        """
        if not events:
            return []
        with self.transaction() as tx:
            return tx.append(stream_id, expected_version, events)

    def _append_within(
        self,
        conn: sqlite3.Connection,
        stream_id: str,
        expected_version: int,
        events: list[Event],
    ) -> list[Event]:
        if not events:
            return []

        # Same command may touch several streams; idempotency is per stream
        existing = [
            e
            for e in self._events_by_command_id(conn, events[0].command_id)
            if e.stream_id == stream_id
        ]
        if existing:
            logger.debug(
                "Command already applied to stream",
                stream_id=stream_id,
                command_id=events[0].command_id,
            )
            return existing

        current_version = self._get_stream_version(conn, stream_id)
        if current_version != expected_version:
            stream_version_conflicts_total.labels(stream_type=events[0].stream_type).inc()
            raise StreamVersionConflict(stream_id, expected_version, current_version)

        try:
            for event in events:
                conn.execute(
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
        except sqlite3.IntegrityError as e:
            error_msg = str(e).lower()
            if "stream_id" in error_msg and "version" in error_msg:
                stream_version_conflicts_total.labels(stream_type=events[0].stream_type).inc()
                raise StreamVersionConflict(
                    stream_id, expected_version, self._get_stream_version(conn, stream_id)
                ) from e
            raise EventStoreError(f"Failed to append events: {e}") from e

        return events

    def load_stream(self, stream_id: str) -> list[Event]:
        """
        Load all events for a stream in version order

        Args:
            stream_id: Aggregate root identifier

        Returns:
            List of events in version order (empty if stream doesn't exist)
        """
        with self.connect() as conn:
            cursor = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE stream_id = ? ORDER BY version ASC",
                (stream_id,),
            )
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def load_all_events(self) -> list[Event]:
        """Load every event in append order (for projection rebuilding)"""
        return [event for _, event in self.load_events_after(0)]

    def load_events_after(self, position: int) -> list[tuple[int, Event]]:
        """
        Load events appended after a global position

        Args:
            position: Last position already seen (0 for everything)

        Returns:
            (position, event) pairs in append order
        """
        with self.connect() as conn:
            cursor = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE position > ? ORDER BY position ASC",
                (position,),
            )
            return [(row["position"], self._row_to_event(row)) for row in cursor.fetchall()]

    def query_events(
        self,
        *,
        stream_type: str | None = None,
        event_type: str | None = None,
        from_time: datetime | None = None,
        to_time: datetime | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        """
        Query events by various criteria

        Args:
            stream_type: Filter by stream type (e.g., "obligation")
            event_type: Filter by event type (e.g., "ObligationCancelled")
            from_time: Events after this time (inclusive)
            to_time: Events before this time (inclusive)
            limit: Maximum number of events to return

        Returns:
            List of matching events in append order
        """
        conditions = []
        params: list = []

        if stream_type:
            conditions.append("stream_type = ?")
            params.append(stream_type)

        if event_type:
            conditions.append("event_type = ?")
            params.append(event_type)

        if from_time:
            conditions.append("occurred_at >= ?")
            params.append(from_time.isoformat())

        if to_time:
            conditions.append("occurred_at <= ?")
            params.append(to_time.isoformat())

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        query = f"SELECT {_EVENT_COLUMNS} FROM events WHERE {where_clause} ORDER BY position ASC"

        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self.connect() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def get_stream_version(self, stream_id: str) -> int:
        """Current version of a stream (0 if it doesn't exist)"""
        with self.connect() as conn:
            return self._get_stream_version(conn, stream_id)

    def _get_stream_version(self, conn: sqlite3.Connection, stream_id: str) -> int:
        cursor = conn.execute(
            "SELECT MAX(version) FROM events WHERE stream_id = ?",
            (stream_id,),
        )
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def _events_by_command_id(self, conn: sqlite3.Connection, command_id: str) -> list[Event]:
        cursor = conn.execute(
            f"SELECT {_EVENT_COLUMNS} FROM events WHERE command_id = ? ORDER BY position ASC",
            (command_id,),
        )
        return [self._row_to_event(row) for row in cursor.fetchall()]

    def _row_to_event(self, row: sqlite3.Row) -> Event:
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
        )

    def count_events(self) -> int:
        """Get total number of events in store"""
        with self.connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]

    def count_streams(self) -> int:
        """Get total number of distinct streams"""
        with self.connect() as conn:
            return conn.execute("SELECT COUNT(DISTINCT stream_id) FROM events").fetchone()[0]
