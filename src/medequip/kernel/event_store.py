"""
SQLite Event Store - append-only log with multi-stream transactions

The event store is the source of truth for every organization, request,
quote and dispute. It provides:
- Append-only semantics enforced by triggers (rows can't be updated or deleted)
- Optimistic locking per stream via expected versions
- Write transactions that span several streams, taken with BEGIN IMMEDIATE
  so concurrent writers are serialized and version checks can't interleave
- A global position for catching read models up with other writers

Fun fact: Double-entry bookkeeping ledgers from 14th-century Florence were
never erased, only amended with new entries. Hospital maintenance logs
follow the same rule today.
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from medequip.kernel.errors import EventStoreError, StreamVersionConflict
from medequip.kernel.events import Event
from medequip.kernel.logging import get_logger
from medequip.kernel.metrics import events_appended_total
from medequip.kernel.retry import retry_on_sqlite_lock

logger = get_logger(__name__)

_EVENT_COLUMNS = """
    position, event_id, stream_id, stream_type, version,
    command_id, event_type, occurred_at, actor_id, payload_json
"""


@dataclass
class StoreTransaction:
    """An open write transaction and what it has appended so far"""

    conn: sqlite3.Connection
    appended: list[Event] = field(default_factory=list)
    on_commit: list = field(default_factory=list)


class SQLiteEventStore:
    """
    SQLite-based event store

    Schema:
    - events table: append-only, UNIQUE(stream_id, version)
    - Indices: stream_id, event_type, occurred_at, command_id
    - Triggers rejecting UPDATE and DELETE
    """

    def __init__(self, db_path: str | Path, busy_timeout: float = 5.0) -> None:
        """
        Args:
            db_path: Path to SQLite database file
            busy_timeout: Seconds a connection waits on a locked database
        """
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        with self._connect() as conn:
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
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_command ON events(command_id)"
            )
            conn.execute("""
                CREATE TRIGGER IF NOT EXISTS events_no_update
                BEFORE UPDATE ON events
                BEGIN
                    SELECT RAISE(ABORT, 'events are append-only');
                END
            """)
            conn.execute("""
                CREATE TRIGGER IF NOT EXISTS events_no_delete
                BEFORE DELETE ON events
                BEGIN
                    SELECT RAISE(ABORT, 'events are append-only');
                END
            """)
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Short-lived read connection"""
        conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @retry_on_sqlite_lock()
    def _begin_immediate(self, conn: sqlite3.Connection) -> None:
        conn.execute("BEGIN IMMEDIATE")

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """
        Open a serialized write transaction

        Everything written through the yielded StoreTransaction commits
        together or not at all. Callbacks in on_commit run only after
        COMMIT succeeds.
        """
        conn = sqlite3.connect(
            str(self.db_path), timeout=self.busy_timeout, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        try:
            self._begin_immediate(conn)
            tx = StoreTransaction(conn=conn)
            try:
                yield tx
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

        for event in tx.appended:
            events_appended_total.labels(
                stream_type=event.stream_type, event_type=event.event_type
            ).inc()
        for callback in tx.on_commit:
            callback()

    def append_in(
        self,
        tx: StoreTransaction,
        stream_id: str,
        expected_version: int,
        events: list[Event],
    ) -> list[Event]:
        """
        Append events to one stream inside an open transaction

        Args:
            tx: Transaction from transaction()
            stream_id: Entity identifier
            expected_version: Version the caller based its decision on
            events: Events with sequential versions after expected_version

        Raises:
            StreamVersionConflict: If another writer moved the stream first
            EventStoreError: On other database errors
        """
        if not events:
            return []

        current_version = self._get_stream_version(tx.conn, stream_id)
        if current_version != expected_version:
            raise StreamVersionConflict(stream_id, expected_version, current_version)

        try:
            for event in events:
                tx.conn.execute(
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
                current = self._get_stream_version(tx.conn, stream_id)
                raise StreamVersionConflict(stream_id, expected_version, current) from e
            raise EventStoreError(f"Failed to append events: {e}") from e

        tx.appended.extend(events)
        logger.debug(
            "Events appended",
            stream_id=stream_id,
            count=len(events),
            new_version=events[-1].version,
        )
        return events

    def append(
        self,
        stream_id: str,
        expected_version: int,
        events: list[Event],
    ) -> list[Event]:
        """Append to a single stream in its own transaction"""
        with self.transaction() as tx:
            return self.append_in(tx, stream_id, expected_version, events)

    def load_stream(self, stream_id: str) -> list[Event]:
        """Load all events for a stream in version order"""
        with self._connect() as conn:
            cursor = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE stream_id = ? ORDER BY version ASC",
                (stream_id,),
            )
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def load_all_events(
        self,
        after_position: int = 0,
        limit: int | None = None,
    ) -> list[Event]:
        """
        Load events in log order

        Args:
            after_position: Only events stored after this position
            limit: Maximum number of events to return
        """
        query = f"SELECT {_EVENT_COLUMNS} FROM events WHERE position > ? ORDER BY position ASC"
        params: list = [after_position]
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def get_stream_version(self, stream_id: str) -> int:
        """Current version of a stream (0 if it doesn't exist)"""
        with self._connect() as conn:
            return self._get_stream_version(conn, stream_id)

    def _get_stream_version(self, conn: sqlite3.Connection, stream_id: str) -> int:
        row = conn.execute(
            "SELECT MAX(version) FROM events WHERE stream_id = ?",
            (stream_id,),
        ).fetchone()
        return row[0] if row[0] is not None else 0

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
            position=row["position"],
        )

    def count_events(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]

    def count_streams(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(DISTINCT stream_id) FROM events").fetchone()[0]
