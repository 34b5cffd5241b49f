"""SQLite-backed state repository: append-only event log plus latest snapshot."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
import logging
from pathlib import Path
import sqlite3
import threading
import time

from crawl_orchestrator.domain.events import JournalRecord, StateSnapshot
from crawl_orchestrator.domain.failures import StateJournalError
from crawl_orchestrator.domain.model import parse_instant
from crawl_orchestrator.persistence.codec import decode_event, decode_snapshot, encode_event, encode_snapshot


logger = logging.getLogger(__name__)

# Maximum retries for self-healing connection attempts
_MAX_CONNECT_RETRIES = 3
_RETRY_DELAY_SECONDS = 0.5

_SNAPSHOT_KEY = "latest"


class SqliteStateRepository:
    """Persist journal records and snapshots in a single SQLite file.

    One connection is shared by the scheduler thread and workers; a lock
    serializes statements. Every ``append`` commits before returning.
    Any ``sqlite3.Error`` surfaces as ``StateJournalError``.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self._conn = self._connect()
        self._initialize_schema()

    def _connect(self) -> sqlite3.Connection:
        """Connect with self-healing retries; raise ``StateJournalError`` when exhausted."""
        last_error: sqlite3.Error | None = None

        for attempt in range(_MAX_CONNECT_RETRIES):
            try:
                # Self-heal: ensure directory exists before each attempt
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
                conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = FULL")
                conn.execute("PRAGMA busy_timeout = 30000")
                conn.row_factory = sqlite3.Row
                return conn
            except sqlite3.Error as exc:
                last_error = exc
                if attempt < _MAX_CONNECT_RETRIES - 1:
                    delay = _RETRY_DELAY_SECONDS * (2**attempt)
                    logger.warning(
                        "SQLite connect attempt %d/%d failed for %s: %s. Retrying in %.1fs...",
                        attempt + 1,
                        _MAX_CONNECT_RETRIES,
                        self.db_path,
                        exc,
                        delay,
                    )
                    time.sleep(delay)

        logger.critical(
            "Unable to open state journal at %s after %d attempts: %s",
            self.db_path,
            _MAX_CONNECT_RETRIES,
            last_error,
        )
        raise StateJournalError(
            f"Unable to open state journal at {self.db_path} after {_MAX_CONNECT_RETRIES} attempts: {last_error}"
        )

    def _initialize_schema(self) -> None:
        with self._lock:
            self._execute_script(
                """
                CREATE TABLE IF NOT EXISTS state_events (
                    sequence INTEGER PRIMARY KEY,
                    recorded_at TEXT NOT NULL,
                    payload BLOB NOT NULL
                );
                CREATE TABLE IF NOT EXISTS state_snapshots (
                    key TEXT PRIMARY KEY,
                    sequence INTEGER NOT NULL,
                    taken_at TEXT NOT NULL,
                    payload BLOB NOT NULL
                );
                """
            )

    def _execute_script(self, script: str) -> None:
        try:
            self._conn.executescript(script)
        except sqlite3.Error as exc:
            raise StateJournalError(f"State journal schema setup failed at {self.db_path}: {exc}") from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                yield self._conn
                self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                self._rollback()
                raise StateJournalError(f"State journal write failed at {self.db_path}: {exc}") from exc
            except Exception:
                self._rollback()
                raise

    def _rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StateJournalError(f"State journal read failed at {self.db_path}: {exc}") from exc

    def append(self, record: JournalRecord) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO state_events (sequence, recorded_at, payload) VALUES (?, ?, ?)",
                (record.sequence, record.recorded_at.isoformat(), encode_event(record.event)),
            )

    def events_after(self, sequence: int) -> list[JournalRecord]:
        rows = self._query(
            "SELECT sequence, recorded_at, payload FROM state_events WHERE sequence > ? ORDER BY sequence",
            (sequence,),
        )
        return [
            JournalRecord(
                sequence=row["sequence"],
                event=decode_event(row["payload"]),
                recorded_at=parse_instant(row["recorded_at"]),
            )
            for row in rows
        ]

    def last_sequence(self) -> int:
        rows = self._query(
            """
            SELECT MAX(seq) FROM (
                SELECT MAX(sequence) AS seq FROM state_events
                UNION ALL
                SELECT MAX(sequence) AS seq FROM state_snapshots
            )
            """
        )
        value = rows[0][0] if rows else None
        return int(value) if value is not None else 0

    def save_snapshot(self, snapshot: StateSnapshot) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO state_snapshots (key, sequence, taken_at, payload) VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    sequence = excluded.sequence,
                    taken_at = excluded.taken_at,
                    payload = excluded.payload
                """,
                (_SNAPSHOT_KEY, snapshot.sequence, snapshot.taken_at.isoformat(), encode_snapshot(snapshot)),
            )
        logger.info("Saved state snapshot at sequence %d to %s", snapshot.sequence, self.db_path)

    def load_snapshot(self) -> StateSnapshot | None:
        rows = self._query("SELECT payload FROM state_snapshots WHERE key = ?", (_SNAPSHOT_KEY,))
        if not rows:
            return None
        return decode_snapshot(rows[0]["payload"])

    def snapshot_taken_at(self) -> datetime | None:
        rows = self._query("SELECT taken_at FROM state_snapshots WHERE key = ?", (_SNAPSHOT_KEY,))
        return parse_instant(rows[0]["taken_at"]) if rows else None

    def truncate(self, upto: int) -> int:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM state_events WHERE sequence <= ?", (upto,))
            return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()
