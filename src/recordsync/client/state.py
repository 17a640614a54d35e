"""Local state management for the sync client.

This module provides:
- LocalState: SQLite-based local storage
- StoredRecord: A raw record row (entity type, id, sync document)

Tables:
    records       one row per record, holding its latest sync document
    sync_state    key/value pairs (pending queue, last sync dates, ...)
    sync_history  rolling log of sync passes

The record document is stored exactly as produced by to_sync_json(),
so the local row and the remote object share one format.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"


@dataclass
class StoredRecord:
    """Raw record row.

    Attributes:
        entity_type: Wire name of the entity.
        sync_id: Record UUID as a string.
        last_modified: ISO-8601 last modification date.
        is_deleted: Tombstone flag.
        document: Sync document (JSON text).
    """

    entity_type: str
    sync_id: str
    last_modified: str
    is_deleted: bool
    document: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> StoredRecord:
        """Create StoredRecord from database row."""
        return cls(
            entity_type=row["entity_type"],
            sync_id=row["sync_id"],
            last_modified=row["last_modified"],
            is_deleted=bool(row["is_deleted"]),
            document=row["document"],
        )


class LocalState:
    """SQLite-based local state for the sync client.

    A single connection is shared between threads; every statement runs
    under an internal lock.
    """

    def __init__(self, db_path: Path | str = IN_MEMORY) -> None:
        """Initialize local state database.

        Args:
            db_path: Path to SQLite database file (":memory:" for tests).
        """
        if str(db_path) != IN_MEMORY:
            db_path = Path(db_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row

        if str(db_path) != IN_MEMORY:
            # Enable WAL mode for better concurrency
            self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS records (
                sync_id TEXT PRIMARY KEY,
                entity_type TEXT NOT NULL,
                last_modified TEXT NOT NULL,
                is_deleted INTEGER NOT NULL DEFAULT 0,
                document TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_records_type ON records (entity_type);

            -- Key-value sync state
            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );

            CREATE TABLE IF NOT EXISTS sync_history (
                id TEXT PRIMARY KEY,
                timestamp TEXT NOT NULL,
                entry TEXT NOT NULL
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    # === Records ===

    def get_record(self, sync_id: str) -> StoredRecord | None:
        """Get a record row by id.

        Args:
            sync_id: Record UUID as a string.

        Returns:
            StoredRecord if found, None otherwise.
        """
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM records WHERE sync_id = ?",
                (sync_id,),
            ).fetchone()
        return StoredRecord.from_row(row) if row else None

    def list_records(self, entity_type: str | None = None) -> list[StoredRecord]:
        """List record rows, optionally restricted to one entity type."""
        with self._lock:
            if entity_type is None:
                rows = self._conn.execute(
                    "SELECT * FROM records ORDER BY entity_type, sync_id"
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT * FROM records WHERE entity_type = ? ORDER BY sync_id",
                    (entity_type,),
                ).fetchall()
        return [StoredRecord.from_row(row) for row in rows]

    def put_record(self, record: StoredRecord) -> None:
        """Insert or replace a record row."""
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO records (
                    sync_id, entity_type, last_modified, is_deleted, document
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    record.sync_id,
                    record.entity_type,
                    record.last_modified,
                    int(record.is_deleted),
                    record.document,
                ),
            )

    def count_records(self) -> int:
        """Count record rows (tombstones included)."""
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS n FROM records").fetchone()
        return int(row["n"])

    # === Sync state ===

    def get_state(self, key: str) -> str | None:
        """Get a sync state value."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a sync state value."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def delete_state(self, key: str) -> None:
        """Remove a sync state value."""
        with self._lock:
            self._conn.execute("DELETE FROM sync_state WHERE key = ?", (key,))

    # === Sync history ===

    def add_history(self, entry_id: str, timestamp: str, entry: str, keep: int) -> None:
        """Insert a history entry and drop all but the newest `keep` entries."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_history (id, timestamp, entry) VALUES (?, ?, ?)",
                (entry_id, timestamp, entry),
            )
            self._conn.execute(
                """
                DELETE FROM sync_history WHERE id NOT IN (
                    SELECT id FROM sync_history ORDER BY timestamp DESC, rowid DESC LIMIT ?
                )
                """,
                (keep,),
            )

    def list_history(self) -> list[str]:
        """Return history entries, newest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT entry FROM sync_history ORDER BY timestamp DESC, rowid DESC"
            ).fetchall()
        return [row["entry"] for row in rows]

    def clear_history(self) -> None:
        """Delete all history entries."""
        with self._lock:
            self._conn.execute("DELETE FROM sync_history")
