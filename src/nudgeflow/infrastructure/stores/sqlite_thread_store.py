"""SQLite thread store (default backend)."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Generator, Optional

from loguru import logger

from nudgeflow.domain.errors import PersistenceError
from nudgeflow.infrastructure.stores.rows import iso
from nudgeflow.infrastructure.stores.sql_thread_store import SqlThreadStore

SCHEMA = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS accounts (
    account_id TEXT PRIMARY KEY,
    display_name TEXT NOT NULL,
    mailbox_address TEXT NOT NULL,
    operator_address TEXT NOT NULL,
    poll_interval_minutes INTEGER NOT NULL DEFAULT 30,
    self_reminder_minutes INTEGER NOT NULL DEFAULT 30,
    vendor_nudge_minutes INTEGER NOT NULL DEFAULT 180,
    gateways TEXT NOT NULL DEFAULT '',
    timezone TEXT NOT NULL DEFAULT 'Asia/Kolkata',
    delivery TEXT NOT NULL DEFAULT 'smtp',
    is_active INTEGER NOT NULL DEFAULT 1,
    last_checked_at TEXT
);

CREATE TABLE IF NOT EXISTS threads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id TEXT NOT NULL REFERENCES accounts(account_id),
    thread_key TEXT,
    normalized_subject TEXT NOT NULL,
    subject TEXT NOT NULL,
    gateway TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL CHECK(status IN ('waiting_on_us','waiting_on_vendor')),
    last_actor TEXT NOT NULL CHECK(last_actor IN ('us','vendor')),
    vendor_address TEXT NOT NULL DEFAULT '',
    vendor_name TEXT NOT NULL DEFAULT '',
    last_activity_at TEXT NOT NULL,
    last_inbound_at TEXT,
    last_outbound_at TEXT,
    last_self_reminder_at TEXT,
    last_vendor_nudge_at TEXT,
    self_reminder_count INTEGER NOT NULL DEFAULT 0,
    vendor_nudge_count INTEGER NOT NULL DEFAULT 0,
    is_hot INTEGER NOT NULL DEFAULT 0,
    is_completed INTEGER NOT NULL DEFAULT 0,
    is_snoozed INTEGER NOT NULL DEFAULT 0,
    snoozed_until TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_threads_account_subject
    ON threads(account_id, normalized_subject) WHERE normalized_subject <> '';
CREATE INDEX IF NOT EXISTS idx_threads_account_key ON threads(account_id, thread_key);

CREATE TABLE IF NOT EXISTS emails (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id TEXT NOT NULL,
    message_id TEXT NOT NULL,
    thread_id INTEGER REFERENCES threads(id),
    thread_key TEXT,
    direction TEXT NOT NULL CHECK(direction IN ('inbound','outbound')),
    subject TEXT NOT NULL,
    normalized_subject TEXT NOT NULL,
    sender_address TEXT NOT NULL,
    sender_name TEXT NOT NULL DEFAULT '',
    recipients TEXT NOT NULL DEFAULT '[]',
    cc TEXT NOT NULL DEFAULT '[]',
    gateway TEXT,
    body_preview TEXT NOT NULL DEFAULT '',
    body_text TEXT NOT NULL DEFAULT '',
    observed_at TEXT NOT NULL,
    created_at TEXT NOT NULL,

    UNIQUE(account_id, message_id)
);

CREATE INDEX IF NOT EXISTS idx_emails_thread ON emails(thread_id, observed_at);

CREATE TABLE IF NOT EXISTS reminder_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    thread_id INTEGER NOT NULL REFERENCES threads(id),
    account_id TEXT NOT NULL,
    kind TEXT NOT NULL CHECK(kind IN ('self_reminder','vendor_nudge')),
    sequence INTEGER NOT NULL,
    fired_at TEXT NOT NULL,
    recipient TEXT NOT NULL DEFAULT '',
    used_fallback INTEGER NOT NULL DEFAULT 0,
    message_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_reminder_events_thread ON reminder_events(thread_id, fired_at);
CREATE INDEX IF NOT EXISTS idx_reminder_events_message ON reminder_events(account_id, message_id);
"""


class SQLiteThreadStore(SqlThreadStore):
    """SQLite-backed thread store. Timestamps are stored as UTC ISO-8601 text."""

    def __init__(self, db_path: str | Path = "./data/nudgeflow.db"):
        super().__init__()
        self.db_path = Path(db_path)
        self._ensure_db()

    def _ensure_db(self) -> None:
        """Create database and tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connection() as conn:
            conn.executescript(SCHEMA)
        logger.info(f"SQLite thread store initialized at {self.db_path}")

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections; reuses an open transaction."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            yield conn
            return

        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        self._local.conn = conn
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self._local.conn = None
            conn.close()

    def _ts(self, value: Optional[datetime]) -> Optional[str]:
        return iso(value)
