"""PostgreSQL thread store (production backend)."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator

import psycopg
from loguru import logger
from psycopg.rows import dict_row

from nudgeflow.domain.errors import PersistenceError
from nudgeflow.infrastructure.stores.sql_thread_store import SqlThreadStore

SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    account_id VARCHAR(100) PRIMARY KEY,
    display_name VARCHAR(255) NOT NULL,
    mailbox_address VARCHAR(320) NOT NULL,
    operator_address VARCHAR(320) NOT NULL,
    poll_interval_minutes INTEGER NOT NULL DEFAULT 30,
    self_reminder_minutes INTEGER NOT NULL DEFAULT 30,
    vendor_nudge_minutes INTEGER NOT NULL DEFAULT 180,
    gateways TEXT NOT NULL DEFAULT '',
    timezone VARCHAR(64) NOT NULL DEFAULT 'Asia/Kolkata',
    delivery VARCHAR(20) NOT NULL DEFAULT 'smtp',
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    last_checked_at TIMESTAMP WITH TIME ZONE
);

CREATE TABLE IF NOT EXISTS threads (
    id BIGSERIAL PRIMARY KEY,
    account_id VARCHAR(100) NOT NULL REFERENCES accounts(account_id),
    thread_key TEXT,
    normalized_subject TEXT NOT NULL,
    subject TEXT NOT NULL,
    gateway VARCHAR(50) NOT NULL DEFAULT '',
    status VARCHAR(20) NOT NULL CHECK (status IN ('waiting_on_us','waiting_on_vendor')),
    last_actor VARCHAR(10) NOT NULL CHECK (last_actor IN ('us','vendor')),
    vendor_address VARCHAR(320) NOT NULL DEFAULT '',
    vendor_name VARCHAR(255) NOT NULL DEFAULT '',
    last_activity_at TIMESTAMP WITH TIME ZONE NOT NULL,
    last_inbound_at TIMESTAMP WITH TIME ZONE,
    last_outbound_at TIMESTAMP WITH TIME ZONE,
    last_self_reminder_at TIMESTAMP WITH TIME ZONE,
    last_vendor_nudge_at TIMESTAMP WITH TIME ZONE,
    self_reminder_count INTEGER NOT NULL DEFAULT 0,
    vendor_nudge_count INTEGER NOT NULL DEFAULT 0,
    is_hot BOOLEAN NOT NULL DEFAULT FALSE,
    is_completed BOOLEAN NOT NULL DEFAULT FALSE,
    is_snoozed BOOLEAN NOT NULL DEFAULT FALSE,
    snoozed_until TIMESTAMP WITH TIME ZONE,
    created_at TIMESTAMP WITH TIME ZONE NOT NULL,
    updated_at TIMESTAMP WITH TIME ZONE NOT NULL,
    version INTEGER NOT NULL DEFAULT 0
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_threads_account_subject
    ON threads(account_id, normalized_subject) WHERE normalized_subject <> '';
CREATE INDEX IF NOT EXISTS idx_threads_account_key ON threads(account_id, thread_key);

CREATE TABLE IF NOT EXISTS emails (
    id BIGSERIAL PRIMARY KEY,
    account_id VARCHAR(100) NOT NULL,
    message_id TEXT NOT NULL,
    thread_id BIGINT REFERENCES threads(id),
    thread_key TEXT,
    direction VARCHAR(10) NOT NULL CHECK (direction IN ('inbound','outbound')),
    subject TEXT NOT NULL,
    normalized_subject TEXT NOT NULL,
    sender_address VARCHAR(320) NOT NULL,
    sender_name VARCHAR(255) NOT NULL DEFAULT '',
    recipients JSONB NOT NULL DEFAULT '[]'::jsonb,
    cc JSONB NOT NULL DEFAULT '[]'::jsonb,
    gateway VARCHAR(50),
    body_preview TEXT NOT NULL DEFAULT '',
    body_text TEXT NOT NULL DEFAULT '',
    observed_at TIMESTAMP WITH TIME ZONE NOT NULL,
    created_at TIMESTAMP WITH TIME ZONE NOT NULL,

    UNIQUE (account_id, message_id)
);

CREATE INDEX IF NOT EXISTS idx_emails_thread ON emails(thread_id, observed_at);

CREATE TABLE IF NOT EXISTS reminder_events (
    id BIGSERIAL PRIMARY KEY,
    thread_id BIGINT NOT NULL REFERENCES threads(id),
    account_id VARCHAR(100) NOT NULL,
    kind VARCHAR(20) NOT NULL CHECK (kind IN ('self_reminder','vendor_nudge')),
    sequence INTEGER NOT NULL,
    fired_at TIMESTAMP WITH TIME ZONE NOT NULL,
    recipient VARCHAR(320) NOT NULL DEFAULT '',
    used_fallback BOOLEAN NOT NULL DEFAULT FALSE,
    message_id VARCHAR(998)
);

ALTER TABLE reminder_events ADD COLUMN IF NOT EXISTS message_id VARCHAR(998);

CREATE INDEX IF NOT EXISTS idx_reminder_events_thread ON reminder_events(thread_id, fired_at);
CREATE INDEX IF NOT EXISTS idx_reminder_events_message ON reminder_events(account_id, message_id);
"""


class PostgresThreadStore(SqlThreadStore):
    """PostgreSQL-backed thread store using psycopg 3."""

    def __init__(self, dsn: str, setup_schema: bool = True):
        super().__init__()
        self.dsn = dsn
        if setup_schema:
            self.setup_schema()

    def setup_schema(self) -> None:
        """Set up database schema for the application."""
        with self._connection() as conn:
            conn.execute(SCHEMA)
        logger.info("PostgreSQL thread store schema setup complete")

    @contextmanager
    def _connection(self) -> Generator[psycopg.Connection, None, None]:
        """One connection per outermost transaction; nested calls reuse it."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            yield conn
            return

        try:
            conn = psycopg.connect(self.dsn, row_factory=dict_row)
        except psycopg.Error as e:
            raise PersistenceError(f"Cannot connect to PostgreSQL: {e}") from e
        self._local.conn = conn
        try:
            yield conn
            conn.commit()
        except psycopg.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self._local.conn = None
            conn.close()

    def _sql(self, query: str) -> str:
        return query.replace("?", "%s")

    def _execute(self, conn: psycopg.Connection, query: str, params: Any = ()) -> Any:
        if not params:
            return conn.execute(self._sql(query))
        return conn.execute(self._sql(query), tuple(params))
