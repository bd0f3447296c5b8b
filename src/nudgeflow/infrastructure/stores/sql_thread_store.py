"""Thread store queries shared by the SQLite and PostgreSQL backends.

Subclasses provide the connection (`_connection`), the schema, and how a
timestamp parameter is bound (`_ts`). Queries are written with `?` placeholders.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from loguru import logger

from nudgeflow.application.ports.thread_store import DuplicateSubjectGroup, StoredEmail
from nudgeflow.domain.entities.account import Account
from nudgeflow.domain.entities.email_record import EmailRecord
from nudgeflow.domain.entities.thread import ReminderEvent, Thread
from nudgeflow.domain.errors import StaleThreadError
from nudgeflow.domain.models import ReminderKind
from nudgeflow.infrastructure.stores.rows import (
    account_from_row,
    dump_addresses,
    email_from_row,
    event_from_row,
    group_duplicates,
    stored_email_from_row,
    thread_from_row,
)

THREAD_COLUMNS = (
    "account_id",
    "thread_key",
    "normalized_subject",
    "subject",
    "gateway",
    "status",
    "last_actor",
    "vendor_address",
    "vendor_name",
    "last_activity_at",
    "last_inbound_at",
    "last_outbound_at",
    "last_self_reminder_at",
    "last_vendor_nudge_at",
    "self_reminder_count",
    "vendor_nudge_count",
    "is_hot",
    "is_completed",
    "is_snoozed",
    "snoozed_until",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SqlThreadStore(ABC):
    """ThreadStore over a DB-API connection.

    `transaction()` opens one connection per outermost block and keeps it on the
    current thread; nested blocks and single calls inside it reuse it and commit
    together.
    """

    def __init__(self) -> None:
        self._local = threading.local()

    @abstractmethod
    def _connection(self) -> AbstractContextManager[Any]: ...

    def _ts(self, value: Optional[datetime]) -> Any:
        return value

    def _sql(self, query: str) -> str:
        return query

    def _execute(self, conn: Any, query: str, params: Sequence[Any] = ()) -> Any:
        return conn.execute(self._sql(query), tuple(params))

    def transaction(self) -> AbstractContextManager[Any]:
        return self._connection()

    def ping(self) -> None:
        with self._connection() as conn:
            self._execute(conn, "SELECT 1").fetchone()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def upsert_account(self, account: Account) -> None:
        """Insert or refresh account settings; never touches last_checked_at."""
        with self._connection() as conn:
            self._execute(
                conn,
                """INSERT INTO accounts
                   (account_id, display_name, mailbox_address, operator_address, poll_interval_minutes,
                    self_reminder_minutes, vendor_nudge_minutes, gateways, timezone, delivery, is_active)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(account_id) DO UPDATE SET
                       display_name = excluded.display_name,
                       mailbox_address = excluded.mailbox_address,
                       operator_address = excluded.operator_address,
                       poll_interval_minutes = excluded.poll_interval_minutes,
                       self_reminder_minutes = excluded.self_reminder_minutes,
                       vendor_nudge_minutes = excluded.vendor_nudge_minutes,
                       gateways = excluded.gateways,
                       timezone = excluded.timezone,
                       delivery = excluded.delivery,
                       is_active = excluded.is_active""",
                (
                    account.account_id,
                    account.display_name,
                    account.mailbox_address,
                    account.operator_address,
                    account.poll_interval_minutes,
                    account.self_reminder_minutes,
                    account.vendor_nudge_minutes,
                    ",".join(account.gateways),
                    account.timezone,
                    account.delivery.value,
                    account.is_active,
                ),
            )
        logger.debug(f"Synced account {account.account_id} ({account.mailbox_address})")

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._connection() as conn:
            row = self._execute(conn, "SELECT * FROM accounts WHERE account_id = ?", (account_id,)).fetchone()
        return account_from_row(row) if row else None

    def list_active_accounts(self) -> list[Account]:
        with self._connection() as conn:
            rows = self._execute(
                conn, "SELECT * FROM accounts WHERE is_active = ? ORDER BY account_id", (True,)
            ).fetchall()
        return [account_from_row(r) for r in rows]

    def mark_account_checked(self, account_id: str, checked_at: datetime) -> None:
        with self._connection() as conn:
            self._execute(
                conn,
                "UPDATE accounts SET last_checked_at = ? WHERE account_id = ?",
                (self._ts(checked_at), account_id),
            )

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def _thread_values(self, thread: Thread) -> tuple[Any, ...]:
        return (
            thread.account_id,
            thread.thread_key,
            thread.normalized_subject,
            thread.subject,
            thread.gateway,
            thread.status.value,
            thread.last_actor.value,
            thread.vendor_address,
            thread.vendor_name,
            self._ts(thread.last_activity_at),
            self._ts(thread.last_inbound_at),
            self._ts(thread.last_outbound_at),
            self._ts(thread.last_self_reminder_at),
            self._ts(thread.last_vendor_nudge_at),
            thread.self_reminder_count,
            thread.vendor_nudge_count,
            thread.is_hot,
            thread.is_completed,
            thread.is_snoozed,
            self._ts(thread.snoozed_until),
        )

    def get_thread(self, thread_id: int) -> Optional[Thread]:
        with self._connection() as conn:
            row = self._execute(conn, "SELECT * FROM threads WHERE id = ?", (thread_id,)).fetchone()
        return thread_from_row(row) if row else None

    def find_thread_by_thread_key(self, account_id: str, thread_key: str) -> Optional[Thread]:
        with self._connection() as conn:
            row = self._execute(
                conn,
                "SELECT * FROM threads WHERE account_id = ? AND thread_key = ? ORDER BY created_at, id LIMIT 1",
                (account_id, thread_key),
            ).fetchone()
        return thread_from_row(row) if row else None

    def find_thread_by_normalized_subject(self, account_id: str, normalized_subject: str) -> Optional[Thread]:
        if not normalized_subject:
            return None
        with self._connection() as conn:
            row = self._execute(
                conn,
                """SELECT * FROM threads WHERE account_id = ? AND normalized_subject = ?
                   ORDER BY created_at, id LIMIT 1""",
                (account_id, normalized_subject),
            ).fetchone()
        return thread_from_row(row) if row else None

    def insert_thread(self, thread: Thread) -> Thread:
        created_at = thread.created_at or _now()
        columns = ", ".join((*THREAD_COLUMNS, "created_at", "updated_at", "version"))
        placeholders = ", ".join("?" * (len(THREAD_COLUMNS) + 3))
        with self._connection() as conn:
            row = self._execute(
                conn,
                f"INSERT INTO threads ({columns}) VALUES ({placeholders}) RETURNING id",
                (*self._thread_values(thread), self._ts(created_at), self._ts(_now()), 0),
            ).fetchone()
        thread.id = row["id"]
        thread.created_at = created_at
        thread.version = 0
        return thread

    def update_thread(self, thread: Thread) -> Thread:
        """Compare-and-swap on `version`; raises StaleThreadError when the row moved on."""
        assignments = ", ".join(f"{c} = ?" for c in THREAD_COLUMNS)
        with self._connection() as conn:
            cursor = self._execute(
                conn,
                f"""UPDATE threads SET {assignments}, updated_at = ?, version = version + 1
                    WHERE id = ? AND version = ?""",
                (*self._thread_values(thread), self._ts(_now()), thread.id, thread.version),
            )
            if cursor.rowcount == 0:
                raise StaleThreadError(thread.id, thread.version)
        thread.version += 1
        return thread

    def delete_thread(self, thread_id: int) -> None:
        with self._connection() as conn:
            self._execute(conn, "DELETE FROM reminder_events WHERE thread_id = ?", (thread_id,))
            self._execute(conn, "UPDATE emails SET thread_id = NULL WHERE thread_id = ?", (thread_id,))
            self._execute(conn, "DELETE FROM threads WHERE id = ?", (thread_id,))

    def list_threads(self, account_id: Optional[str] = None) -> list[Thread]:
        with self._connection() as conn:
            if account_id is None:
                rows = self._execute(conn, "SELECT * FROM threads ORDER BY created_at, id").fetchall()
            else:
                rows = self._execute(
                    conn, "SELECT * FROM threads WHERE account_id = ? ORDER BY created_at, id", (account_id,)
                ).fetchall()
        return [thread_from_row(r) for r in rows]

    def list_active_threads(self, account_id: str) -> list[Thread]:
        with self._connection() as conn:
            rows = self._execute(
                conn,
                """SELECT * FROM threads WHERE account_id = ? AND is_completed = ?
                   ORDER BY last_activity_at DESC""",
                (account_id, False),
            ).fetchall()
        return [thread_from_row(r) for r in rows]

    def list_threads_due_for_reminder(self, account_id: str, now: datetime) -> list[Thread]:
        """Non-completed, non-snoozed threads; the policy decides which actually fire."""
        with self._connection() as conn:
            rows = self._execute(
                conn,
                """SELECT * FROM threads
                   WHERE account_id = ? AND is_completed = ?
                     AND (is_snoozed = ? OR (snoozed_until IS NOT NULL AND snoozed_until <= ?))
                   ORDER BY last_activity_at""",
                (account_id, False, False, self._ts(now)),
            ).fetchall()
        return [thread_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Emails
    # ------------------------------------------------------------------

    def has_email(self, account_id: str, message_id: str) -> bool:
        with self._connection() as conn:
            row = self._execute(
                conn, "SELECT 1 FROM emails WHERE account_id = ? AND message_id = ?", (account_id, message_id)
            ).fetchone()
        return row is not None

    def insert_email_if_absent(self, email: EmailRecord, thread_id: Optional[int]) -> bool:
        with self._connection() as conn:
            cursor = self._execute(
                conn,
                """INSERT INTO emails
                   (account_id, message_id, thread_id, thread_key, direction, subject, normalized_subject,
                    sender_address, sender_name, recipients, cc, gateway, body_preview, body_text,
                    observed_at, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(account_id, message_id) DO NOTHING""",
                (
                    email.account_id,
                    email.message_id,
                    thread_id,
                    email.thread_key,
                    email.direction.value,
                    email.subject,
                    email.normalized_subject,
                    email.sender_address,
                    email.sender_name,
                    dump_addresses(email.recipients),
                    dump_addresses(email.cc),
                    email.gateway,
                    email.body_preview,
                    email.body_text,
                    self._ts(email.observed_at),
                    self._ts(_now()),
                ),
            )
            inserted = cursor.rowcount == 1
        if not inserted:
            logger.debug(f"Email {email.message_id} already stored for {email.account_id}")
        return inserted

    def list_thread_emails(self, thread_id: int) -> list[EmailRecord]:
        with self._connection() as conn:
            rows = self._execute(
                conn, "SELECT * FROM emails WHERE thread_id = ? ORDER BY observed_at, id", (thread_id,)
            ).fetchall()
        return [email_from_row(r) for r in rows]

    def reassign_emails(self, from_thread_id: int, to_thread_id: int) -> int:
        with self._connection() as conn:
            cursor = self._execute(
                conn, "UPDATE emails SET thread_id = ? WHERE thread_id = ?", (to_thread_id, from_thread_id)
            )
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Reminder events
    # ------------------------------------------------------------------

    def record_reminder_event(self, event: ReminderEvent) -> ReminderEvent:
        with self._connection() as conn:
            row = self._execute(
                conn,
                """INSERT INTO reminder_events
                   (thread_id, account_id, kind, sequence, fired_at, recipient, used_fallback, message_id)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?) RETURNING id""",
                (
                    event.thread_id,
                    event.account_id,
                    event.kind.value,
                    event.sequence,
                    self._ts(event.fired_at),
                    event.recipient,
                    event.used_fallback,
                    event.message_id,
                ),
            ).fetchone()
        return ReminderEvent(
            id=row["id"],
            thread_id=event.thread_id,
            account_id=event.account_id,
            kind=event.kind,
            sequence=event.sequence,
            fired_at=event.fired_at,
            recipient=event.recipient,
            used_fallback=event.used_fallback,
            message_id=event.message_id,
        )

    def list_reminder_events(self, thread_id: int) -> list[ReminderEvent]:
        with self._connection() as conn:
            rows = self._execute(
                conn, "SELECT * FROM reminder_events WHERE thread_id = ? ORDER BY fired_at, id", (thread_id,)
            ).fetchall()
        return [event_from_row(r) for r in rows]

    def reassign_reminder_events(self, from_thread_id: int, to_thread_id: int) -> int:
        with self._connection() as conn:
            cursor = self._execute(
                conn,
                "UPDATE reminder_events SET thread_id = ? WHERE thread_id = ?",
                (to_thread_id, from_thread_id),
            )
            return cursor.rowcount

    def is_reminder_message(self, account_id: str, message_id: str) -> bool:
        """True when `message_id` belongs to a reminder this account already sent."""
        if not message_id:
            return False
        with self._connection() as conn:
            row = self._execute(
                conn,
                "SELECT 1 FROM reminder_events WHERE account_id = ? AND message_id = ?",
                (account_id, message_id),
            ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Monitoring queries
    # ------------------------------------------------------------------

    def count_emails_since(self, since: datetime) -> int:
        with self._connection() as conn:
            row = self._execute(
                conn, "SELECT COUNT(*) AS n FROM emails WHERE created_at > ?", (self._ts(since),)
            ).fetchone()
        return int(row["n"])

    def count_threads_created_since(self, since: datetime) -> int:
        with self._connection() as conn:
            row = self._execute(
                conn, "SELECT COUNT(*) AS n FROM threads WHERE created_at > ?", (self._ts(since),)
            ).fetchone()
        return int(row["n"])

    def duplicate_subject_groups(
        self,
        created_since: Optional[datetime] = None,
        min_count: int = 2,
    ) -> list[DuplicateSubjectGroup]:
        with self._connection() as conn:
            if created_since is None:
                rows = self._execute(
                    conn, "SELECT id, account_id, subject FROM threads ORDER BY created_at, id"
                ).fetchall()
            else:
                rows = self._execute(
                    conn,
                    "SELECT id, account_id, subject FROM threads WHERE created_at > ? ORDER BY created_at, id",
                    (self._ts(created_since),),
                ).fetchall()
        return group_duplicates(rows, min_count)

    def find_emails_with_subject_like(self, fragments: Sequence[str], limit: int = 50) -> list[StoredEmail]:
        if not fragments:
            return []
        clause = " OR ".join("LOWER(subject) LIKE ?" for _ in fragments)
        with self._connection() as conn:
            rows = self._execute(
                conn,
                f"SELECT * FROM emails WHERE {clause} ORDER BY created_at DESC LIMIT ?",
                (*(f"%{f.lower()}%" for f in fragments), limit),
            ).fetchall()
        return [stored_email_from_row(r) for r in rows]

    def count_reminder_events_since(self, since: datetime) -> dict[ReminderKind, int]:
        with self._connection() as conn:
            rows = self._execute(
                conn,
                "SELECT kind, COUNT(*) AS n FROM reminder_events WHERE fired_at > ? GROUP BY kind",
                (self._ts(since),),
            ).fetchall()
        counts = {kind: 0 for kind in ReminderKind}
        for row in rows:
            counts[ReminderKind(row["kind"])] = int(row["n"])
        return counts

    def thread_status_counts(self) -> dict[str, int]:
        """Open threads per status, plus `hot`, `completed` and `total`."""
        with self._connection() as conn:
            rows = self._execute(
                conn,
                "SELECT status, COUNT(*) AS n FROM threads WHERE is_completed = ? GROUP BY status",
                (False,),
            ).fetchall()
            hot = self._execute(
                conn, "SELECT COUNT(*) AS n FROM threads WHERE is_hot = ? AND is_completed = ?", (True, False)
            ).fetchone()
            completed = self._execute(
                conn, "SELECT COUNT(*) AS n FROM threads WHERE is_completed = ?", (True,)
            ).fetchone()

        counts = {row["status"]: int(row["n"]) for row in rows}
        counts["hot"] = int(hot["n"])
        counts["completed"] = int(completed["n"])
        counts["total"] = sum(int(row["n"]) for row in rows) + counts["completed"]
        return counts
