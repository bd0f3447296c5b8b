from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, Sequence

from nudgeflow.domain.entities.account import Account
from nudgeflow.domain.entities.email_record import EmailRecord
from nudgeflow.domain.entities.thread import ReminderEvent, Thread
from nudgeflow.domain.models import ReminderKind


@dataclass(frozen=True)
class DuplicateSubjectGroup:
    account_id: str
    normalized_subject: str
    thread_ids: tuple[int, ...]  # oldest first


@dataclass(frozen=True)
class StoredEmail:
    """Persisted email plus the thread it was correlated to."""

    record: EmailRecord
    thread_id: Optional[int]
    created_at: datetime


class ThreadStore(Protocol):
    """Durable storage for accounts, threads, emails and reminder events.

    Every method is atomic on its own; wrap several calls in `transaction()` to make
    them commit together.
    """

    def ping(self) -> None: ...
    def transaction(self) -> AbstractContextManager[None]: ...

    # Accounts
    def upsert_account(self, account: Account) -> None: ...
    def get_account(self, account_id: str) -> Optional[Account]: ...
    def list_active_accounts(self) -> list[Account]: ...
    def mark_account_checked(self, account_id: str, checked_at: datetime) -> None: ...

    # Threads
    def get_thread(self, thread_id: int) -> Optional[Thread]: ...
    def find_thread_by_thread_key(self, account_id: str, thread_key: str) -> Optional[Thread]: ...
    def find_thread_by_normalized_subject(self, account_id: str, normalized_subject: str) -> Optional[Thread]: ...
    def insert_thread(self, thread: Thread) -> Thread: ...
    def update_thread(self, thread: Thread) -> Thread: ...
    def delete_thread(self, thread_id: int) -> None: ...
    def list_threads(self, account_id: Optional[str] = None) -> list[Thread]: ...
    def list_active_threads(self, account_id: str) -> list[Thread]: ...
    def list_threads_due_for_reminder(self, account_id: str, now: datetime) -> list[Thread]: ...

    # Emails
    def has_email(self, account_id: str, message_id: str) -> bool: ...
    def insert_email_if_absent(self, email: EmailRecord, thread_id: Optional[int]) -> bool: ...
    def list_thread_emails(self, thread_id: int) -> list[EmailRecord]: ...
    def reassign_emails(self, from_thread_id: int, to_thread_id: int) -> int: ...

    # Reminder events
    def record_reminder_event(self, event: ReminderEvent) -> ReminderEvent: ...
    def list_reminder_events(self, thread_id: int) -> list[ReminderEvent]: ...
    def reassign_reminder_events(self, from_thread_id: int, to_thread_id: int) -> int: ...
    def is_reminder_message(self, account_id: str, message_id: str) -> bool: ...

    # Monitoring queries
    def count_emails_since(self, since: datetime) -> int: ...
    def count_threads_created_since(self, since: datetime) -> int: ...
    def duplicate_subject_groups(self, created_since: Optional[datetime] = None, min_count: int = 2) -> list[DuplicateSubjectGroup]: ...
    def find_emails_with_subject_like(self, fragments: Sequence[str], limit: int = 50) -> list[StoredEmail]: ...
    def count_reminder_events_since(self, since: datetime) -> dict[ReminderKind, int]: ...
    def thread_status_counts(self) -> dict[str, int]: ...
