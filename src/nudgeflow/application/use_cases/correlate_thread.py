"""Correlate observed emails into logical vendor threads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Literal, Optional

from loguru import logger

from nudgeflow.application.ports.classifier import VendorIdentity
from nudgeflow.application.ports.thread_store import ThreadStore
from nudgeflow.domain.entities.email_record import EmailRecord
from nudgeflow.domain.entities.thread import Thread
from nudgeflow.domain.models import Direction, LastActor, ThreadStatus

MatchKind = Literal["created", "thread_key", "subject"]


@dataclass(frozen=True)
class CorrelationResult:
    thread: Thread
    is_new_thread: bool
    matched_by: MatchKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def apply_email(thread: Thread, email: EmailRecord, vendor: Optional[VendorIdentity] = None) -> Thread:
    """Advance `thread` for one more email in place.

    Each side's reminder track is reset only by the other side's action: our reply
    restarts self-reminder escalation, the vendor's reply restarts vendor nudging.
    """
    if email.direction is Direction.INBOUND:
        thread.status = ThreadStatus.WAITING_ON_US
        thread.last_actor = LastActor.VENDOR
        thread.last_inbound_at = email.observed_at
        thread.vendor_nudge_count = 0
        thread.last_vendor_nudge_at = None
        if vendor is not None:
            if not thread.vendor_address:
                thread.vendor_address = vendor.address
            if not thread.vendor_name:
                thread.vendor_name = vendor.name
    else:
        thread.status = ThreadStatus.WAITING_ON_VENDOR
        thread.last_actor = LastActor.US
        thread.last_outbound_at = email.observed_at
        thread.is_hot = False
        thread.self_reminder_count = 0
        thread.last_self_reminder_at = None

    thread.last_activity_at = email.observed_at
    return thread


def new_thread_for(
    email: EmailRecord,
    vendor: Optional[VendorIdentity],
    created_at: datetime,
) -> Thread:
    thread = Thread(
        account_id=email.account_id,
        normalized_subject=email.normalized_subject,
        subject=email.subject,
        gateway=email.gateway or "",
        status=ThreadStatus.WAITING_ON_US,
        last_actor=LastActor.VENDOR,
        last_activity_at=email.observed_at,
        thread_key=email.thread_key,
        created_at=created_at,
    )
    return apply_email(thread, email, vendor)


class ThreadCorrelator:
    """Find or create the thread an email belongs to.

    Matching order: provider thread id, then normalized subject. A subject match
    under a different provider thread id rebinds the thread to the new id instead
    of opening a duplicate.
    """

    def __init__(self, store: ThreadStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock

    def find_existing(self, account_id: str, email: EmailRecord) -> tuple[Optional[Thread], Optional[MatchKind]]:
        if email.thread_key:
            thread = self.store.find_thread_by_thread_key(account_id, email.thread_key)
            if thread is not None:
                return thread, "thread_key"

        # Empty subjects never match each other
        normalized = email.normalized_subject
        if normalized:
            thread = self.store.find_thread_by_normalized_subject(account_id, normalized)
            if thread is not None:
                return thread, "subject"

        return None, None

    def correlate(
        self,
        account_id: str,
        email: EmailRecord,
        vendor: Optional[VendorIdentity] = None,
        allow_create: bool = True,
    ) -> Optional[CorrelationResult]:
        existing, matched_by = self.find_existing(account_id, email)

        if existing is None:
            if not allow_create:
                return None
            thread = self.store.insert_thread(new_thread_for(email, vendor, self.clock()))
            logger.info(
                f"New thread #{thread.id} for {account_id}: {thread.subject[:50]!r} "
                f"({thread.gateway or 'no gateway'}, {thread.status.value})"
            )
            return CorrelationResult(thread=thread, is_new_thread=True, matched_by="created")

        if matched_by == "subject" and email.thread_key and existing.thread_key != email.thread_key:
            logger.info(
                f"Rebinding thread #{existing.id} from {existing.thread_key!r} to {email.thread_key!r} "
                f"(subject match: {existing.normalized_subject[:50]!r})"
            )
            existing.thread_key = email.thread_key

        if not existing.gateway and email.gateway:
            existing.gateway = email.gateway

        apply_email(existing, email, vendor)
        thread = self.store.update_thread(existing)
        logger.debug(
            f"Thread #{thread.id} advanced by {email.direction.value} email via {matched_by}: "
            f"{thread.status.value}"
        )
        return CorrelationResult(thread=thread, is_new_thread=False, matched_by=matched_by)

    def correct_vendor(self, thread_id: int, address: str, name: str) -> Thread:
        """Explicitly overwrite the vendor identity of a thread."""
        thread = self.store.get_thread(thread_id)
        if thread is None:
            raise KeyError(f"Unknown thread {thread_id}")
        thread.vendor_address = address
        thread.vendor_name = name
        logger.info(f"Vendor for thread #{thread_id} corrected to {name} <{address}>")
        return self.store.update_thread(thread)
