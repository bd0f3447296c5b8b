"""Row <-> entity mapping shared by the SQL stores."""

from __future__ import annotations

import json
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from nudgeflow.application.ports.thread_store import DuplicateSubjectGroup, StoredEmail
from nudgeflow.domain.entities.account import Account
from nudgeflow.domain.entities.email_record import EmailRecord
from nudgeflow.domain.entities.thread import ReminderEvent, Thread
from nudgeflow.domain.models import DeliveryProvider, Direction, LastActor, ReminderKind, ThreadStatus
from nudgeflow.domain.subjects import normalize_subject

Row = Mapping[str, Any]


def to_utc(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp (ISO text or datetime) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso(value: Optional[datetime]) -> Optional[str]:
    # Fixed-width text so timestamps compare correctly as strings
    if value is None:
        return None
    return to_utc(value).isoformat(timespec="microseconds")


def dump_addresses(addresses: Iterable[str]) -> str:
    return json.dumps(list(addresses))


def load_addresses(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        value = json.loads(value)
    return tuple(value)


def account_from_row(row: Row) -> Account:
    gateways = row["gateways"] or ""
    return Account(
        account_id=row["account_id"],
        display_name=row["display_name"],
        mailbox_address=row["mailbox_address"],
        operator_address=row["operator_address"],
        poll_interval_minutes=row["poll_interval_minutes"],
        self_reminder_minutes=row["self_reminder_minutes"],
        vendor_nudge_minutes=row["vendor_nudge_minutes"],
        gateways=tuple(g for g in gateways.split(",") if g),
        timezone=row["timezone"],
        delivery=DeliveryProvider(row["delivery"]),
        is_active=bool(row["is_active"]),
        last_checked_at=to_utc(row["last_checked_at"]),
    )


def thread_from_row(row: Row) -> Thread:
    return Thread(
        id=row["id"],
        account_id=row["account_id"],
        thread_key=row["thread_key"],
        normalized_subject=row["normalized_subject"],
        subject=row["subject"],
        gateway=row["gateway"] or "",
        status=ThreadStatus(row["status"]),
        last_actor=LastActor(row["last_actor"]),
        vendor_address=row["vendor_address"] or "",
        vendor_name=row["vendor_name"] or "",
        last_activity_at=to_utc(row["last_activity_at"]),
        last_inbound_at=to_utc(row["last_inbound_at"]),
        last_outbound_at=to_utc(row["last_outbound_at"]),
        last_self_reminder_at=to_utc(row["last_self_reminder_at"]),
        last_vendor_nudge_at=to_utc(row["last_vendor_nudge_at"]),
        self_reminder_count=row["self_reminder_count"],
        vendor_nudge_count=row["vendor_nudge_count"],
        is_hot=bool(row["is_hot"]),
        is_completed=bool(row["is_completed"]),
        is_snoozed=bool(row["is_snoozed"]),
        snoozed_until=to_utc(row["snoozed_until"]),
        created_at=to_utc(row["created_at"]),
        version=row["version"],
    )


def email_from_row(row: Row) -> EmailRecord:
    return EmailRecord(
        account_id=row["account_id"],
        message_id=row["message_id"],
        thread_key=row["thread_key"],
        subject=row["subject"],
        sender_address=row["sender_address"],
        sender_name=row["sender_name"] or "",
        recipients=load_addresses(row["recipients"]),
        cc=load_addresses(row["cc"]),
        direction=Direction(row["direction"]),
        observed_at=to_utc(row["observed_at"]),
        body_preview=row["body_preview"] or "",
        body_text=row["body_text"] or "",
        gateway=row["gateway"],
    )


def stored_email_from_row(row: Row) -> StoredEmail:
    return StoredEmail(record=email_from_row(row), thread_id=row["thread_id"], created_at=to_utc(row["created_at"]))


def event_from_row(row: Row) -> ReminderEvent:
    return ReminderEvent(
        id=row["id"],
        thread_id=row["thread_id"],
        account_id=row["account_id"],
        kind=ReminderKind(row["kind"]),
        sequence=row["sequence"],
        fired_at=to_utc(row["fired_at"]),
        recipient=row["recipient"] or "",
        used_fallback=bool(row["used_fallback"]),
        message_id=row["message_id"],
    )


def group_duplicates(rows: Iterable[Row], min_count: int) -> list[DuplicateSubjectGroup]:
    """Group thread rows (oldest first) by account and current subject normalization.

    The display subject is re-normalized rather than trusting the stored key, so
    rows written under older normalization rules are still caught.
    """
    groups: dict[tuple[str, str], list[int]] = defaultdict(list)
    for row in rows:
        normalized = normalize_subject(row["subject"])
        if normalized:
            groups[(row["account_id"], normalized)].append(row["id"])

    return [
        DuplicateSubjectGroup(account_id=account_id, normalized_subject=normalized, thread_ids=tuple(ids))
        for (account_id, normalized), ids in groups.items()
        if len(ids) >= min_count
    ]
