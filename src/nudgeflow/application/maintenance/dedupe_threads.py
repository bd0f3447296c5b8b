"""Merge threads that share a normalized subject into the oldest one."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from loguru import logger

from nudgeflow.application.ports.thread_store import DuplicateSubjectGroup, ThreadStore
from nudgeflow.application.use_cases.reminder_policy import ReminderPolicy
from nudgeflow.domain.entities.thread import Thread

MAX_MERGED_SELF_REMINDERS = 5


@dataclass(frozen=True)
class MergedGroup:
    account_id: str
    normalized_subject: str
    kept_thread_id: int
    removed_thread_ids: tuple[int, ...]
    emails_moved: int = 0
    events_moved: int = 0


@dataclass
class DedupeReport:
    dry_run: bool
    groups: list[MergedGroup] = field(default_factory=list)

    @property
    def threads_removed(self) -> int:
        return sum(len(g.removed_thread_ids) for g in self.groups)


def _latest(*values: Optional[datetime]) -> Optional[datetime]:
    present = [v for v in values if v is not None]
    return max(present) if present else None


def merge_into(keep: Thread, duplicates: list[Thread], max_vendor_nudges: int) -> Thread:
    """Fold the duplicates' timestamps and counters into `keep`."""
    group = [keep, *duplicates]
    # The most recently active duplicate decides who owes a reply
    latest = max(group, key=lambda t: t.last_activity_at)

    keep.last_activity_at = _latest(*(t.last_activity_at for t in group))
    keep.last_inbound_at = _latest(*(t.last_inbound_at for t in group))
    keep.last_outbound_at = _latest(*(t.last_outbound_at for t in group))
    keep.last_self_reminder_at = _latest(*(t.last_self_reminder_at for t in group))
    keep.last_vendor_nudge_at = _latest(*(t.last_vendor_nudge_at for t in group))
    keep.self_reminder_count = min(sum(t.self_reminder_count for t in group), MAX_MERGED_SELF_REMINDERS)
    keep.vendor_nudge_count = min(sum(t.vendor_nudge_count for t in group), max_vendor_nudges)
    keep.is_hot = any(t.is_hot for t in group)

    keep.status = latest.status
    keep.last_actor = latest.last_actor

    for t in duplicates:
        if not keep.vendor_address and t.vendor_address:
            keep.vendor_address, keep.vendor_name = t.vendor_address, t.vendor_name
        if not keep.gateway and t.gateway:
            keep.gateway = t.gateway
    return keep


def merge_duplicate_threads(
    store: ThreadStore,
    account_id: Optional[str] = None,
    dry_run: bool = False,
    policy: Optional[ReminderPolicy] = None,
) -> DedupeReport:
    """Keep the oldest thread of each duplicate group and delete the rest.

    All groups are merged in a single transaction; on error nothing changes.
    """
    policy = policy or ReminderPolicy()
    report = DedupeReport(dry_run=dry_run)

    groups = [
        g
        for g in store.duplicate_subject_groups()
        if account_id is None or g.account_id == account_id
    ]
    logger.info(f"🧹 Found {len(groups)} group(s) of duplicate threads")
    if not groups:
        return report

    if dry_run:
        for g in groups:
            logger.info(f"Would merge {g.normalized_subject!r}: keep #{g.thread_ids[0]}, remove {list(g.thread_ids[1:])}")
            report.groups.append(_planned(g))
        return report

    with store.transaction():
        for g in groups:
            report.groups.append(_merge_group(store, g, policy))

    logger.info(f"✅ Cleanup complete: removed {report.threads_removed} duplicate thread(s)")
    return report


def _planned(group: DuplicateSubjectGroup) -> MergedGroup:
    return MergedGroup(
        account_id=group.account_id,
        normalized_subject=group.normalized_subject,
        kept_thread_id=group.thread_ids[0],
        removed_thread_ids=group.thread_ids[1:],
    )


def _merge_group(store: ThreadStore, group: DuplicateSubjectGroup, policy: ReminderPolicy) -> MergedGroup:
    keep_id, *remove_ids = group.thread_ids
    keep = store.get_thread(keep_id)
    duplicates = [t for t in (store.get_thread(i) for i in remove_ids) if t is not None]
    if keep is None:
        raise KeyError(f"Thread {keep_id} vanished during merge")

    logger.info(f"🔍 Merging {group.normalized_subject!r}: keep #{keep_id}, remove {remove_ids}")

    emails_moved = events_moved = 0
    for dup in duplicates:
        emails_moved += store.reassign_emails(dup.id, keep_id)
        events_moved += store.reassign_reminder_events(dup.id, keep_id)
        store.delete_thread(dup.id)

    merge_into(keep, duplicates, policy.max_vendor_nudges)
    # Stored key may predate the current normalization rules
    keep.normalized_subject = group.normalized_subject
    store.update_thread(keep)

    return MergedGroup(
        account_id=group.account_id,
        normalized_subject=group.normalized_subject,
        kept_thread_id=keep_id,
        removed_thread_ids=tuple(d.id for d in duplicates),
        emails_moved=emails_moved,
        events_moved=events_moved,
    )
