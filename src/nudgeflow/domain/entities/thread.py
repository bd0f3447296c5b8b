from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from nudgeflow.domain.models import LastActor, ReminderKind, ThreadStatus


@dataclass
class Thread:
    """A logical vendor conversation inside one account.

    `thread_key` is the provider thread id and may be rebound when a later email
    matches by normalized subject. `version` guards read-modify-write updates.
    """

    account_id: str
    normalized_subject: str
    subject: str
    gateway: str
    status: ThreadStatus
    last_actor: LastActor
    last_activity_at: datetime
    thread_key: Optional[str] = None
    vendor_address: str = ""
    vendor_name: str = ""
    last_inbound_at: Optional[datetime] = None
    last_outbound_at: Optional[datetime] = None
    last_self_reminder_at: Optional[datetime] = None
    last_vendor_nudge_at: Optional[datetime] = None
    self_reminder_count: int = 0
    vendor_nudge_count: int = 0
    is_hot: bool = False
    is_completed: bool = False
    is_snoozed: bool = False
    snoozed_until: Optional[datetime] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None
    version: int = 0

    def is_snoozed_at(self, now: datetime) -> bool:
        """Snoozed with no end date means snoozed until explicitly cleared."""
        if not self.is_snoozed:
            return False
        return self.snoozed_until is None or self.snoozed_until > now


@dataclass(frozen=True)
class ReminderEvent:
    thread_id: int
    account_id: str
    kind: ReminderKind
    sequence: int
    fired_at: datetime
    recipient: str = ""
    used_fallback: bool = False
    message_id: Optional[str] = None  # as returned by the transport
    id: Optional[int] = field(default=None, compare=False)
