from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from nudgeflow.domain.entities.account import Account
from nudgeflow.domain.entities.thread import Thread


@dataclass(frozen=True)
class NotificationContext:
    """What a composer may use besides the thread itself."""

    account: Account
    now: datetime
    sequence: int  # 1-based number of the reminder about to be sent
    elapsed: str  # human readable, e.g. "3 hours 5 min"
    last_message_preview: str = ""


class NotificationComposer(Protocol):
    def compose_self_reminder(self, thread: Thread, context: NotificationContext) -> str: ...
    def compose_vendor_nudge(self, thread: Thread, context: NotificationContext) -> str: ...
