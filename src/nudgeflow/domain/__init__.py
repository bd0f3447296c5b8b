"""Domain models and entities."""

from nudgeflow.domain.entities.account import Account
from nudgeflow.domain.entities.email_record import EmailRecord
from nudgeflow.domain.entities.thread import ReminderEvent, Thread
from nudgeflow.domain.models import (
    DeliveryProvider,
    Direction,
    IssueSeverity,
    LastActor,
    ReminderKind,
    SystemHealth,
    ThreadStatus,
)
from nudgeflow.domain.subjects import normalize_subject, reply_subject

__all__ = [
    "Account",
    "EmailRecord",
    "Thread",
    "ReminderEvent",
    "DeliveryProvider",
    "Direction",
    "IssueSeverity",
    "LastActor",
    "ReminderKind",
    "SystemHealth",
    "ThreadStatus",
    "normalize_subject",
    "reply_subject",
]
