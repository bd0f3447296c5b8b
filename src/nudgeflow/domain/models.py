"""Enumerations shared across the thread-tracking domain."""

from enum import Enum


class Direction(str, Enum):
    """Which side of the mailbox a message was observed on."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class ThreadStatus(str, Enum):
    """Who currently owes a reply on a thread."""

    WAITING_ON_US = "waiting_on_us"
    WAITING_ON_VENDOR = "waiting_on_vendor"


class LastActor(str, Enum):
    """Side that sent the most recent correlated email."""

    US = "us"
    VENDOR = "vendor"


class ReminderKind(str, Enum):
    """Reminder tracks run by the policy engine."""

    SELF_REMINDER = "self_reminder"
    VENDOR_NUDGE = "vendor_nudge"


class DeliveryProvider(str, Enum):
    """Outbound delivery channel configured for an account."""

    SMTP = "smtp"
    SENDGRID = "sendgrid"


class IssueSeverity(str, Enum):
    """Severity of a health-monitor finding."""

    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    INFO = "INFO"


class SystemHealth(str, Enum):
    """Rolled-up health after a monitor pass."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
