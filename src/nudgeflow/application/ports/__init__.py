"""Interfaces the engine consumes; implementations live in infrastructure."""

from nudgeflow.application.ports.classifier import ContentClassifier, VendorIdentity
from nudgeflow.application.ports.composer import NotificationComposer, NotificationContext
from nudgeflow.application.ports.mail_transport import (
    DeliveryResult,
    FetchWindow,
    MailTransport,
    OutgoingEmail,
)
from nudgeflow.application.ports.thread_store import (
    DuplicateSubjectGroup,
    StoredEmail,
    ThreadStore,
)
from nudgeflow.application.ports.timer import Timer

__all__ = [
    "ContentClassifier",
    "VendorIdentity",
    "NotificationComposer",
    "NotificationContext",
    "DeliveryResult",
    "FetchWindow",
    "MailTransport",
    "OutgoingEmail",
    "DuplicateSubjectGroup",
    "StoredEmail",
    "ThreadStore",
    "Timer",
]
