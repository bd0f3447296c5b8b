"""Use cases: correlation, mailbox reconciliation and reminder policy."""

from nudgeflow.application.use_cases.correlate_thread import CorrelationResult, ThreadCorrelator
from nudgeflow.application.use_cases.reconcile_mailbox import ReconcileMailboxUseCase, ReconcileResult
from nudgeflow.application.use_cases.reminder_policy import (
    ReminderPassResult,
    ReminderPolicy,
    ReminderPolicyEngine,
    WorkingHours,
)

__all__ = [
    "CorrelationResult",
    "ThreadCorrelator",
    "ReconcileMailboxUseCase",
    "ReconcileResult",
    "ReminderPassResult",
    "ReminderPolicy",
    "ReminderPolicyEngine",
    "WorkingHours",
]
