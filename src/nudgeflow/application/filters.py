"""Pre-filter that keeps engine-generated and internal mail out of correlation."""

from __future__ import annotations

from typing import Iterable, Optional

from nudgeflow.domain.entities.account import Account
from nudgeflow.domain.entities.email_record import EmailRecord

SYSTEM_SUBJECT_KEYWORDS: tuple[str, ...] = (
    "reminder",
    "action required",
    "reply needed",
    "nudgeflow",
)

SYSTEM_SUBJECT_PREFIXES: tuple[str, ...] = ("⚠️", "🧪", "✅", "🚨", "📊")

# X-Mailer on every message the engine sends
SYSTEM_MAILER = "Nudgeflow"


def bare_address(addr: str) -> str:
    """Extract email from 'Name <email@domain.com>' format."""
    addr = (addr or "").lower().strip()
    if "<" in addr and ">" in addr:
        start = addr.index("<") + 1
        end = addr.index(">")
        return addr[start:end].strip()
    return addr


def is_system_subject(subject: Optional[str]) -> bool:
    """True for subjects the engine itself produces (reminders, alerts, digests)."""
    if not subject:
        return False
    stripped = subject.strip()
    if stripped.startswith(SYSTEM_SUBJECT_PREFIXES):
        return True
    lowered = stripped.lower()
    return any(keyword in lowered for keyword in SYSTEM_SUBJECT_KEYWORDS)


def _contains(addresses: Iterable[str], target: str) -> bool:
    return any(bare_address(a) == target for a in addresses)


def is_system_mailer(mailer: Optional[str]) -> bool:
    return bool(mailer) and mailer.strip().lower().startswith(SYSTEM_MAILER.lower())


def skip_reason(email: EmailRecord, account: Account) -> Optional[str]:
    """Why `email` must not be correlated, or None when it should be processed.

    Operator loopback looks at From and To only; vendors routinely CC the
    operator on real replies.
    """
    if is_system_mailer(email.mailer):
        return "system_mailer"
    if is_system_subject(email.subject):
        return "system_subject"

    operator = bare_address(account.operator_address)
    sender = bare_address(email.sender_address)

    if operator and (sender == operator or _contains(email.recipients, operator)):
        return "operator_loopback"

    mailbox = bare_address(account.mailbox_address)
    if mailbox and sender == mailbox and _contains(email.recipients, mailbox):
        return "self_sent"

    return None
