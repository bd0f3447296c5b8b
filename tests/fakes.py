"""In-memory stand-ins for the engine's ports."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from nudgeflow.application.ports.classifier import VendorIdentity
from nudgeflow.application.ports.composer import NotificationContext
from nudgeflow.application.ports.mail_transport import DeliveryResult, FetchWindow, OutgoingEmail
from nudgeflow.domain.entities.account import Account
from nudgeflow.domain.entities.email_record import EmailRecord
from nudgeflow.domain.entities.thread import Thread
from nudgeflow.domain.errors import CompositionError, TransportError
from nudgeflow.domain.models import Direction

# Monday 11:00 in Asia/Kolkata
MONDAY_MORNING = datetime(2026, 10, 19, 5, 30, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime = MONDAY_MORNING) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


def make_account(account_id: str = "acme", **overrides) -> Account:
    values = dict(
        account_id=account_id,
        display_name="Acme Payments",
        mailbox_address=f"onboarding@{account_id}.in",
        operator_address=f"ops@{account_id}.in",
        poll_interval_minutes=30,
        self_reminder_minutes=30,
        vendor_nudge_minutes=180,
        gateways=("razorpay", "payu"),
        timezone="Asia/Kolkata",
    )
    values.update(overrides)
    return Account(**values)


def make_email(
    message_id: str,
    subject: str,
    at: datetime,
    direction: Direction = Direction.INBOUND,
    account_id: str = "acme",
    sender: Optional[str] = None,
    recipients: Sequence[str] = (),
    cc: Sequence[str] = (),
    thread_key: Optional[str] = None,
    body: str = "",
    mailer: str = "",
) -> EmailRecord:
    if sender is None:
        sender = "onboarding@razorpay.com" if direction is Direction.INBOUND else f"onboarding@{account_id}.in"
    if not recipients:
        recipients = (f"onboarding@{account_id}.in",) if direction is Direction.INBOUND else ("onboarding@razorpay.com",)
    return EmailRecord(
        account_id=account_id,
        message_id=message_id,
        thread_key=thread_key,
        subject=subject,
        sender_address=sender,
        sender_name="Razorpay Onboarding" if direction is Direction.INBOUND else "Acme Payments",
        recipients=tuple(recipients),
        cc=tuple(cc),
        direction=direction,
        observed_at=at,
        body_preview=body[:200],
        body_text=body,
        mailer=mailer,
    )


@dataclass
class FakeTransport:
    """Serves queued emails and records every delivery."""

    inbound: list[EmailRecord] = field(default_factory=list)
    outbound: list[EmailRecord] = field(default_factory=list)
    delivered: list[tuple[str, OutgoingEmail]] = field(default_factory=list)
    message_ids: list[str] = field(default_factory=list)
    windows: list[FetchWindow] = field(default_factory=list)
    fail_delivery: bool = False
    fetch_error: Optional[str] = None

    def fetch_inbound(self, account: Account, window: FetchWindow) -> list[EmailRecord]:
        if self.fetch_error:
            raise TransportError(self.fetch_error)
        self.windows.append(window)
        return [e for e in self.inbound if e.account_id == account.account_id and e.observed_at >= window.since]

    def fetch_outbound(self, account: Account, window: FetchWindow) -> list[EmailRecord]:
        if self.fetch_error:
            raise TransportError(self.fetch_error)
        return [e for e in self.outbound if e.account_id == account.account_id and e.observed_at >= window.since]

    def deliver(self, account: Account, message: OutgoingEmail) -> DeliveryResult:
        if self.fail_delivery:
            return DeliveryResult(success=False, error="smtp down")
        self.delivered.append((account.account_id, message))
        self.message_ids.append(f"<sent-{len(self.delivered)}@test>")
        return DeliveryResult(success=True, message_id=self.message_ids[-1])

    def sent_to(self, address: str) -> list[OutgoingEmail]:
        return [m for _, m in self.delivered if address in m.to]


@dataclass
class FakeClassifier:
    """Gateway = first keyword found in the subject, or `always` when set."""

    keywords: tuple[str, ...] = ("razorpay", "payu", "cashfree")
    always: Optional[str] = None
    calls: int = 0

    def classify(self, email: EmailRecord, allowed_gateways: Sequence[str]) -> Optional[str]:
        self.calls += 1
        if self.always:
            return self.always
        subject = email.subject.lower()
        for keyword in self.keywords:
            if keyword in subject and (not allowed_gateways or keyword in allowed_gateways):
                return keyword
        return None

    def extract_vendor_identity(self, email: EmailRecord) -> VendorIdentity:
        return VendorIdentity(address=email.sender_address, name=email.sender_name)


class FailingComposer:
    def compose_self_reminder(self, thread: Thread, context: NotificationContext) -> str:
        raise CompositionError("model unavailable")

    def compose_vendor_nudge(self, thread: Thread, context: NotificationContext) -> str:
        raise CompositionError("model unavailable")


class ManualTimer:
    """Timer that only fires when a test says so."""

    def __init__(self) -> None:
        self.jobs: dict[str, tuple[int, Callable[[], None]]] = {}
        self.daily_jobs: dict[str, tuple[int, int, str, Callable[[], None]]] = {}
        self.started = False

    def every(self, job_id: str, minutes: int, func: Callable[[], None]) -> None:
        self.jobs[job_id] = (minutes, func)

    def daily(self, job_id: str, hour: int, minute: int, tz: str, func: Callable[[], None]) -> None:
        self.daily_jobs[job_id] = (hour, minute, tz, func)

    def cancel(self, job_id: str) -> bool:
        found = self.jobs.pop(job_id, None) or self.daily_jobs.pop(job_id, None)
        return found is not None

    def next_run(self, job_id: str) -> Optional[datetime]:
        if job_id in self.jobs or job_id in self.daily_jobs:
            return MONDAY_MORNING
        return None

    def start(self) -> None:
        self.started = True

    def shutdown(self) -> None:
        self.started = False

    def fire(self, job_id: str) -> None:
        if job_id in self.jobs:
            self.jobs[job_id][1]()
        else:
            self.daily_jobs[job_id][3]()
