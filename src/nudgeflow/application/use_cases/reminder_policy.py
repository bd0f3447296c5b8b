"""Self-reminder and vendor-nudge policy engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from loguru import logger

from nudgeflow.application.filters import SYSTEM_MAILER, bare_address
from nudgeflow.application.ports.composer import NotificationComposer, NotificationContext
from nudgeflow.application.ports.mail_transport import DeliveryResult, MailTransport, OutgoingEmail
from nudgeflow.application.ports.thread_store import ThreadStore
from nudgeflow.application.use_cases.correlate_thread import utcnow
from nudgeflow.domain.entities.account import Account
from nudgeflow.domain.entities.email_record import EmailRecord
from nudgeflow.domain.entities.thread import ReminderEvent, Thread
from nudgeflow.domain.errors import DeliveryError, PersistenceError, TransportError
from nudgeflow.domain.models import Direction, ReminderKind, ThreadStatus
from nudgeflow.domain.subjects import reply_subject
from nudgeflow.infrastructure.notifications.templates import TemplateComposer


@dataclass(frozen=True)
class WorkingHours:
    """Civil-time window in which any reminder or nudge may fire.

    Days use `datetime.weekday()` numbering (Monday=0). The end hour is exclusive.
    """

    start_hour: int = 9
    end_hour: int = 19
    days: frozenset[int] = frozenset({0, 1, 2, 3, 4, 5})

    def is_open(self, now: datetime, tz: str) -> bool:
        local = now.astimezone(ZoneInfo(tz))
        return local.weekday() in self.days and self.start_hour <= local.hour < self.end_hour


@dataclass(frozen=True)
class ReminderPolicy:
    self_reminder_cooldown_minutes: int = 360
    # Vendor nudge cooldown: short when the configured nudge interval itself is short
    short_interval_threshold_minutes: int = 60
    short_cooldown_minutes: int = 30
    long_cooldown_minutes: int = 360
    max_vendor_nudges: int = 3

    def vendor_cooldown_minutes(self, vendor_nudge_minutes: int) -> int:
        if vendor_nudge_minutes < self.short_interval_threshold_minutes:
            return self.short_cooldown_minutes
        return self.long_cooldown_minutes


@dataclass(frozen=True)
class Decision:
    due: bool
    reason: str


def minutes_between(earlier: datetime, later: datetime) -> int:
    return int((later - earlier).total_seconds() // 60)


def format_elapsed(delta: timedelta) -> str:
    total_minutes = max(int(delta.total_seconds() // 60), 0)
    days, rem = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rem, 60)

    def plural(n: int, word: str) -> str:
        return f"{n} {word}{'' if n == 1 else 's'}"

    if days:
        return f"{plural(days, 'day')} {plural(hours, 'hour')}"
    if hours:
        return f"{plural(hours, 'hour')} {minutes} min"
    return plural(minutes, "minute")


def self_reminder_decision(thread: Thread, account: Account, now: datetime, policy: ReminderPolicy) -> Decision:
    if thread.status is not ThreadStatus.WAITING_ON_US:
        return Decision(False, "not waiting on us")
    if thread.last_inbound_at is None:
        return Decision(False, "no inbound email")

    if thread.last_self_reminder_at is None:
        elapsed = minutes_between(thread.last_inbound_at, now)
        if elapsed >= account.self_reminder_minutes:
            return Decision(True, f"{elapsed} min since vendor email")
        return Decision(False, f"{elapsed}/{account.self_reminder_minutes} min since vendor email")

    since_last = minutes_between(thread.last_self_reminder_at, now)
    if since_last >= policy.self_reminder_cooldown_minutes:
        return Decision(True, f"{since_last} min since reminder #{thread.self_reminder_count}")
    return Decision(False, f"cooldown {since_last}/{policy.self_reminder_cooldown_minutes} min")


def vendor_nudge_decision(thread: Thread, account: Account, now: datetime, policy: ReminderPolicy) -> Decision:
    if thread.status is not ThreadStatus.WAITING_ON_VENDOR:
        return Decision(False, "not waiting on vendor")
    if thread.last_outbound_at is None:
        return Decision(False, "we have not written yet")

    elapsed = minutes_between(thread.last_outbound_at, now)
    if elapsed < account.vendor_nudge_minutes:
        return Decision(False, f"{elapsed}/{account.vendor_nudge_minutes} min since our reply")

    if thread.last_vendor_nudge_at is not None:
        cooldown = policy.vendor_cooldown_minutes(account.vendor_nudge_minutes)
        since_last = minutes_between(thread.last_vendor_nudge_at, now)
        if since_last < cooldown:
            return Decision(False, f"cooldown {since_last}/{cooldown} min")

    if thread.vendor_nudge_count >= policy.max_vendor_nudges:
        return Decision(False, f"max nudges reached ({thread.vendor_nudge_count}/{policy.max_vendor_nudges})")

    return Decision(True, f"{elapsed} min since our reply")


@dataclass
class ReminderPassResult:
    account_id: str
    outside_working_hours: bool = False
    threads_checked: int = 0
    self_reminders_sent: int = 0
    vendor_nudges_sent: int = 0
    failures: int = 0
    fired: list[ReminderEvent] = field(default_factory=list)


class ReminderPolicyEngine:
    """Decide and send self-reminders (to the operator) and nudges (to the vendor)."""

    def __init__(
        self,
        store: ThreadStore,
        transport: MailTransport,
        composer: NotificationComposer,
        policy: Optional[ReminderPolicy] = None,
        working_hours: Optional[WorkingHours] = None,
        fallback_composer: Optional[NotificationComposer] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.transport = transport
        self.composer = composer
        self.fallback_composer = fallback_composer or TemplateComposer()
        self.policy = policy or ReminderPolicy()
        self.working_hours = working_hours or WorkingHours()
        self.clock = clock

    def evaluate(self, account: Account) -> ReminderPassResult:
        now = self.clock()
        result = ReminderPassResult(account_id=account.account_id)

        if not self.working_hours.is_open(now, account.timezone):
            logger.info(f"{account.display_name}: outside working hours ({account.timezone}), skipping reminders")
            result.outside_working_hours = True
            return result

        threads = self.store.list_threads_due_for_reminder(account.account_id, now)
        result.threads_checked = len(threads)

        for thread in threads:
            if thread.is_completed or thread.is_snoozed_at(now):
                continue
            try:
                event = self._evaluate_thread(account, thread, now)
            except PersistenceError as e:
                result.failures += 1
                logger.error(f"Could not record reminder for thread #{thread.id}: {e}")
                continue
            if event is None:
                continue
            result.fired.append(event)
            if event.kind is ReminderKind.SELF_REMINDER:
                result.self_reminders_sent += 1
            else:
                result.vendor_nudges_sent += 1

        if result.fired:
            logger.info(
                f"{account.display_name}: sent {result.self_reminders_sent} self-reminder(s), "
                f"{result.vendor_nudges_sent} vendor nudge(s)"
            )
        else:
            logger.info(f"{account.display_name}: no reminders needed ({result.threads_checked} threads)")
        return result

    def _evaluate_thread(self, account: Account, thread: Thread, now: datetime) -> Optional[ReminderEvent]:
        if thread.status is ThreadStatus.WAITING_ON_US:
            decision = self_reminder_decision(thread, account, now, self.policy)
            if decision.due:
                logger.info(f"Thread #{thread.id} {thread.subject[:50]!r} needs self-reminder ({decision.reason})")
                return self.send_self_reminder(account, thread, now)
        else:
            decision = vendor_nudge_decision(thread, account, now, self.policy)
            if decision.due:
                logger.info(f"Thread #{thread.id} {thread.subject[:50]!r} needs vendor nudge ({decision.reason})")
                return self.send_vendor_nudge(account, thread, now)

        logger.debug(f"Thread #{thread.id}: {decision.reason}")
        return None

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    def send_self_reminder(self, account: Account, thread: Thread, now: datetime) -> Optional[ReminderEvent]:
        sequence = thread.self_reminder_count + 1
        emails = self.store.list_thread_emails(thread.id)
        context = NotificationContext(
            account=account,
            now=now,
            sequence=sequence,
            elapsed=format_elapsed(now - thread.last_inbound_at),
            last_message_preview=_last_preview(emails, Direction.INBOUND),
        )
        body, used_fallback = self._compose(ReminderKind.SELF_REMINDER, thread, context)
        message = OutgoingEmail(
            to=[account.operator_address],
            subject=f"⚠️ Reminder #{sequence}: Reply Needed - {thread.subject}",
            body=body,
            headers={"X-Mailer": SYSTEM_MAILER},
        )
        delivered = self._deliver(account, message, thread)
        if delivered is None:
            return None

        thread.self_reminder_count = sequence
        thread.last_self_reminder_at = now
        thread.is_hot = True
        return self._record(
            thread, ReminderKind.SELF_REMINDER, sequence, now, account.operator_address, used_fallback, delivered
        )

    def send_vendor_nudge(self, account: Account, thread: Thread, now: datetime) -> Optional[ReminderEvent]:
        emails = self.store.list_thread_emails(thread.id)
        to, cc = reply_all_recipients(thread, emails, account)
        if not to:
            logger.warning(f"Thread #{thread.id} has no vendor address, cannot nudge")
            return None

        sequence = thread.vendor_nudge_count + 1
        context = NotificationContext(
            account=account,
            now=now,
            sequence=sequence,
            elapsed=format_elapsed(now - thread.last_outbound_at),
            last_message_preview=_last_preview(emails, Direction.OUTBOUND),
        )
        body, used_fallback = self._compose(ReminderKind.VENDOR_NUDGE, thread, context)
        latest = max(emails, key=lambda e: e.observed_at) if emails else None
        message = OutgoingEmail(
            to=to,
            cc=cc,
            subject=reply_subject(thread.subject),
            body=body,
            reply_to=account.mailbox_address,
            in_reply_to=latest.message_id if latest else None,
            headers={"X-Priority": "3", "X-Mailer": SYSTEM_MAILER},
        )
        delivered = self._deliver(account, message, thread)
        if delivered is None:
            return None

        thread.vendor_nudge_count = sequence
        thread.last_vendor_nudge_at = now
        thread.is_hot = True
        return self._record(thread, ReminderKind.VENDOR_NUDGE, sequence, now, to[0], used_fallback, delivered)

    def _compose(self, kind: ReminderKind, thread: Thread, context: NotificationContext) -> tuple[str, bool]:
        """Primary composer first; the template never blocks the send path."""
        try:
            if kind is ReminderKind.SELF_REMINDER:
                return self.composer.compose_self_reminder(thread, context), False
            return self.composer.compose_vendor_nudge(thread, context), False
        except Exception as e:
            logger.warning(f"Composer failed for thread #{thread.id} ({kind.value}), using template: {e}")

        if kind is ReminderKind.SELF_REMINDER:
            return self.fallback_composer.compose_self_reminder(thread, context), True
        return self.fallback_composer.compose_vendor_nudge(thread, context), True

    def _deliver(self, account: Account, message: OutgoingEmail, thread: Thread) -> Optional[DeliveryResult]:
        try:
            result = self.transport.deliver(account, message)
        except (DeliveryError, TransportError) as e:
            logger.error(f"Delivery failed for thread #{thread.id} to {', '.join(message.to)}: {e}")
            return None

        if not result.success:
            logger.error(f"Delivery failed for thread #{thread.id} to {', '.join(message.to)}: {result.error}")
            return None

        logger.info(f"✉️ {message.subject[:60]!r} sent to {', '.join(message.to)}")
        return result

    def _record(
        self,
        thread: Thread,
        kind: ReminderKind,
        sequence: int,
        now: datetime,
        recipient: str,
        used_fallback: bool,
        delivered: DeliveryResult,
    ) -> ReminderEvent:
        with self.store.transaction():
            updated = self.store.update_thread(thread)
            event = self.store.record_reminder_event(
                ReminderEvent(
                    thread_id=updated.id,
                    account_id=updated.account_id,
                    kind=kind,
                    sequence=sequence,
                    fired_at=now,
                    recipient=recipient,
                    used_fallback=used_fallback,
                    message_id=delivered.message_id,
                )
            )
        return event


def _last_preview(emails: list[EmailRecord], direction: Direction) -> str:
    matching = [e for e in emails if e.direction is direction]
    if not matching:
        return ""
    latest = max(matching, key=lambda e: e.observed_at)
    return latest.body_preview or latest.body_text[:200]


def reply_all_recipients(thread: Thread, emails: list[EmailRecord], account: Account) -> tuple[list[str], list[str]]:
    """Vendor first, then every other participant; never our own addresses."""
    ours = {bare_address(account.mailbox_address), bare_address(account.operator_address)}
    to: list[str] = []
    cc: list[str] = []

    def add(bucket: list[str], addr: str) -> None:
        addr = bare_address(addr)
        if addr and addr not in ours and addr not in to and addr not in cc:
            bucket.append(addr)

    add(to, thread.vendor_address)
    for email in emails:
        add(to, email.sender_address)
        for addr in email.recipients:
            add(to, addr)
    for email in emails:
        for addr in email.cc:
            add(cc, addr)
    return to, cc
