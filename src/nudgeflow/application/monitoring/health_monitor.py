"""Health monitor: periodic self-checks, admin alerts and a daily digest."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from loguru import logger

from nudgeflow.application.filters import SYSTEM_MAILER, SYSTEM_SUBJECT_KEYWORDS, SYSTEM_SUBJECT_PREFIXES
from nudgeflow.application.ports.mail_transport import MailTransport, OutgoingEmail
from nudgeflow.application.ports.thread_store import ThreadStore
from nudgeflow.application.ports.timer import Timer
from nudgeflow.application.use_cases.correlate_thread import utcnow
from nudgeflow.application.use_cases.reminder_policy import ReminderPolicy
from nudgeflow.domain.entities.thread import Thread
from nudgeflow.domain.errors import DeliveryError, TransportError
from nudgeflow.domain.models import IssueSeverity, ReminderKind, SystemHealth, ThreadStatus

HEALTH_JOB_ID = "monitor:health"
DIGEST_JOB_ID = "monitor:digest"

SEVERITY_EMOJI = {
    IssueSeverity.CRITICAL: "🚨",
    IssueSeverity.WARNING: "⚠️",
    IssueSeverity.INFO: "ℹ️",
}

HEALTH_EMOJI = {
    SystemHealth.HEALTHY: "✅",
    SystemHealth.WARNING: "⚠️",
    SystemHealth.CRITICAL: "🚨",
    SystemHealth.UNKNOWN: "❓",
}


@dataclass(frozen=True)
class MonitorConfig:
    check_interval_minutes: int = 10
    digest_hour: int = 9
    digest_minute: int = 0
    digest_timezone: str = "Asia/Kolkata"
    staleness_minutes: int = 30
    stuck_minutes: int = 120
    alert_cooldown_minutes: int = 60
    email_spike_per_hour: int = 50
    self_reminder_saturation: int = 5
    duplicate_window_hours: int = 24
    # A storm is more than two threads sharing one normalized subject
    duplicate_min_threads: int = 3
    self_reminder_overdue_minutes: int = 60
    vendor_nudge_overdue_minutes: int = 2 * 24 * 60
    admin_address: str = ""


@dataclass(frozen=True)
class HealthIssue:
    severity: IssueSeverity
    check: str
    message: str
    details: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "check": self.check,
            "message": self.message,
            "details": list(self.details),
        }


@dataclass
class HealthReport:
    checked_at: datetime
    issues: list[HealthIssue] = field(default_factory=list)

    @property
    def health(self) -> SystemHealth:
        severities = {issue.severity for issue in self.issues}
        if IssueSeverity.CRITICAL in severities:
            return SystemHealth.CRITICAL
        if IssueSeverity.WARNING in severities:
            return SystemHealth.WARNING
        return SystemHealth.HEALTHY


@dataclass
class MonitorMetrics:
    checks_performed: int = 0
    alerts_sent: int = 0
    last_check_at: Optional[datetime] = None
    system_health: SystemHealth = SystemHealth.UNKNOWN
    issues: list[HealthIssue] = field(default_factory=list)
    started_at: Optional[datetime] = None


class AlertCooldowns:
    """Last alert time per issue signature. Owned by one monitor, cleared on start."""

    def __init__(self, cooldown: timedelta) -> None:
        self.cooldown = cooldown
        self._sent: dict[str, datetime] = {}

    def in_cooldown(self, signature: str, now: datetime) -> bool:
        last = self._sent.get(signature)
        return last is not None and now - last < self.cooldown

    def mark(self, signature: str, now: datetime) -> None:
        self._sent[signature] = now

    def clear(self) -> None:
        self._sent.clear()

    def __len__(self) -> int:
        return len(self._sent)


def warning_signature(issues: list[HealthIssue]) -> str:
    return "|".join(sorted(issue.message for issue in issues))


class HealthMonitor:
    """Independent watchdog over ingestion, correlation and the reminder system.

    Checks never raise into the timer: a failing check becomes a WARNING issue.
    CRITICAL issues alert on every check; WARNING issues are grouped into one
    alert per distinct signature per cooldown window; INFO issues are only
    reported in status and the digest.
    """

    def __init__(
        self,
        store: ThreadStore,
        transport: MailTransport,
        timer: Timer,
        config: Optional[MonitorConfig] = None,
        policy: Optional[ReminderPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.transport = transport
        self.timer = timer
        self.config = config or MonitorConfig()
        self.policy = policy or ReminderPolicy()
        self.clock = clock
        self.cooldowns = AlertCooldowns(timedelta(minutes=self.config.alert_cooldown_minutes))
        self.metrics = MonitorMetrics()
        self.is_running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            logger.info("Health monitor already running")
            return

        self.cooldowns.clear()
        self.metrics = MonitorMetrics(started_at=self.clock())
        self.timer.every(HEALTH_JOB_ID, self.config.check_interval_minutes, self._scheduled_check)
        self.timer.daily(
            DIGEST_JOB_ID,
            self.config.digest_hour,
            self.config.digest_minute,
            self.config.digest_timezone,
            self.send_daily_digest,
        )
        self.is_running = True
        logger.info(
            f"🤖 Health monitor started: checks every {self.config.check_interval_minutes} min, "
            f"digest at {self.config.digest_hour:02d}:{self.config.digest_minute:02d} "
            f"{self.config.digest_timezone}"
        )

    def stop(self) -> None:
        self.timer.cancel(HEALTH_JOB_ID)
        self.timer.cancel(DIGEST_JOB_ID)
        self.is_running = False
        logger.info("Health monitor stopped")

    def _scheduled_check(self) -> None:
        try:
            self.run_check()
        except Exception as e:
            logger.exception(f"Health check run failed: {e}")

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def run_check(self, send_alerts: bool = True) -> HealthReport:
        now = self.clock()
        report = HealthReport(checked_at=now)
        logger.info("🔍 Running health check...")

        store_issue = self._guarded("store", lambda: self.check_store())
        report.issues.extend(store_issue)
        # Everything else reads the store
        if not store_issue:
            for name, check in (
                ("staleness", self.check_staleness),
                ("stuck_threads", self.check_stuck_threads),
                ("duplicate_threads", self.check_duplicate_threads),
                ("leaked_system_emails", self.check_leaked_system_emails),
                ("reminder_inaction", self.check_reminder_inaction),
                ("anomalies", self.check_anomalies),
            ):
                report.issues.extend(self._guarded(name, lambda check=check: check(now)))

        self.metrics.checks_performed += 1
        self.metrics.last_check_at = now
        self.metrics.system_health = report.health
        self.metrics.issues = list(report.issues)

        if report.issues:
            logger.warning(f"Health check found {len(report.issues)} issue(s): {report.health.value}")
            for issue in report.issues:
                logger.warning(f"[{issue.severity.value}] {issue.message}")
        else:
            logger.info("✅ Health check passed: all systems healthy")

        if send_alerts:
            self.process_alerts(report.issues, now)
        return report

    def _guarded(self, name: str, check: Callable[[], list[HealthIssue]]) -> list[HealthIssue]:
        try:
            return check()
        except Exception as e:
            logger.exception(f"Health check '{name}' failed: {e}")
            return [HealthIssue(IssueSeverity.WARNING, name, f"Check '{name}' failed", (str(e),))]

    def check_store(self) -> list[HealthIssue]:
        try:
            self.store.ping()
        except Exception as e:
            return [HealthIssue(IssueSeverity.CRITICAL, "store", "Store connection failed", (str(e),))]
        return []

    def check_staleness(self, now: datetime) -> list[HealthIssue]:
        stale = []
        for account in self.store.list_active_accounts():
            # A poll interval longer than the threshold must not look stale between ticks
            threshold = max(self.config.staleness_minutes, 2 * account.poll_interval_minutes)
            if account.last_checked_at is None:
                stale.append(f"{account.display_name}: never checked")
                continue
            minutes = (now - account.last_checked_at).total_seconds() / 60
            if minutes > threshold:
                stale.append(f"{account.display_name}: {round(minutes)} min ago")

        if not stale:
            return []
        return [
            HealthIssue(
                IssueSeverity.WARNING,
                "staleness",
                f"{len(stale)} account(s) haven't been checked recently",
                tuple(stale),
            )
        ]

    def _active_threads(self) -> list[Thread]:
        """Open threads of every account the scheduler polls."""
        threads: list[Thread] = []
        for account in self.store.list_active_accounts():
            threads.extend(self.store.list_active_threads(account.account_id))
        return threads

    def check_stuck_threads(self, now: datetime) -> list[HealthIssue]:
        cutoff = now - timedelta(minutes=self.config.stuck_minutes)
        stuck = [
            t
            for t in self._active_threads()
            if not t.is_hot and t.last_activity_at < cutoff
        ]
        if not stuck:
            return []
        details = tuple(
            f"{t.subject[:60]} ({t.status.value}, {round((now - t.last_activity_at).total_seconds() / 60)} min)"
            for t in stuck[:20]
        )
        return [HealthIssue(IssueSeverity.WARNING, "stuck_threads", f"{len(stuck)} threads may be stuck", details)]

    def check_duplicate_threads(self, now: datetime) -> list[HealthIssue]:
        groups = self.store.duplicate_subject_groups(
            created_since=now - timedelta(hours=self.config.duplicate_window_hours),
            min_count=self.config.duplicate_min_threads,
        )
        if not groups:
            return []
        details = tuple(
            f"{g.account_id}: {g.normalized_subject!r} has {len(g.thread_ids)} threads" for g in groups
        )
        return [
            HealthIssue(
                IssueSeverity.CRITICAL,
                "duplicate_threads",
                "Duplicate thread storm detected (correlation failure)",
                details,
            )
        ]

    def check_leaked_system_emails(self, now: datetime) -> list[HealthIssue]:
        leaked = self.store.find_emails_with_subject_like(
            (*SYSTEM_SUBJECT_KEYWORDS, *SYSTEM_SUBJECT_PREFIXES)
        )
        if not leaked:
            return []
        details = tuple(f"{s.record.account_id}: {s.record.subject[:60]}" for s in leaked[:20])
        return [
            HealthIssue(
                IssueSeverity.CRITICAL,
                "leaked_system_emails",
                f"{len(leaked)} system email(s) stored as vendor mail (pre-filter failure)",
                details,
            )
        ]

    def check_reminder_inaction(self, now: datetime) -> list[HealthIssue]:
        self_cutoff = now - timedelta(minutes=self.config.self_reminder_overdue_minutes)
        vendor_cutoff = now - timedelta(minutes=self.config.vendor_nudge_overdue_minutes)
        overdue_self = overdue_vendor = 0

        for t in self._active_threads():
            if t.is_snoozed_at(now):
                continue
            if (
                t.status is ThreadStatus.WAITING_ON_US
                and t.self_reminder_count == 0
                and t.last_inbound_at is not None
                and t.last_inbound_at < self_cutoff
            ):
                overdue_self += 1
            elif (
                t.status is ThreadStatus.WAITING_ON_VENDOR
                and t.vendor_nudge_count == 0
                and t.last_outbound_at is not None
                and t.last_outbound_at < vendor_cutoff
            ):
                overdue_vendor += 1

        if not (overdue_self or overdue_vendor):
            return []
        return [
            HealthIssue(
                IssueSeverity.WARNING,
                "reminder_inaction",
                "Some reminders may not be sending",
                (f"Overdue self-reminders: {overdue_self}", f"Overdue vendor nudges: {overdue_vendor}"),
            )
        ]

    def check_anomalies(self, now: datetime) -> list[HealthIssue]:
        issues = []

        recent = self.store.count_emails_since(now - timedelta(hours=1))
        if recent > self.config.email_spike_per_hour:
            issues.append(
                HealthIssue(
                    IssueSeverity.INFO,
                    "email_spike",
                    "Unusual email activity",
                    (f"{recent} emails saved in last hour",),
                )
            )

        saturated = [
            t
            for t in self.store.list_threads()
            if t.self_reminder_count >= self.config.self_reminder_saturation
            or t.vendor_nudge_count >= self.policy.max_vendor_nudges
        ]
        if saturated:
            issues.append(
                HealthIssue(
                    IssueSeverity.INFO,
                    "reminder_saturation",
                    "Threads at max reminder limit",
                    (f"{len(saturated)} thread(s) have reached reminder limits",),
                )
            )
        return issues

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def process_alerts(self, issues: list[HealthIssue], now: datetime) -> int:
        sent = 0
        for issue in (i for i in issues if i.severity is IssueSeverity.CRITICAL):
            if self.send_alert(IssueSeverity.CRITICAL, issue.message, "\n".join(issue.details)):
                sent += 1

        warnings = [i for i in issues if i.severity is IssueSeverity.WARNING]
        if warnings:
            signature = warning_signature(warnings)
            if self.cooldowns.in_cooldown(signature, now):
                logger.debug(f"Warning alert suppressed (cooldown): {signature}")
            else:
                body = "\n".join(f"• {w.message}: {'; '.join(w.details)}" for w in warnings)
                if self.send_alert(IssueSeverity.WARNING, f"{len(warnings)} warning(s) detected", body):
                    sent += 1
                self.cooldowns.mark(signature, now)
        return sent

    def send_alert(self, severity: IssueSeverity, title: str, details: str) -> bool:
        if not self.config.admin_address:
            logger.warning(f"No admin address configured, alert not sent: [{severity.value}] {title}")
            return False

        accounts = self.store.list_active_accounts()
        if not accounts:
            logger.error("No active account found to send alert")
            return False

        message = OutgoingEmail(
            to=[self.config.admin_address],
            subject=f"{SEVERITY_EMOJI[severity]} [{severity.value}] {title} - Nudgeflow",
            headers={"X-Mailer": SYSTEM_MAILER},
            body=(
                f"{severity.value} ALERT\n\n"
                f"{title}\n\n"
                f"{details}\n\n"
                f"Time: {self.clock().isoformat()}\n"
                f"System health: {self.metrics.system_health.value}\n"
            ),
        )
        try:
            result = self.transport.deliver(accounts[0], message)
        except (DeliveryError, TransportError) as e:
            logger.error(f"Failed to send alert: {e}")
            return False
        if not result.success:
            logger.error(f"Failed to send alert: {result.error}")
            return False

        self.metrics.alerts_sent += 1
        logger.info(f"🚨 Alert sent: [{severity.value}] {title}")
        return True

    # ------------------------------------------------------------------
    # Daily digest
    # ------------------------------------------------------------------

    def gather_daily_stats(self) -> dict[str, Any]:
        since = self.clock() - timedelta(hours=24)
        reminders = self.store.count_reminder_events_since(since)
        statuses = self.store.thread_status_counts()
        return {
            "emails_processed": self.store.count_emails_since(since),
            "new_threads": self.store.count_threads_created_since(since),
            "self_reminders_sent": reminders.get(ReminderKind.SELF_REMINDER, 0),
            "vendor_nudges_sent": reminders.get(ReminderKind.VENDOR_NUDGE, 0),
            "health_checks": self.metrics.checks_performed,
            "alerts_sent": self.metrics.alerts_sent,
            "waiting_on_us": statuses.get(ThreadStatus.WAITING_ON_US.value, 0),
            "waiting_on_vendor": statuses.get(ThreadStatus.WAITING_ON_VENDOR.value, 0),
            "hot_threads": statuses.get("hot", 0),
            "completed_threads": statuses.get("completed", 0),
            "issues": [f"[{i.severity.value}] {i.message}" for i in self.metrics.issues],
        }

    def render_digest(self, stats: dict[str, Any]) -> str:
        health = self.metrics.system_health
        lines = [
            f"{HEALTH_EMOJI[health]} System Health: {health.value.upper()}",
            "",
            "Statistics (last 24 hours)",
            f"  Emails processed:    {stats['emails_processed']}",
            f"  New threads created: {stats['new_threads']}",
            f"  Self reminders sent: {stats['self_reminders_sent']}",
            f"  Vendor nudges sent:  {stats['vendor_nudges_sent']}",
            f"  Health checks:       {stats['health_checks']}",
            f"  Alerts sent:         {stats['alerts_sent']}",
            "",
            "Current thread status",
            f"  Waiting on us:     {stats['waiting_on_us']}",
            f"  Waiting on vendor: {stats['waiting_on_vendor']}",
            f"  Hot:               {stats['hot_threads']}",
            f"  Completed:         {stats['completed_threads']}",
            "",
        ]
        if stats["issues"]:
            lines.append("Issues detected")
            lines.extend(f"  • {issue}" for issue in stats["issues"])
        else:
            lines.append("✅ No issues detected")
        return "\n".join(lines)

    def send_daily_digest(self) -> bool:
        """Send the digest to the admin address and reset the rolling alert counter."""
        logger.info("📊 Generating daily report...")
        try:
            stats = self.gather_daily_stats()
        except Exception as e:
            logger.exception(f"Failed to gather daily stats: {e}")
            return False

        accounts = self.store.list_active_accounts() if self.config.admin_address else []
        if not accounts:
            logger.warning("Daily report not sent: no admin address or no active account")
            return False

        message = OutgoingEmail(
            to=[self.config.admin_address],
            subject=f"📊 Daily Report - Nudgeflow - {self.clock().date().isoformat()}",
            body=self.render_digest(stats),
            headers={"X-Mailer": SYSTEM_MAILER},
        )
        try:
            result = self.transport.deliver(accounts[0], message)
        except (DeliveryError, TransportError) as e:
            logger.error(f"Failed to send daily report: {e}")
            return False
        if not result.success:
            logger.error(f"Failed to send daily report: {result.error}")
            return False

        logger.info("📊 Daily report sent successfully")
        self.metrics.alerts_sent = 0
        return True

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "system_health": self.metrics.system_health.value,
            "last_check": self.metrics.last_check_at.isoformat() if self.metrics.last_check_at else None,
            "checks_performed": self.metrics.checks_performed,
            "alerts_sent": self.metrics.alerts_sent,
            "issues_count": len(self.metrics.issues),
            "issues": [issue.to_dict() for issue in self.metrics.issues],
            "next_check": _iso(self.timer.next_run(HEALTH_JOB_ID)) if self.is_running else None,
            "next_digest": _iso(self.timer.next_run(DIGEST_JOB_ID)) if self.is_running else None,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
