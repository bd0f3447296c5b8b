from datetime import timedelta

import pytest
from fakes import make_account, make_email

from nudgeflow.application.monitoring.health_monitor import (
    DIGEST_JOB_ID,
    HEALTH_JOB_ID,
    HealthIssue,
    HealthMonitor,
    MonitorConfig,
)
from nudgeflow.domain.entities.thread import Thread
from nudgeflow.domain.models import IssueSeverity, LastActor, SystemHealth, ThreadStatus


@pytest.fixture
def monitor(store, transport, timer, clock):
    return HealthMonitor(
        store=store,
        transport=transport,
        timer=timer,
        config=MonitorConfig(admin_address="admin@acme.in"),
        clock=clock,
    )


def _thread(subject, at, key=None, **overrides) -> Thread:
    values = dict(
        account_id="acme",
        normalized_subject=key if key is not None else subject.lower(),
        subject=subject,
        gateway="razorpay",
        status=ThreadStatus.WAITING_ON_US,
        last_actor=LastActor.VENDOR,
        last_activity_at=at,
        last_inbound_at=at,
        created_at=at,
        is_hot=True,
        self_reminder_count=1,
    )
    values.update(overrides)
    return Thread(**values)


def _checks(report):
    return {issue.check for issue in report.issues}


def test_healthy_when_recently_checked(store, monitor, clock):
    store.mark_account_checked("acme", clock() - timedelta(minutes=5))

    report = monitor.run_check()

    assert report.issues == []
    assert report.health is SystemHealth.HEALTHY
    assert monitor.get_status()["system_health"] == "healthy"


def test_never_checked_account_is_stale(monitor):
    report = monitor.run_check(send_alerts=False)

    [issue] = report.issues
    assert issue.check == "staleness"
    assert issue.severity is IssueSeverity.WARNING
    assert "never checked" in issue.details[0]


def test_staleness_tolerates_long_poll_interval(store, monitor, clock):
    store.upsert_account(make_account(poll_interval_minutes=60))
    store.mark_account_checked("acme", clock() - timedelta(minutes=90))

    assert "staleness" not in _checks(monitor.run_check(send_alerts=False))


def test_stuck_threads(store, monitor, clock):
    store.mark_account_checked("acme", clock())
    store.insert_thread(_thread("Cashfree onboarding", clock() - timedelta(hours=3), is_hot=False))

    report = monitor.run_check(send_alerts=False)

    [issue] = report.issues
    assert issue.check == "stuck_threads"
    assert issue.message == "1 threads may be stuck"


def test_stuck_check_ignores_completed_threads_and_paused_accounts(store, monitor, clock):
    store.mark_account_checked("acme", clock())
    at = clock() - timedelta(hours=3)
    store.insert_thread(_thread("Cashfree onboarding", at, is_hot=False, is_completed=True))
    store.upsert_account(make_account("globex", is_active=False))
    store.insert_thread(_thread("Payu docs", at, account_id="globex", is_hot=False, self_reminder_count=0))

    assert monitor.run_check(send_alerts=False).issues == []


def test_duplicate_storm_uses_current_normalization(store, monitor, clock):
    """Keys written under older rules still count towards a storm"""
    store.mark_account_checked("acme", clock())
    at = clock() - timedelta(minutes=20)
    store.insert_thread(_thread("KYC pending", at))
    store.insert_thread(_thread("Re: KYC pending", at, key="re: kyc pending"))
    store.insert_thread(_thread("FW: KYC pending", at, key="fw: kyc pending"))

    report = monitor.run_check(send_alerts=False)

    assert report.health is SystemHealth.CRITICAL
    [issue] = [i for i in report.issues if i.check == "duplicate_threads"]
    assert "'kyc pending' has 3 threads" in issue.details[0]


def test_two_threads_are_not_a_storm(store, monitor, clock):
    store.mark_account_checked("acme", clock())
    at = clock() - timedelta(minutes=20)
    store.insert_thread(_thread("KYC pending", at))
    store.insert_thread(_thread("Re: KYC pending", at, key="re: kyc pending"))

    assert "duplicate_threads" not in _checks(monitor.run_check(send_alerts=False))


def test_leaked_system_email_is_critical(store, monitor, clock):
    store.mark_account_checked("acme", clock())
    store.insert_email_if_absent(make_email("<r1@x>", "⚠️ Reminder #1: Reply Needed - KYC", clock()), None)

    report = monitor.run_check(send_alerts=False)

    [issue] = report.issues
    assert issue.check == "leaked_system_emails"
    assert issue.severity is IssueSeverity.CRITICAL


def test_reminder_inaction(store, monitor, clock):
    store.mark_account_checked("acme", clock())
    store.insert_thread(_thread("Payu docs", clock() - timedelta(minutes=90), self_reminder_count=0))

    report = monitor.run_check(send_alerts=False)

    [issue] = report.issues
    assert issue.check == "reminder_inaction"
    assert issue.details[0] == "Overdue self-reminders: 1"


def test_saturation_is_info_only(store, monitor, transport, clock):
    store.mark_account_checked("acme", clock())
    store.insert_thread(_thread("Payu docs", clock() - timedelta(minutes=10), self_reminder_count=5))

    report = monitor.run_check()

    [issue] = report.issues
    assert issue.severity is IssueSeverity.INFO
    assert report.health is SystemHealth.HEALTHY
    assert transport.delivered == []


def test_failing_check_becomes_warning(store, monitor, clock, monkeypatch):
    store.mark_account_checked("acme", clock())

    def broken(now):
        raise RuntimeError("query failed")

    monkeypatch.setattr(monitor, "check_stuck_threads", broken)

    report = monitor.run_check(send_alerts=False)

    [issue] = report.issues
    assert issue.check == "stuck_threads"
    assert issue.details == ("query failed",)


def test_store_failure_short_circuits(monitor, monkeypatch):
    def down():
        raise ConnectionError("db down")

    monkeypatch.setattr(monitor.store, "ping", down)

    report = monitor.run_check(send_alerts=False)

    [issue] = report.issues
    assert issue.check == "store"
    assert issue.severity is IssueSeverity.CRITICAL


def test_warning_alerts_respect_cooldown(monitor, transport, clock):
    warning = [HealthIssue(IssueSeverity.WARNING, "staleness", "1 account(s) haven't been checked recently")]

    assert monitor.process_alerts(warning, clock()) == 1
    assert monitor.process_alerts(warning, clock.advance(minutes=30)) == 0
    assert monitor.process_alerts(warning, clock.advance(minutes=31)) == 1

    [first, _] = transport.sent_to("admin@acme.in")
    assert first.subject == "⚠️ [WARNING] 1 warning(s) detected - Nudgeflow"
    assert first.headers["X-Mailer"] == "Nudgeflow"


def test_different_warnings_are_not_suppressed(monitor, clock):
    a = [HealthIssue(IssueSeverity.WARNING, "staleness", "stale")]
    b = [HealthIssue(IssueSeverity.WARNING, "stuck_threads", "stuck")]

    assert monitor.process_alerts(a, clock()) == 1
    assert monitor.process_alerts(b, clock()) == 1


def test_critical_alerts_are_never_suppressed(monitor, transport, clock):
    critical = [HealthIssue(IssueSeverity.CRITICAL, "store", "Store connection failed")]

    monitor.process_alerts(critical, clock())
    monitor.process_alerts(critical, clock.advance(minutes=1))

    assert len(transport.sent_to("admin@acme.in")) == 2
    assert monitor.metrics.alerts_sent == 2


def test_no_admin_address_sends_nothing(store, transport, timer, clock):
    monitor = HealthMonitor(store=store, transport=transport, timer=timer, clock=clock)

    sent = monitor.process_alerts([HealthIssue(IssueSeverity.CRITICAL, "store", "down")], clock())

    assert sent == 0
    assert transport.delivered == []


def test_digest_reports_and_resets_alert_counter(store, monitor, transport, clock):
    store.mark_account_checked("acme", clock())
    store.insert_thread(_thread("Payu docs", clock() - timedelta(minutes=10)))
    monitor.process_alerts([HealthIssue(IssueSeverity.CRITICAL, "store", "down")], clock())
    monitor.run_check(send_alerts=False)

    assert monitor.send_daily_digest() is True

    digest = transport.delivered[-1][1]
    assert digest.subject == "📊 Daily Report - Nudgeflow - 2026-10-19"
    assert digest.headers["X-Mailer"] == "Nudgeflow"
    assert "New threads created: 1" in digest.body
    assert "Alerts sent:         1" in digest.body
    assert "Waiting on us:     1" in digest.body
    assert monitor.metrics.alerts_sent == 0


def test_start_registers_jobs_and_stop_cancels(monitor, timer):
    monitor.start()

    assert HEALTH_JOB_ID in timer.jobs
    assert timer.daily_jobs[DIGEST_JOB_ID][:3] == (9, 0, "Asia/Kolkata")
    status = monitor.get_status()
    assert status["is_running"] is True
    assert status["next_check"] is not None

    monitor.stop()

    assert timer.jobs == {} and timer.daily_jobs == {}
    assert monitor.get_status()["next_check"] is None


def test_start_clears_cooldowns(monitor, clock):
    warning = [HealthIssue(IssueSeverity.WARNING, "staleness", "stale")]
    monitor.process_alerts(warning, clock())
    monitor.stop()

    monitor.start()

    assert len(monitor.cooldowns) == 0
    assert monitor.process_alerts(warning, clock()) == 1


def test_scheduled_check_runs_through_timer(store, monitor, timer, clock):
    store.mark_account_checked("acme", clock())
    monitor.start()

    timer.fire(HEALTH_JOB_ID)

    assert monitor.metrics.checks_performed == 1
