import threading
from datetime import timedelta

import pytest
from fakes import make_account, make_email

from nudgeflow.application.scheduler import EmailScheduler, job_id_for
from nudgeflow.domain.models import Direction, ThreadStatus


@pytest.fixture
def scheduler(store, timer, reconciler, reminders, clock):
    return EmailScheduler(store=store, timer=timer, reconciler=reconciler, reminders=reminders, clock=clock)


def test_start_all_registers_one_job_per_active_account(store, timer, scheduler):
    store.upsert_account(make_account("globex", poll_interval_minutes=15))
    store.upsert_account(make_account("initech", is_active=False))

    assert scheduler.start_all() == 2

    assert set(timer.jobs) == {"account:acme", "account:globex"}
    assert timer.jobs["account:globex"][0] == 15
    status = scheduler.get_status()
    assert status["running"] is True
    assert status["job_count"] == 2
    assert {j["account_id"] for j in status["jobs"]} == {"acme", "globex"}


def test_stop_and_restart(timer, scheduler):
    scheduler.start_all()

    assert scheduler.stop_for_account("acme") is True
    assert scheduler.stop_for_account("acme") is False
    assert timer.jobs == {}
    assert scheduler.get_status()["running"] is False

    assert scheduler.restart() == 1
    assert job_id_for("acme") in timer.jobs


def test_start_replaces_existing_job(timer, scheduler):
    scheduler.start_for_account("acme")
    scheduler.start_for_account("acme")

    assert list(timer.jobs) == ["account:acme"]
    assert scheduler.get_status()["job_count"] == 1


def test_start_rejects_unknown_and_inactive_accounts(store, scheduler):
    store.upsert_account(make_account("initech", is_active=False))

    with pytest.raises(KeyError):
        scheduler.start_for_account("nobody")
    with pytest.raises(ValueError):
        scheduler.start_for_account("initech")


def test_tick_failure_keeps_schedule(transport, timer, scheduler):
    """A mailbox outage is logged; the job stays registered and the next tick runs"""
    scheduler.start_for_account("acme")
    transport.fetch_error = "connection refused"

    timer.fire("account:acme")

    job = scheduler.get_status()["jobs"][0]
    assert job["last_error"] == "connection refused"
    assert "account:acme" in timer.jobs

    transport.fetch_error = None
    timer.fire("account:acme")
    job = scheduler.get_status()["jobs"][0]
    assert job["last_error"] is None
    assert job["runs"] == 2


def test_unexpected_error_is_contained(reconciler, scheduler, monkeypatch):
    def boom(account):
        raise RuntimeError("bug")

    monkeypatch.setattr(reconciler, "run", boom)

    result = scheduler.run_now("acme")

    assert result.ran
    assert result.error == "bug"


def test_overlapping_tick_is_skipped(reconciler, scheduler, monkeypatch):
    """A tick that finds its account busy returns immediately instead of running concurrently"""
    entered = threading.Event()
    release = threading.Event()
    original = reconciler.run

    def slow_run(account):
        entered.set()
        release.wait(timeout=5)
        return original(account)

    monkeypatch.setattr(reconciler, "run", slow_run)

    first = threading.Thread(target=scheduler.run_now, args=("acme",))
    first.start()
    assert entered.wait(timeout=5)

    skipped = scheduler.run_now("acme")
    release.set()
    first.join(timeout=5)

    assert skipped.ran is False
    assert skipped.error == "busy"


def test_inactive_account_tick_is_noop(store, scheduler):
    store.upsert_account(make_account(is_active=False))

    result = scheduler.run_now("acme")

    assert result.ran is False
    assert result.error == "inactive"


def test_tick_ingests_before_evaluating_reminders(transport, scheduler, store, clock):
    """Our reply in the same tick prevents a self-reminder for the vendor email it answers"""
    subject = "Razorpay Merchant Onboarding - Acme"
    transport.inbound.append(make_email("<v1@x>", subject, clock() - timedelta(hours=2)))
    transport.outbound.append(
        make_email("<u1@x>", f"Re: {subject}", clock() - timedelta(minutes=5), direction=Direction.OUTBOUND)
    )

    result = scheduler.run_now("acme")

    assert result.reconcile.new_emails == 2
    assert result.reminders.self_reminders_sent == 0
    [thread] = store.list_threads("acme")
    assert thread.status is ThreadStatus.WAITING_ON_VENDOR
