from datetime import timedelta

from fakes import MONDAY_MORNING, make_email

from nudgeflow.application.maintenance.dedupe_threads import merge_duplicate_threads, merge_into
from nudgeflow.cli.dedupe_threads import main as dedupe_main
from nudgeflow.domain.entities.thread import ReminderEvent, Thread
from nudgeflow.domain.models import LastActor, ReminderKind, ThreadStatus


def _legacy_thread(key: str, subject: str, at, **overrides) -> Thread:
    """Thread whose stored key predates the current normalization rules."""
    values = dict(
        account_id="acme",
        normalized_subject=key,
        subject=subject,
        gateway="",
        status=ThreadStatus.WAITING_ON_US,
        last_actor=LastActor.VENDOR,
        last_activity_at=at,
        last_inbound_at=at,
        created_at=at,
    )
    values.update(overrides)
    return Thread(**values)


def _seed_duplicates(store):
    t0 = MONDAY_MORNING - timedelta(hours=3)
    keep = store.insert_thread(_legacy_thread("kyc docs", "KYC docs", t0))
    dup1 = store.insert_thread(
        _legacy_thread(
            "re: kyc docs",
            "Re: KYC docs",
            t0 + timedelta(hours=1),
            gateway="razorpay",
            vendor_address="onboarding@razorpay.com",
            self_reminder_count=2,
            is_hot=True,
        )
    )
    dup2 = store.insert_thread(
        _legacy_thread(
            "fwd: kyc docs",
            "FWD: KYC docs",
            t0 + timedelta(hours=2),
            status=ThreadStatus.WAITING_ON_VENDOR,
            last_actor=LastActor.US,
            last_outbound_at=t0 + timedelta(hours=2),
            vendor_nudge_count=2,
        )
    )
    store.insert_email_if_absent(make_email("<m1@x>", "Re: KYC docs", t0 + timedelta(hours=1)), dup1.id)
    store.record_reminder_event(
        ReminderEvent(thread_id=dup1.id, account_id="acme", kind=ReminderKind.SELF_REMINDER, sequence=1, fired_at=t0)
    )
    return keep, dup1, dup2


def test_merge_into_takes_latest_and_caps_counters():
    t0 = MONDAY_MORNING
    keep = _legacy_thread("a", "A", t0, vendor_nudge_count=2)
    newer = _legacy_thread(
        "a", "A", t0 + timedelta(hours=1), vendor_nudge_count=2, status=ThreadStatus.WAITING_ON_VENDOR, is_hot=True
    )

    merged = merge_into(keep, [newer], max_vendor_nudges=3)

    assert merged.vendor_nudge_count == 3
    assert merged.last_activity_at == t0 + timedelta(hours=1)
    assert merged.status is ThreadStatus.WAITING_ON_VENDOR
    assert merged.is_hot


def test_merge_into_status_follows_most_recent_activity():
    t0 = MONDAY_MORNING
    keep = _legacy_thread("a", "A", t0)
    older = _legacy_thread(
        "a", "A", t0 - timedelta(hours=2), status=ThreadStatus.WAITING_ON_VENDOR, last_actor=LastActor.US
    )
    newer = _legacy_thread(
        "a", "A", t0 + timedelta(minutes=5), status=ThreadStatus.WAITING_ON_VENDOR, last_actor=LastActor.US
    )

    assert merge_into(keep, [older], max_vendor_nudges=3).status is ThreadStatus.WAITING_ON_US

    keep = _legacy_thread("a", "A", t0)
    merged = merge_into(keep, [older, newer], max_vendor_nudges=3)

    assert merged.status is ThreadStatus.WAITING_ON_VENDOR
    assert merged.last_actor is LastActor.US
    assert merged.last_activity_at == t0 + timedelta(minutes=5)


def test_merge_keeps_oldest_and_moves_children(store):
    keep, dup1, dup2 = _seed_duplicates(store)

    report = merge_duplicate_threads(store)

    assert report.threads_removed == 2
    [group] = report.groups
    assert group.kept_thread_id == keep.id
    assert group.emails_moved == 1
    assert group.events_moved == 1

    [thread] = store.list_threads("acme")
    assert thread.id == keep.id
    assert thread.normalized_subject == "kyc docs"
    assert thread.gateway == "razorpay"
    assert thread.vendor_address == "onboarding@razorpay.com"
    assert thread.status is ThreadStatus.WAITING_ON_VENDOR
    assert thread.is_hot
    assert [e.message_id for e in store.list_thread_emails(keep.id)] == ["<m1@x>"]
    assert len(store.list_reminder_events(keep.id)) == 1


def test_dry_run_changes_nothing(store):
    _seed_duplicates(store)

    report = merge_duplicate_threads(store, dry_run=True)

    assert report.threads_removed == 2
    assert len(store.list_threads("acme")) == 3


def test_account_filter(store):
    _seed_duplicates(store)

    report = merge_duplicate_threads(store, account_id="globex")

    assert report.groups == []
    assert len(store.list_threads("acme")) == 3


def test_cli_reports_and_merges(store, monkeypatch, capsys):
    _seed_duplicates(store)
    monkeypatch.setattr("nudgeflow.cli.dedupe_threads.create_thread_store", lambda settings: store)

    assert dedupe_main(["--dry-run"]) == 0
    assert "Would remove 2 duplicate thread(s)" in capsys.readouterr().out
    assert len(store.list_threads("acme")) == 3

    assert dedupe_main([]) == 0
    assert "Removed 2 duplicate thread(s) in 1 group(s)" in capsys.readouterr().out
    assert len(store.list_threads("acme")) == 1
