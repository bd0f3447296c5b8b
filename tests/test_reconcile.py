from dataclasses import replace
from datetime import timedelta

import pytest
from fakes import MONDAY_MORNING, make_email

from nudgeflow.domain.errors import TransportError
from nudgeflow.domain.models import Direction, ThreadStatus

SUBJECT = "Razorpay Merchant Onboarding - Acme"


def test_inbound_gateway_mail_creates_thread(store, transport, reconciler, account, clock):
    transport.inbound.append(make_email("<m1@razorpay.com>", SUBJECT, clock() - timedelta(minutes=5)))

    result = reconciler.run(account)

    assert result.new_emails == 1
    assert result.new_threads == 1
    [thread] = store.list_threads("acme")
    assert thread.gateway == "razorpay"
    assert thread.status is ThreadStatus.WAITING_ON_US
    assert store.get_account("acme").last_checked_at == clock()


def test_non_gateway_inbound_is_ignored(store, transport, reconciler, account, clock):
    transport.inbound.append(make_email("<m1@x>", "Lunch on Friday?", clock() - timedelta(minutes=5)))

    result = reconciler.run(account)

    assert result.outcomes["skipped_no_gateway"] == 1
    assert store.list_threads("acme") == []


def test_gateway_outside_account_list_is_ignored(store, transport, reconciler, account, clock):
    transport.inbound.append(make_email("<m1@x>", "Cashfree merchant onboarding", clock() - timedelta(minutes=5)))

    reconciler.run(account)

    assert store.list_threads("acme") == []


def test_reprocessing_is_idempotent(store, transport, reconciler, account, clock):
    """Running twice over the same messages changes nothing the second time"""
    transport.inbound.append(make_email("<m1@x>", SUBJECT, clock() - timedelta(minutes=10)))
    transport.outbound.append(
        make_email("<m2@x>", f"Re: {SUBJECT}", clock() - timedelta(minutes=5), direction=Direction.OUTBOUND)
    )
    reconciler.run(account)
    before = store.list_threads("acme")

    account = store.get_account("acme")
    clock.advance(minutes=1)
    result = reconciler.run(account)

    assert result.new_emails == 0
    assert result.outcomes["duplicate"] == 2
    after = store.list_threads("acme")
    assert [(t.id, t.status, t.version) for t in after] == [(t.id, t.status, t.version) for t in before]


def test_emails_applied_in_chronological_order(store, transport, reconciler, account, clock):
    """Status follows the latest email even when folders are fetched in another order"""
    transport.inbound.append(make_email("<m1@x>", SUBJECT, clock() - timedelta(minutes=30)))
    transport.outbound.append(
        make_email("<m2@x>", f"Re: {SUBJECT}", clock() - timedelta(minutes=20), direction=Direction.OUTBOUND)
    )
    transport.inbound.append(make_email("<m3@x>", f"Re: {SUBJECT}", clock() - timedelta(minutes=10)))

    reconciler.run(account)

    [thread] = store.list_threads("acme")
    assert thread.status is ThreadStatus.WAITING_ON_US
    assert len(store.list_thread_emails(thread.id)) == 3


def test_outbound_only_advances_existing_threads(store, transport, reconciler, account, clock):
    transport.outbound.append(
        make_email("<m1@x>", "Razorpay pricing question", clock() - timedelta(minutes=5), direction=Direction.OUTBOUND)
    )

    result = reconciler.run(account)

    assert result.outcomes["skipped_unmatched"] == 1
    assert store.list_threads("acme") == []
    assert not store.has_email("acme", "<m1@x>")


def test_loopback_and_system_mail_never_stored(store, transport, reconciler, account, clock):
    at = clock() - timedelta(minutes=5)
    transport.inbound.append(make_email("<m1@x>", f"⚠️ Reminder #1: Reply Needed - {SUBJECT}", at))
    transport.inbound.append(make_email("<m2@x>", SUBJECT, at, sender="ops@acme.in"))

    result = reconciler.run(account)

    assert result.skipped == 2
    assert store.list_threads("acme") == []


def test_fetch_window_uses_last_check_with_overlap(reconciler, account, clock):
    assert reconciler.fetch_window(account, clock()).since == clock() - timedelta(days=30)

    checked = clock() - timedelta(hours=2)
    window = reconciler.fetch_window(replace(account, last_checked_at=checked), clock())
    assert window.since == checked - timedelta(minutes=60)
    assert window.limit == 20


def test_transport_error_propagates_and_keeps_last_check(store, transport, reconciler, account):
    transport.fetch_error = "imap login failed"

    with pytest.raises(TransportError):
        reconciler.run(account)

    assert store.get_account("acme").last_checked_at is None


def test_last_check_advances_without_new_mail(store, reconciler, account, clock):
    reconciler.run(account)
    assert store.get_account("acme").last_checked_at == MONDAY_MORNING
