"""
Pytest configuration for the nudgeflow tests

Provides a temporary SQLite store, a controllable clock and fake ports.
"""

import pytest
from fakes import Clock, FakeClassifier, FakeTransport, ManualTimer, make_account

from nudgeflow.application.use_cases.reconcile_mailbox import ReconcileMailboxUseCase
from nudgeflow.application.use_cases.reminder_policy import ReminderPolicyEngine
from nudgeflow.infrastructure.notifications.templates import TemplateComposer
from nudgeflow.infrastructure.stores.sqlite_thread_store import SQLiteThreadStore


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def account():
    return make_account()


@pytest.fixture
def store(tmp_path, account):
    """Fresh SQLite store with the default account registered."""
    s = SQLiteThreadStore(tmp_path / "nudgeflow.db")
    s.upsert_account(account)
    return s


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def timer():
    return ManualTimer()


@pytest.fixture
def reconciler(store, transport, classifier, clock):
    return ReconcileMailboxUseCase(store=store, transport=transport, classifier=classifier, clock=clock)


@pytest.fixture
def reminders(store, transport, clock):
    return ReminderPolicyEngine(store=store, transport=transport, composer=TemplateComposer(), clock=clock)
