import pytest
from fakes import MONDAY_MORNING, make_account
from langchain_core.language_models import FakeListChatModel

from nudgeflow.application.ports.composer import NotificationContext
from nudgeflow.domain.entities.thread import Thread
from nudgeflow.domain.errors import CompositionError
from nudgeflow.domain.models import LastActor, ThreadStatus
from nudgeflow.infrastructure.notifications.composer import LLMNotificationComposer, create_llm
from nudgeflow.infrastructure.notifications.templates import TemplateComposer
from nudgeflow.infrastructure.settings import Settings


@pytest.fixture
def thread():
    return Thread(
        id=7,
        account_id="acme",
        normalized_subject="razorpay merchant onboarding",
        subject="Razorpay Merchant Onboarding",
        gateway="razorpay",
        status=ThreadStatus.WAITING_ON_VENDOR,
        last_actor=LastActor.US,
        last_activity_at=MONDAY_MORNING,
        vendor_address="onboarding@razorpay.com",
        vendor_name="Priya",
    )


@pytest.fixture
def context():
    return NotificationContext(
        account=make_account(),
        now=MONDAY_MORNING,
        sequence=2,
        elapsed="3 hours 5 min",
        last_message_preview="Sharing the signed agreement.",
    )


def test_template_self_reminder(thread, context):
    body = TemplateComposer().compose_self_reminder(thread, context)

    assert "Reminder #2: no reply for 3 hours 5 min" in body
    assert "Vendor:  Priya <onboarding@razorpay.com>" in body
    assert "Gateway: Razorpay" in body
    assert "Sharing the signed agreement." in body


def test_template_vendor_nudge(thread, context):
    body = TemplateComposer().compose_vendor_nudge(thread, context)

    assert body.startswith("Hi Priya,")
    assert body.rstrip().endswith("onboarding@acme.in")


def test_llm_draft_is_used(thread, context):
    composer = LLMNotificationComposer(FakeListChatModel(responses=["  Hi Priya, any update?\n\nBest regards  "]))

    assert composer.compose_vendor_nudge(thread, context) == "Hi Priya, any update?\n\nBest regards"


def test_empty_draft_raises(thread, context):
    composer = LLMNotificationComposer(FakeListChatModel(responses=["   "]))

    with pytest.raises(CompositionError):
        composer.compose_vendor_nudge(thread, context)


def test_model_failure_raises_composition_error(thread, context, monkeypatch):
    composer = LLMNotificationComposer(FakeListChatModel(responses=["unused"]))

    def unavailable(*args, **kwargs):
        raise ConnectionError("model endpoint unreachable")

    monkeypatch.setattr(composer, "chain", type("Chain", (), {"invoke": staticmethod(unavailable)})())

    with pytest.raises(CompositionError, match="unreachable"):
        composer.compose_vendor_nudge(thread, context)


def test_self_reminders_stay_templated(thread, context):
    composer = LLMNotificationComposer(FakeListChatModel(responses=["should not be used"]))

    assert "Action Required" in composer.compose_self_reminder(thread, context)


def test_create_llm_requires_key():
    settings = Settings(_env_file=None, llm_provider="openai", openai_api_key=None)

    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        create_llm(settings)


def test_create_llm_rejects_unknown_provider():
    with pytest.raises(ValueError, match="Unknown LLM provider"):
        create_llm(Settings.model_construct(llm_provider="mystery"))
