import pytest
from fakes import MONDAY_MORNING, make_email

from nudgeflow.infrastructure.classification.gateway_classifier import (
    KeywordGatewayClassifier,
    gateway_display_name,
)

ALL = ("razorpay", "payu", "cashfree", "paytm", "virtualpay")


@pytest.fixture
def classifier():
    return KeywordGatewayClassifier()


def _email(subject, sender="onboarding@razorpay.com", body=""):
    return make_email("<m@x>", subject, MONDAY_MORNING, sender=sender, body=body)


def test_matches_gateway_onboarding_mail(classifier):
    email = _email("Merchant Onboarding - KYC documents required")
    assert classifier.classify(email, ALL) == "razorpay"


def test_keyword_can_come_from_body(classifier):
    email = _email(
        "Your merchant account activation",
        sender="support@partners.example",
        body="Welcome to PayU merchant onboarding. Please share your integration documents.",
    )
    assert classifier.classify(email, ALL) == "payu"


@pytest.mark.parametrize(
    "sender",
    ["someone@gmail.com", "news@mail.hubspot.com"],
)
def test_excluded_sender_domains(classifier, sender):
    email = _email("Razorpay merchant onboarding", sender=sender)
    assert classifier.classify(email, ALL) is None


def test_negative_keyword_wins(classifier):
    email = _email("Razorpay merchant onboarding: payment failed")
    assert classifier.classify(email, ALL) is None


def test_requires_onboarding_phrase(classifier):
    email = _email("Razorpay product newsletter")
    assert classifier.classify(email, ALL) is None


def test_gateway_keyword_alone_is_not_enough(classifier):
    # "go live" is an onboarding phrase, but the rule also needs "merchant" and "onboarding"
    email = _email("Cashfree go live checklist", sender="team@cashfree.com")
    assert classifier.classify(email, ALL) is None


def test_allowed_gateways_restrict_matches(classifier):
    email = _email("Merchant Onboarding - KYC documents required")
    assert classifier.classify(email, ("payu",)) is None
    assert classifier.classify(email, ()) == "razorpay"


def test_vendor_identity(classifier):
    email = make_email("<m@x>", "s", MONDAY_MORNING, sender="Onboarding@Razorpay.com")
    identity = classifier.extract_vendor_identity(email)
    assert identity.address == "onboarding@razorpay.com"
    assert identity.name == "Razorpay Onboarding"


def test_display_names():
    assert gateway_display_name("payu") == "PayU"
    assert gateway_display_name("stripe") == "stripe"
    assert KeywordGatewayClassifier().display_name("virtualpay") == "VirtualPay"
