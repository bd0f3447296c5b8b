import pytest

from nudgeflow.domain.subjects import normalize_subject, reply_subject


def test_strips_stacked_reply_prefixes():
    """Re:/Fwd:/Fw: in any case and any number collapse to the bare subject"""
    assert normalize_subject("Re: Re: Hello") == "hello"
    assert normalize_subject("FWD: Hello") == "hello"
    assert normalize_subject("RE: Fwd: fw: Razorpay Onboarding  ") == "razorpay onboarding"


def test_reply_and_original_share_a_key():
    original = "Razorpay Merchant Onboarding - Acme"
    assert normalize_subject(f"Re: {original}") == normalize_subject(original)


def test_inner_prefixes_are_kept():
    assert normalize_subject("Update re: KYC") == "update re: kyc"


def test_empty_subjects_normalize_to_empty():
    assert normalize_subject("") == ""
    assert normalize_subject(None) == ""
    assert normalize_subject("Re:   ") == ""


def test_reply_subject_adds_single_prefix():
    assert reply_subject("KYC documents") == "Re: KYC documents"
    assert reply_subject("RE: KYC documents") == "RE: KYC documents"


@pytest.mark.parametrize(
    "subject",
    [
        "RE:  Fwd: re : X ",
        "Re:",
        "  fw:fw:Y",
        "Fwd: Re: Razorpay Merchant Onboarding - Acme",
        "re: RE: re",
        "Update re: KYC",
    ],
)
def test_normalize_is_idempotent(subject):
    once = normalize_subject(subject)
    assert normalize_subject(once) == once
