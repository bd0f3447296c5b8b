from datetime import datetime, timezone

from nudgeflow.domain.models import Direction
from nudgeflow.infrastructure.email.providers.imap.mapper import preview, rfc822_to_email_record

PLAIN = b"""\
Message-Id: <v2@razorpay.com>
In-Reply-To: <u1@acme.in>
References: <v1@razorpay.com> <u1@acme.in>
From: Razorpay Onboarding <Onboarding@Razorpay.com>
To: Acme Payments <onboarding@acme.in>
Cc: kyc@razorpay.com, Ops <OPS@acme.in>
Subject: RE: Merchant KYC Required
Date: Mon, 19 Oct 2026 11:00:00 +0530
Content-Type: text/plain; charset="utf-8"

Please upload the signed
merchant agreement.
"""

HTML_ONLY = b"""\
From: team@payu.in
To: onboarding@acme.in
Subject: PayU merchant onboarding
MIME-Version: 1.0
Content-Type: multipart/alternative; boundary="b1"

--b1
Content-Type: text/html; charset="utf-8"

<p>Your <b>merchant id</b> is ready.</p>
--b1--
"""


def test_parses_headers_and_body():
    record = rfc822_to_email_record("acme", Direction.INBOUND, PLAIN)

    assert record.message_id == "<v2@razorpay.com>"
    assert record.thread_key == "<u1@acme.in>"
    assert record.sender_address == "onboarding@razorpay.com"
    assert record.sender_name == "Razorpay Onboarding"
    assert record.recipients == ("onboarding@acme.in",)
    assert record.cc == ("kyc@razorpay.com", "ops@acme.in")
    assert record.observed_at == datetime(2026, 10, 19, 5, 30, tzinfo=timezone.utc)
    assert record.body_preview == "Please upload the signed merchant agreement."
    assert record.normalized_subject == "merchant kyc required"


def test_thread_key_falls_back_to_references_then_own_id():
    references_only = PLAIN.replace(b"In-Reply-To: <u1@acme.in>\n", b"")
    assert rfc822_to_email_record("acme", Direction.INBOUND, references_only).thread_key == "<v1@razorpay.com>"

    fresh = references_only.replace(b"References: <v1@razorpay.com> <u1@acme.in>\n", b"")
    assert rfc822_to_email_record("acme", Direction.INBOUND, fresh).thread_key == "<v2@razorpay.com>"


def test_missing_message_id_gets_stable_synthetic_id():
    first = rfc822_to_email_record("acme", Direction.INBOUND, HTML_ONLY)
    second = rfc822_to_email_record("acme", Direction.INBOUND, HTML_ONLY)

    assert first.message_id == second.message_id
    assert first.message_id.endswith("@nudgeflow.local>")
    assert first.thread_key == first.message_id


def test_html_body_is_stripped_when_no_plain_part():
    record = rfc822_to_email_record("acme", Direction.INBOUND, HTML_ONLY)

    assert "merchant id" in record.body_text
    assert "<p>" not in record.body_text


def test_missing_date_uses_arrival_time():
    arrived = datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)
    record = rfc822_to_email_record("acme", Direction.OUTBOUND, HTML_ONLY, received_at=arrived)

    assert record.observed_at == arrived
    assert record.direction is Direction.OUTBOUND


def test_preview_collapses_whitespace_and_truncates():
    assert preview("a\n\n  b\tc") == "a b c"
    assert len(preview("x" * 500)) == 200


def test_x_mailer_is_kept():
    raw = PLAIN.replace(b"Subject:", b"X-Mailer: Nudgeflow\nSubject:")

    assert rfc822_to_email_record("acme", Direction.OUTBOUND, raw).mailer == "Nudgeflow"
    assert rfc822_to_email_record("acme", Direction.INBOUND, PLAIN).mailer == ""
