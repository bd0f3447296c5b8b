from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses
from typing import Optional

from nudgeflow.domain.entities.email_record import EmailRecord
from nudgeflow.domain.models import Direction

PREVIEW_CHARS = 200

_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def _as_text(msg: EmailMessage) -> str:
    # Prefer text/plain; fallback to stripped HTML
    if msg.is_multipart():
        for part in msg.walk():
            if part.get_content_type() == "text/plain" and not part.is_attachment():
                return part.get_content().strip()
        for part in msg.walk():
            if part.get_content_type() == "text/html" and not part.is_attachment():
                return _TAG.sub(" ", part.get_content()).strip()
        return ""
    content = msg.get_content()
    if msg.get_content_type() == "text/html":
        content = _TAG.sub(" ", content)
    return content.strip() if isinstance(content, str) else ""


def _addresses(values: list[str]) -> tuple[str, ...]:
    return tuple(addr.lower() for _, addr in getaddresses(values) if addr)


def preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    return _WHITESPACE.sub(" ", text).strip()[:limit]


def thread_key_for(msg: EmailMessage, message_id: str) -> str:
    """Provider thread id: In-Reply-To, else the first References entry, else our own id."""
    in_reply_to = (msg.get("In-Reply-To") or "").strip()
    if in_reply_to:
        return in_reply_to.split()[0]
    references = (msg.get("References") or "").split()
    if references:
        return references[0]
    return message_id


def rfc822_to_email_record(
    account_id: str,
    direction: Direction,
    rfc822_bytes: bytes,
    received_at: Optional[datetime] = None,
) -> EmailRecord:
    em = BytesParser(policy=policy.default).parsebytes(rfc822_bytes)

    message_id = (em.get("Message-Id") or "").strip()
    if not message_id:
        # Stable synthetic id so re-fetching the same message stays idempotent
        message_id = f"<{hashlib.sha256(rfc822_bytes).hexdigest()[:32]}@nudgeflow.local>"

    subject = (em.get("Subject") or "").strip()
    senders = getaddresses([str(em.get("From") or "")])
    sender_name, sender_address = senders[0] if senders else ("", "")

    # Date parsing can be messy; fall back to the IMAP arrival time, then now
    observed_at = received_at or datetime.now(timezone.utc)
    dt = em.get("Date")
    try:
        if dt is not None and dt.datetime is not None:
            observed_at = dt.datetime
    except (AttributeError, TypeError, ValueError):
        pass
    if observed_at.tzinfo is None:
        observed_at = observed_at.replace(tzinfo=timezone.utc)

    text = _as_text(em)
    mailer = str(em.get("X-Mailer") or "").strip()

    return EmailRecord(
        account_id=account_id,
        message_id=message_id,
        thread_key=thread_key_for(em, message_id),
        subject=subject,
        sender_address=sender_address.lower(),
        sender_name=sender_name,
        recipients=_addresses([str(v) for v in em.get_all("To") or []]),
        cc=_addresses([str(v) for v in em.get_all("Cc") or []]),
        direction=direction,
        observed_at=observed_at.astimezone(timezone.utc),
        body_preview=preview(text),
        body_text=text,
        mailer=mailer,
    )
