"""SMTP delivery for reminders, nudges and monitor alerts."""

from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, formatdate, make_msgid
from typing import Mapping

from loguru import logger
from pydantic import SecretStr

from nudgeflow.application.ports.mail_transport import DeliveryResult, OutgoingEmail
from nudgeflow.domain.entities.account import Account


def build_mime_message(account: Account, message: OutgoingEmail) -> EmailMessage:
    """Plain-text MIME message with reply routing and threading headers."""
    domain = account.mailbox_address.rsplit("@", 1)[-1] or None
    mime = EmailMessage()
    mime["From"] = formataddr((account.display_name, account.mailbox_address))
    mime["To"] = ", ".join(message.to)
    if message.cc:
        mime["Cc"] = ", ".join(message.cc)
    mime["Subject"] = message.subject
    mime["Date"] = formatdate(localtime=False)
    mime["Message-ID"] = make_msgid(domain=domain)
    if message.reply_to:
        mime["Reply-To"] = message.reply_to
    if message.in_reply_to:
        mime["In-Reply-To"] = message.in_reply_to
        mime["References"] = message.in_reply_to
    for name, value in message.headers.items():
        mime[name] = value
    mime.set_content(message.body)
    return mime


@dataclass
class SmtpConfig:
    host: str = "smtp.gmail.com"
    port: int = 465
    timeout: float = 30.0


class SmtpSender:
    """Implicit-TLS SMTP sender authenticating as the account mailbox."""

    def __init__(self, cfg: SmtpConfig, passwords: Mapping[str, SecretStr]) -> None:
        self.cfg = cfg
        self.passwords = passwords

    def send(self, account: Account, message: OutgoingEmail) -> DeliveryResult:
        password = self.passwords.get(account.account_id)
        if password is None:
            return DeliveryResult(success=False, error=f"No SMTP password for {account.account_id}")

        mime = build_mime_message(account, message)
        recipients = [*message.to, *message.cc]

        try:
            with smtplib.SMTP_SSL(self.cfg.host, self.cfg.port, timeout=self.cfg.timeout) as smtp:
                smtp.login(account.mailbox_address, password.get_secret_value())
                refused = smtp.send_message(mime, to_addrs=recipients)
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error sending {message.subject[:50]!r} for {account.account_id}: {e}")
            return DeliveryResult(success=False, error=str(e))
        except OSError as e:
            logger.error(f"SMTP connection failed for {account.account_id}: {e}")
            return DeliveryResult(success=False, error=f"Connection failed: {e}")

        if refused:
            logger.warning(f"SMTP refused recipients: {', '.join(refused)}")
        logger.debug(f"SMTP accepted {mime['Message-ID']} for {', '.join(recipients)}")
        return DeliveryResult(success=True, message_id=mime["Message-ID"])
