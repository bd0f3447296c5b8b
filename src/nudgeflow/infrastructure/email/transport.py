"""MailTransport composed from the IMAP reader and a per-account sender."""

from __future__ import annotations

from typing import Mapping, Protocol

from loguru import logger

from nudgeflow.application.ports.mail_transport import DeliveryResult, FetchWindow, OutgoingEmail
from nudgeflow.domain.entities.account import Account
from nudgeflow.domain.entities.email_record import EmailRecord
from nudgeflow.domain.models import DeliveryProvider
from nudgeflow.infrastructure.email.providers.imap.client import ImapMailSource


class Sender(Protocol):
    def send(self, account: Account, message: OutgoingEmail) -> DeliveryResult: ...


class MailboxTransport:
    """Reads through IMAP and delivers through the account's configured provider."""

    def __init__(self, source: ImapMailSource, senders: Mapping[DeliveryProvider, Sender]) -> None:
        self.source = source
        self.senders = senders

    def fetch_inbound(self, account: Account, window: FetchWindow) -> list[EmailRecord]:
        return self.source.fetch_inbound(account, window)

    def fetch_outbound(self, account: Account, window: FetchWindow) -> list[EmailRecord]:
        return self.source.fetch_outbound(account, window)

    def deliver(self, account: Account, message: OutgoingEmail) -> DeliveryResult:
        sender = self.senders.get(account.delivery)
        if sender is None:
            logger.error(f"No {account.delivery.value} sender configured for {account.account_id}")
            return DeliveryResult(success=False, error=f"{account.delivery.value} delivery not configured")
        return sender.send(account, message)
