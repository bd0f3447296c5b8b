from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol, Sequence

from nudgeflow.domain.entities.account import Account
from nudgeflow.domain.entities.email_record import EmailRecord


@dataclass(frozen=True)
class FetchWindow:
    # Only messages observed at or after `since`, newest `limit` per folder
    since: datetime
    limit: int = 20


@dataclass(frozen=True)
class OutgoingEmail:
    to: Sequence[str]
    subject: str
    body: str
    cc: Sequence[str] = ()
    reply_to: Optional[str] = None
    in_reply_to: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class DeliveryResult:
    """Result of handing a message to the transport."""

    success: bool
    message_id: str | None = None
    error: str | None = None


class MailTransport(Protocol):
    def fetch_inbound(self, account: Account, window: FetchWindow) -> list[EmailRecord]: ...
    def fetch_outbound(self, account: Account, window: FetchWindow) -> list[EmailRecord]: ...
    def deliver(self, account: Account, message: OutgoingEmail) -> DeliveryResult: ...
