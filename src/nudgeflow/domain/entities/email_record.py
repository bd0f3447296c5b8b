from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from nudgeflow.domain.models import Direction
from nudgeflow.domain.subjects import normalize_subject


@dataclass(frozen=True)
class EmailRecord:
    account_id: str
    message_id: str
    thread_key: Optional[str]  # provider thread id; unreliable across providers
    subject: str
    sender_address: str
    sender_name: str
    recipients: tuple[str, ...]
    direction: Direction
    observed_at: datetime
    body_preview: str = ""
    cc: tuple[str, ...] = ()
    gateway: Optional[str] = None
    body_text: str = field(default="", repr=False)
    mailer: str = ""  # X-Mailer header, identifies engine-sent mail

    @property
    def normalized_subject(self) -> str:
        return normalize_subject(self.subject)

    def with_gateway(self, gateway: str | None) -> EmailRecord:
        return replace(self, gateway=gateway)
