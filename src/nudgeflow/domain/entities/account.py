from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from nudgeflow.domain.models import DeliveryProvider


@dataclass(frozen=True)
class Account:
    """One monitored mailbox. Read-only to the engine apart from `last_checked_at`."""

    account_id: str
    display_name: str
    mailbox_address: str
    operator_address: str
    poll_interval_minutes: int = 30
    self_reminder_minutes: int = 30
    vendor_nudge_minutes: int = 180
    gateways: tuple[str, ...] = field(default_factory=tuple)
    timezone: str = "Asia/Kolkata"
    delivery: DeliveryProvider = DeliveryProvider.SMTP
    is_active: bool = True
    last_checked_at: Optional[datetime] = None
