from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from nudgeflow.domain.entities.email_record import EmailRecord


@dataclass(frozen=True)
class VendorIdentity:
    address: str
    name: str


class ContentClassifier(Protocol):
    def classify(self, email: EmailRecord, allowed_gateways: Sequence[str]) -> Optional[str]: ...
    def extract_vendor_identity(self, email: EmailRecord) -> VendorIdentity: ...
