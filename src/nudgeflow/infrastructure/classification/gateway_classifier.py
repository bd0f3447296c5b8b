"""Keyword rules that decide whether an email is payment-gateway onboarding mail."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from loguru import logger

from nudgeflow.application.filters import bare_address
from nudgeflow.application.ports.classifier import VendorIdentity
from nudgeflow.domain.entities.email_record import EmailRecord

EXCLUDED_DOMAINS: tuple[str, ...] = (
    "relume.io",
    "perplexity.ai",
    "gmail.com",
    "outlook.com",
    "yahoo.com",
    "mailchimp.com",
    "sendgrid.net",
    "customer.io",
    "intercom.io",
    "hubspot.com",
    "salesforce.com",
    "make.com",
    "zapier.com",
    "notion.so",
    "slack.com",
    "atlassian.net",
    "asana.com",
)

NEGATIVE_KEYWORDS: tuple[str, ...] = (
    "failed transaction",
    "transaction alert",
    "payment failed",
    "payment declined",
    "chargeback",
    "refund processed",
    "unsubscribe",
    "design tool",
    "free trial",
    "browse at the speed",
    "automation tool",
    "what will you automate",
)

ONBOARDING_PHRASES: tuple[str, ...] = (
    "merchant onboarding",
    "merchant account activation",
    "merchant id",
    "kyc documents required",
    "kyc verification",
    "api credentials",
    "test credentials",
    "live credentials",
    "go live",
    "golive",
    "integration documents",
    "merchant agreement",
    "onboarding documents",
    "account activation",
)


@dataclass(frozen=True)
class GatewayRule:
    gateway_id: str
    display_name: str
    keyword: str
    must_have: tuple[str, ...] = ("merchant", "onboarding")


DEFAULT_GATEWAYS: tuple[GatewayRule, ...] = (
    GatewayRule("razorpay", "Razorpay", "razorpay"),
    GatewayRule("payu", "PayU", "payu"),
    GatewayRule("cashfree", "Cashfree", "cashfree"),
    GatewayRule("paytm", "Paytm", "paytm"),
    GatewayRule("virtualpay", "VirtualPay", "virtualpay"),
)


def _domain_excluded(address: str, excluded: Sequence[str]) -> bool:
    domain = address.rsplit("@", 1)[-1] if "@" in address else ""
    return any(domain == d or domain.endswith(f".{d}") for d in excluded)


@dataclass
class KeywordGatewayClassifier:
    """Four-step filter: excluded sender domain, negative keyword, onboarding phrase, gateway rule."""

    rules: tuple[GatewayRule, ...] = DEFAULT_GATEWAYS
    excluded_domains: tuple[str, ...] = EXCLUDED_DOMAINS
    negative_keywords: tuple[str, ...] = NEGATIVE_KEYWORDS
    onboarding_phrases: tuple[str, ...] = ONBOARDING_PHRASES
    _names: dict[str, str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._names = {r.gateway_id: r.display_name for r in self.rules}

    def classify(self, email: EmailRecord, allowed_gateways: Sequence[str]) -> Optional[str]:
        sender = bare_address(email.sender_address)
        content = f"{sender} {email.subject} {email.body_text or email.body_preview}".lower()
        label = email.subject[:50]

        if _domain_excluded(sender, self.excluded_domains):
            logger.debug(f"Classifier excluded {label!r}: sender domain {sender.rsplit('@', 1)[-1]}")
            return None

        negative = next((kw for kw in self.negative_keywords if kw in content), None)
        if negative:
            logger.debug(f"Classifier rejected {label!r}: contains {negative!r}")
            return None

        if not any(phrase in content for phrase in self.onboarding_phrases):
            logger.debug(f"Classifier rejected {label!r}: no onboarding phrase")
            return None

        allowed = {g.lower() for g in allowed_gateways}
        for rule in self.rules:
            if allowed and rule.gateway_id not in allowed:
                continue
            if rule.keyword in content and all(kw in content for kw in rule.must_have):
                logger.debug(f"Classifier matched {label!r}: {rule.gateway_id}")
                return rule.gateway_id

        logger.debug(f"Classifier: {label!r} is not gateway onboarding mail")
        return None

    def extract_vendor_identity(self, email: EmailRecord) -> VendorIdentity:
        address = bare_address(email.sender_address)
        return VendorIdentity(address=address, name=email.sender_name or address or "Unknown")

    def display_name(self, gateway_id: str) -> str:
        return self._names.get(gateway_id, gateway_id)


def gateway_display_name(gateway_id: str) -> str:
    for rule in DEFAULT_GATEWAYS:
        if rule.gateway_id == gateway_id:
            return rule.display_name
    return gateway_id
