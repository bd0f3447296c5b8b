"""SendGrid delivery over its v3 HTTP API."""

from __future__ import annotations

from email.utils import make_msgid
from typing import Any

import httpx
from loguru import logger

from nudgeflow.application.ports.mail_transport import DeliveryResult, OutgoingEmail
from nudgeflow.domain.entities.account import Account


class SendGridSender:
    """SendGrid mail/send client."""

    BASE_URL = "https://api.sendgrid.com/v3"

    def __init__(
        self,
        api_key: str | None,
        base_url: str | None = None,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        if not api_key:
            raise ValueError("SENDGRID_API_KEY is required")
        self.api_key = api_key
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout
        self._client = client

    def build_payload(self, account: Account, message: OutgoingEmail, message_id: str) -> dict[str, Any]:
        personalization: dict[str, Any] = {"to": [{"email": addr} for addr in message.to]}
        if message.cc:
            personalization["cc"] = [{"email": addr} for addr in message.cc]

        headers = {"Message-ID": message_id, **message.headers}
        if message.in_reply_to:
            headers["In-Reply-To"] = message.in_reply_to
            headers["References"] = message.in_reply_to

        payload: dict[str, Any] = {
            "personalizations": [personalization],
            "from": {"email": account.mailbox_address, "name": account.display_name},
            "subject": message.subject,
            "content": [{"type": "text/plain", "value": message.body}],
            "headers": headers,
        }
        if message.reply_to:
            payload["reply_to"] = {"email": message.reply_to}
        return payload

    def send(self, account: Account, message: OutgoingEmail) -> DeliveryResult:
        domain = account.mailbox_address.rsplit("@", 1)[-1] or None
        message_id = make_msgid(domain=domain)
        payload = self.build_payload(account, message, message_id)

        try:
            client = self._client or httpx.Client()
            try:
                response = client.post(
                    f"{self.base_url}/mail/send",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                    timeout=self.timeout,
                )
            finally:
                if self._client is None:
                    client.close()
        except httpx.TimeoutException:
            logger.error(f"SendGrid API timeout sending {message.subject[:50]!r}")
            return DeliveryResult(success=False, error="Request timeout")
        except httpx.HTTPError as e:
            logger.error(f"SendGrid API exception: {e}")
            return DeliveryResult(success=False, error=str(e))

        # SendGrid answers 202 Accepted on success
        if response.status_code in (200, 202):
            logger.debug(f"SendGrid accepted {message_id} for {', '.join(message.to)}")
            return DeliveryResult(success=True, message_id=message_id)

        error_text = response.text
        logger.error(f"SendGrid API error {response.status_code}: {error_text[:200]}")
        return DeliveryResult(success=False, error=f"HTTP {response.status_code}: {error_text[:200]}")
