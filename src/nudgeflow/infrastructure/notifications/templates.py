"""Deterministic notification bodies; also the fallback when drafting fails."""

from __future__ import annotations

from nudgeflow.application.ports.composer import NotificationContext
from nudgeflow.domain.entities.thread import Thread
from nudgeflow.infrastructure.classification.gateway_classifier import gateway_display_name


class TemplateComposer:
    def compose_self_reminder(self, thread: Thread, context: NotificationContext) -> str:
        vendor = thread.vendor_name or "Unknown"
        lines = [
            "Action Required: vendor email awaiting your response",
            "",
            f"Reminder #{context.sequence}: no reply for {context.elapsed}",
            "",
            f"Subject: {thread.subject}",
            f"Vendor:  {vendor} <{thread.vendor_address}>",
            f"Gateway: {gateway_display_name(thread.gateway) if thread.gateway else 'Unknown'}",
        ]
        if context.last_message_preview:
            lines += ["", "Last message:", context.last_message_preview]
        lines += ["", f"Mailbox: {context.account.mailbox_address}"]
        return "\n".join(lines)

    def compose_vendor_nudge(self, thread: Thread, context: NotificationContext) -> str:
        greeting = f"Hi {thread.vendor_name}," if thread.vendor_name else "Hi,"
        account = context.account
        return "\n".join(
            [
                greeting,
                "",
                "I hope this email finds you well. I wanted to follow up on our merchant onboarding "
                f"process for {account.display_name}.",
                "",
                "Could you please provide an update on the current status? "
                "We're eager to move forward with the integration.",
                "",
                "Thank you for your assistance.",
                "",
                "Best regards,",
                account.display_name,
                account.mailbox_address,
            ]
        )
