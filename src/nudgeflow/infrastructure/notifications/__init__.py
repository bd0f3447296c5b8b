"""Notification text: fixed templates and LLM drafts."""

from nudgeflow.infrastructure.notifications.templates import TemplateComposer

__all__ = ["TemplateComposer"]
