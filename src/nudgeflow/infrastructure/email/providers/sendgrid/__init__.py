from nudgeflow.infrastructure.email.providers.sendgrid.sender import SendGridSender

__all__ = ["SendGridSender"]
