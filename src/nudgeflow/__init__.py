"""Thread-correlation and reminder-escalation engine for merchant onboarding mail."""

__version__ = "0.1.0"
