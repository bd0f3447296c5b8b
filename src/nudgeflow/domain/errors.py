"""Error taxonomy for the correlation and reminder engine."""

from __future__ import annotations


class NudgeflowError(Exception):
    """Base class for all engine errors."""


class TransportError(NudgeflowError):
    """Mailbox unreachable or authentication failed.

    Logged by the scheduler; the account stays enabled and the next tick retries.
    """


class ClassificationError(NudgeflowError):
    """The content classifier could not decide. Treated as "no gateway"."""


class PersistenceError(NudgeflowError):
    """A store operation failed. Aborts only the current email or reminder."""


class StaleThreadError(PersistenceError):
    """A thread row changed underneath a read-modify-write."""

    def __init__(self, thread_id: int, expected_version: int) -> None:
        super().__init__(f"Thread {thread_id} changed since version {expected_version}")
        self.thread_id = thread_id
        self.expected_version = expected_version


class CompositionError(NudgeflowError):
    """The notification composer failed; callers fall back to the template."""


class DeliveryError(NudgeflowError):
    """A reminder or nudge could not be delivered. Counters are not advanced."""
