"""Subject normalization used for fuzzy thread matching."""

from __future__ import annotations

import re

# One or more leading "Re:", "Fwd:", "Fw:" markers in any case, e.g. "RE: Fwd: re:"
_REPLY_PREFIX = re.compile(r"^(?:\s*(?:re|fwd|fw)\s*:)+", re.IGNORECASE)


def normalize_subject(subject: str | None) -> str:
    """Strip reply/forward prefixes, trim and lower-case.

    >>> normalize_subject("Re: Re: Hello")
    'hello'
    >>> normalize_subject("FWD: Hello")
    'hello'
    """
    if not subject:
        return ""
    return _REPLY_PREFIX.sub("", subject).strip().lower()


def reply_subject(subject: str) -> str:
    """Subject for a reply on an existing conversation."""
    if _REPLY_PREFIX.match(subject or ""):
        return subject
    return f"Re: {subject}"
