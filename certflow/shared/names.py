"""Name utilities for certificate files and greetings."""

from __future__ import annotations

import re

_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")

CERTIFICATE_SUFFIX = "_Certificate.pdf"
ARCHIVE_SUFFIX = "_Certificates.zip"


def sanitize_name(value: str | None) -> str:
    """Replace every non-alphanumeric character with ``_``.

    ``"Jane Doe"`` → ``"Jane_Doe"``. Different names may sanitize to the same
    value (``"Ana-Li"`` and ``"Ana Li"``); callers keep such collisions.
    """

    return _NON_ALNUM_RE.sub("_", value or "")


def certificate_filename(participant_name: str | None) -> str:
    return f"{sanitize_name(participant_name)}{CERTIFICATE_SUFFIX}"


def archive_filename(event_title: str | None) -> str:
    return f"{sanitize_name(event_title) or 'event'}{ARCHIVE_SUFFIX}"


def greeting_name(name: str | None, email: str | None = None) -> str:
    """Return the name used to address a recipient in emails."""

    cleaned = " ".join((name or "").split())
    if cleaned:
        return cleaned
    return (email or "").strip()
