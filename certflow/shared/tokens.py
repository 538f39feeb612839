"""Certificate token generation.

A token identifies one certificate across the system. It is derived from
the participant, the event and a timestamp, salted with fresh randomness so
two calls with the same inputs still produce different tokens.
"""

from __future__ import annotations

import base64
import logging
import re
import secrets
import string

logger = logging.getLogger("certflow.certs")

TOKEN_LENGTH = 32
RANDOM_COMPONENT_LENGTH = 12
SHORT_ID_LENGTH = 8

_ALPHABET = string.ascii_letters + string.digits
_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")


def _random_alnum(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def random_token(length: int = TOKEN_LENGTH) -> str:
    return _random_alnum(length)


def _fit_length(value: str, length: int) -> str:
    if len(value) >= length:
        return value[:length]
    return value + _random_alnum(length - len(value))


def _encoded_token(participant_id, event_id, timestamp) -> str:
    # The random component goes first: base64 of a long common prefix would
    # otherwise make every token for one participant start identically.
    salt = _random_alnum(RANDOM_COMPONENT_LENGTH)
    data = f"{salt}-{participant_id}-{event_id}-{timestamp}"
    encoded = base64.b64encode(data.encode("utf-8")).decode("ascii")
    return _NON_ALNUM_RE.sub("", encoded)


def generate_certificate_token(participant_id, event_id, timestamp) -> str:
    """Return a 32 character alphanumeric token; never raises."""

    try:
        return _fit_length(
            _encoded_token(participant_id, event_id, timestamp), TOKEN_LENGTH
        )
    except Exception:
        logger.exception(
            "[CERT-TOKEN] encoding failed participant=%s event=%s; using random token",
            participant_id,
            event_id,
        )
        return random_token()


def short_certificate_id(token: str) -> str:
    """Human readable certificate id printed on documents and emails."""
    return (token or "")[:SHORT_ID_LENGTH].upper()
