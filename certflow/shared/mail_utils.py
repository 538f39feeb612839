"""Mail helper utilities."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from urllib.parse import quote

logger = logging.getLogger("certflow.mailer")

_SPLIT_RE = re.compile(r"[;,]")


def _iter_tokens(recipients: Sequence[str] | str | None) -> Iterable[str]:
    if recipients is None:
        return []
    if isinstance(recipients, str):
        return (part for part in _SPLIT_RE.split(recipients))
    return (str(value) for value in recipients)


def is_valid_address(value: str | None) -> bool:
    candidate = (value or "").strip().lower()
    return "@" in candidate and "." in candidate.split("@")[-1]


def normalize_recipients(recipients: Sequence[str] | str | None) -> tuple[list[str], str]:
    """Normalize recipient entries for envelopes and headers."""

    seen: set[str] = set()
    kept: list[str] = []

    for raw in _iter_tokens(recipients):
        candidate = (raw or "").strip()
        if not candidate:
            continue
        normalized = candidate.lower()
        if not is_valid_address(normalized):
            logger.warning("[MAIL-INVALID-RECIPIENT] token=%s", candidate)
            continue
        if normalized in seen:
            continue
        seen.add(normalized)
        kept.append(candidate)

    header = ", ".join(kept)
    return kept, header


def build_mailto(
    to: Sequence[str] | str | None,
    subject: str,
    body: str,
    *,
    bcc: Sequence[str] | None = None,
) -> str:
    """Return a ``mailto:`` URI with subject and body percent-encoded."""

    to_list, _ = normalize_recipients(to)
    address = ",".join(quote(addr, safe="@") for addr in to_list)
    params = [f"subject={quote(subject, safe='')}", f"body={quote(body, safe='')}"]
    if bcc:
        bcc_list, _ = normalize_recipients(bcc)
        if bcc_list:
            params.insert(0, "bcc=" + ",".join(quote(addr, safe="@") for addr in bcc_list))
    return f"mailto:{address}?{'&'.join(params)}"
