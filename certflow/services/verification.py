from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from flask import current_app

from .store import CertificateStore


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    participant_name: str | None = None
    participant_email: str | None = None
    event_title: str | None = None
    event_date: date | None = None
    verified_count: int = 0

    def as_dict(self) -> dict:
        if not self.valid:
            return {"valid": False}
        return {
            "valid": True,
            "participant": {
                "name": self.participant_name,
                "email": self.participant_email,
            },
            "event": {
                "title": self.event_title,
                "event_date": self.event_date.isoformat() if self.event_date else None,
            },
            "verified_count": self.verified_count,
        }


INVALID = VerificationResult(valid=False)


def verify_certificate(token: str | None, store: CertificateStore | None = None) -> VerificationResult:
    """Look up ``token`` and record one verification.

    Unknown or blank tokens return an invalid result and leave every
    counter untouched.
    """

    token = (token or "").strip()
    if not token:
        return INVALID
    store = store or CertificateStore()
    record = store.find_certificate_by_token(token)
    if record is None:
        current_app.logger.info("[CERT-VERIFY] token=%s result=unknown", token[:8])
        return INVALID
    verified = store.increment_verification(record.id)
    if verified is None:
        # deleted by a regeneration between lookup and update
        current_app.logger.info("[CERT-VERIFY] token=%s result=gone", token[:8])
        return INVALID
    current_app.logger.info(
        "[CERT-VERIFY] token=%s result=valid count=%s",
        token[:8],
        verified.verified_count,
    )
    return VerificationResult(
        valid=True,
        participant_name=verified.participant_name,
        participant_email=verified.participant_email,
        event_title=verified.event_title,
        event_date=verified.event_date,
        verified_count=verified.verified_count,
    )
