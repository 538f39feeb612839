"""Persistence operations used by the certificate pipeline.

Every method works on plain row values so callers (including worker
threads in the batch orchestrator) never hold live ORM objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Sequence

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..app import db
from ..models import CertificateRecord, Event, Participant
from ..shared.time import now_utc
from .errors import StoreError


@dataclass(frozen=True)
class EventRow:
    id: int
    title: str
    event_date: date
    status: str


@dataclass(frozen=True)
class ParticipantRow:
    id: int
    name: str
    email: str


@dataclass(frozen=True)
class NewCertificate:
    participant_id: int
    event_id: int
    token: str
    qr_code_data: str
    generated_at: datetime


@dataclass(frozen=True)
class RecipientRow:
    participant_id: int
    name: str
    email: str
    token: str


@dataclass(frozen=True)
class VerifiedCertificate:
    certificate_id: int
    token: str
    verified_count: int
    last_verified_at: datetime | None
    participant_name: str
    participant_email: str
    event_title: str
    event_date: date


class CertificateStore:
    def __init__(self, session=None):
        self.session = session or db.session

    def get_event(self, event_id: int) -> EventRow | None:
        try:
            event = self.session.get(Event, event_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"could not load event {event_id}: {exc}") from exc
        if not event:
            return None
        return EventRow(
            id=event.id,
            title=event.title,
            event_date=event.event_date,
            status=event.status,
        )

    def count_participants(self, event_id: int) -> int:
        try:
            return (
                self.session.query(db.func.count(Participant.id))
                .filter(Participant.event_id == event_id)
                .scalar()
                or 0
            )
        except SQLAlchemyError as exc:
            raise StoreError(f"could not count participants: {exc}") from exc

    def list_participants(self, event_id: int) -> list[ParticipantRow]:
        try:
            rows = (
                self.session.query(Participant.id, Participant.name, Participant.email)
                .filter(Participant.event_id == event_id)
                .order_by(Participant.id)
                .all()
            )
        except SQLAlchemyError as exc:
            raise StoreError(f"could not list participants: {exc}") from exc
        return [
            ParticipantRow(id=pid, name=name or "", email=email or "")
            for pid, name, email in rows
        ]

    def delete_certificates(self, event_id: int) -> int:
        return (
            self.session.query(CertificateRecord)
            .filter(CertificateRecord.event_id == event_id)
            .delete(synchronize_session=False)
        )

    def insert_certificates(self, records: Sequence[NewCertificate]) -> None:
        self.session.add_all(
            [
                CertificateRecord(
                    participant_id=record.participant_id,
                    event_id=record.event_id,
                    certificate_hash=record.token,
                    qr_code_data=record.qr_code_data,
                    status="generated",
                    verified_count=0,
                    generated_at=record.generated_at,
                )
                for record in records
            ]
        )
        self.session.flush()

    def replace_certificates(
        self, event_id: int, records: Sequence[NewCertificate]
    ) -> int:
        """Swap the event's certificates for ``records`` in one transaction.

        A failed delete is tolerated (nothing else is pending at that point,
        so rolling it back loses nothing). A failed insert rolls back the
        whole transaction, leaving the previous records in place.
        """

        deleted = 0
        try:
            deleted = self.delete_certificates(event_id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            current_app.logger.warning(
                "[CERT-PERSIST] delete failed event=%s error=%s", event_id, exc
            )
        try:
            self.insert_certificates(records)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(f"could not save certificates: {exc}") from exc
        current_app.logger.info(
            "[CERT-PERSIST] event=%s deleted=%s inserted=%s",
            event_id,
            deleted,
            len(records),
        )
        return deleted

    def find_certificate_by_token(self, token: str) -> CertificateRecord | None:
        return (
            self.session.query(CertificateRecord)
            .filter(CertificateRecord.certificate_hash == token)
            .one_or_none()
        )

    def increment_verification(self, certificate_id: int) -> VerifiedCertificate | None:
        """Atomically bump the counter and return the post-update state.

        The increment is a single ``UPDATE ... SET verified_count =
        verified_count + 1`` so the database serializes concurrent calls; the
        row is re-read inside the same transaction before committing.
        """

        verified_at = now_utc()
        try:
            result = self.session.execute(
                update(CertificateRecord)
                .where(CertificateRecord.id == certificate_id)
                .values(
                    verified_count=CertificateRecord.verified_count + 1,
                    last_verified_at=verified_at,
                    status="verified",
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.session.rollback()
                return None
            row = (
                self.session.query(
                    CertificateRecord.id,
                    CertificateRecord.certificate_hash,
                    CertificateRecord.verified_count,
                    Participant.name,
                    Participant.email,
                    Event.title,
                    Event.event_date,
                )
                .join(Participant, Participant.id == CertificateRecord.participant_id)
                .join(Event, Event.id == CertificateRecord.event_id)
                .filter(CertificateRecord.id == certificate_id)
                .one()
            )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(f"could not record verification: {exc}") from exc
        return VerifiedCertificate(
            certificate_id=row[0],
            token=row[1],
            verified_count=row[2],
            last_verified_at=verified_at,
            participant_name=row[3] or "",
            participant_email=row[4] or "",
            event_title=row[5],
            event_date=row[6],
        )

    def list_certificates(self, event_id: int) -> list[tuple[CertificateRecord, Participant]]:
        return (
            self.session.query(CertificateRecord, Participant)
            .join(Participant, Participant.id == CertificateRecord.participant_id)
            .filter(CertificateRecord.event_id == event_id)
            .order_by(Participant.id, CertificateRecord.id)
            .all()
        )

    def list_recipients(self, event_id: int) -> list[RecipientRow]:
        return [
            RecipientRow(
                participant_id=participant.id,
                name=participant.name or "",
                email=participant.email or "",
                token=record.certificate_hash,
            )
            for record, participant in self.list_certificates(event_id)
        ]
