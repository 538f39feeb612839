from __future__ import annotations

from sqlalchemy.orm import validates

from ..app import db

EVENT_STATUSES = ("draft", "active", "completed")
CERTIFICATE_STATUSES = ("generated", "verified")


class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    event_date = db.Column(db.Date, nullable=False)
    status = db.Column(
        db.String(16), nullable=False, default="draft", server_default="draft"
    )
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    participants = db.relationship(
        "Participant",
        back_populates="event",
        order_by="Participant.id",
        cascade="all, delete-orphan",
    )

    @validates("status")
    def _check_status(self, key, value):
        if value not in EVENT_STATUSES:
            raise ValueError(f"Unsupported event status: {value!r}")
        return value


class Participant(db.Model):
    __tablename__ = "participants"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(
        db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    name = db.Column(db.String(255), nullable=False, default="")
    email = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    event = db.relationship("Event", back_populates="participants")
    __table_args__ = (db.Index("ix_participants_event_id", "event_id"),)

    @validates("email")
    def lower_email(self, key, value):  # pragma: no cover - simple normalizer
        return (value or "").strip().lower()


class CertificateRecord(db.Model):
    __tablename__ = "certificates"

    id = db.Column(db.Integer, primary_key=True)
    participant_id = db.Column(
        db.Integer,
        db.ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_id = db.Column(
        db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    certificate_hash = db.Column(db.String(64), nullable=False)
    qr_code_data = db.Column(db.Text)
    status = db.Column(
        db.String(16), nullable=False, default="generated", server_default="generated"
    )
    verified_count = db.Column(
        db.Integer, nullable=False, default=0, server_default=db.text("0")
    )
    last_verified_at = db.Column(db.DateTime(timezone=True))
    generated_at = db.Column(db.DateTime(timezone=True), nullable=False)
    participant = db.relationship("Participant")
    event = db.relationship("Event")
    __table_args__ = (
        db.UniqueConstraint("certificate_hash", name="uix_certificates_hash"),
        db.Index("ix_certificates_event_id", "event_id"),
    )

    @property
    def short_id(self) -> str:
        return (self.certificate_hash or "")[:8].upper()
