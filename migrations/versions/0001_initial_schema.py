"""events, participants and certificates"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("events"):
        op.create_table(
            "events",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("event_date", sa.Date, nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
            sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        )

    if not inspector.has_table("participants"):
        op.create_table(
            "participants",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column(
                "event_id",
                sa.Integer,
                sa.ForeignKey("events.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("name", sa.String(255), nullable=False, server_default=""),
            sa.Column("email", sa.String(255), nullable=False),
            sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        )
        op.create_index("ix_participants_event_id", "participants", ["event_id"])

    if not inspector.has_table("certificates"):
        op.create_table(
            "certificates",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column(
                "participant_id",
                sa.Integer,
                sa.ForeignKey("participants.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "event_id",
                sa.Integer,
                sa.ForeignKey("events.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("certificate_hash", sa.String(64), nullable=False),
            sa.Column("qr_code_data", sa.Text),
            sa.Column("status", sa.String(16), nullable=False, server_default="generated"),
            sa.Column("verified_count", sa.Integer, nullable=False, server_default=sa.text("0")),
            sa.Column("last_verified_at", sa.DateTime(timezone=True)),
            sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("certificate_hash", name="uix_certificates_hash"),
        )
        op.create_index("ix_certificates_event_id", "certificates", ["event_id"])


def downgrade() -> None:
    op.drop_index("ix_certificates_event_id", table_name="certificates")
    op.drop_table("certificates")
    op.drop_index("ix_participants_event_id", table_name="participants")
    op.drop_table("participants")
    op.drop_table("events")
