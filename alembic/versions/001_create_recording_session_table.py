"""Create recording_session table

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "recording_session",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("patient_id", sa.String(length=128), nullable=False),
        sa.Column("patient_name", sa.String(length=256), nullable=True),
        sa.Column("template_id", sa.String(length=128), nullable=True),
        sa.Column("session_title", sa.String(length=256), nullable=True),
        sa.Column("session_summary", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="created"),
        sa.Column("transcript_status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("transcript", sa.Text(), nullable=True),
        sa.Column("failure_reason", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finalizing_since", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_recording_session_user_id"), "recording_session", ["user_id"])
    op.create_index(op.f("ix_recording_session_patient_id"), "recording_session", ["patient_id"])
    op.create_index(op.f("ix_recording_session_status"), "recording_session", ["status"])


def downgrade() -> None:
    op.drop_index(op.f("ix_recording_session_status"), table_name="recording_session")
    op.drop_index(op.f("ix_recording_session_patient_id"), table_name="recording_session")
    op.drop_index(op.f("ix_recording_session_user_id"), table_name="recording_session")
    op.drop_table("recording_session")
