"""Create chunk_notification table

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "chunk_notification",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("session_id", sa.String(length=64), nullable=False),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("is_last", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("storage_path", sa.String(length=512), nullable=True),
        sa.Column("public_url", sa.String(length=1024), nullable=True),
        sa.Column("mime_type", sa.String(length=128), nullable=True),
        sa.Column("total_chunks_client", sa.Integer(), nullable=True),
        sa.Column("template_id", sa.String(length=128), nullable=True),
        sa.Column("model", sa.String(length=128), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", "chunk_index", name="uq_chunk_notification_session_index"),
    )
    op.create_index(op.f("ix_chunk_notification_session_id"), "chunk_notification", ["session_id"])


def downgrade() -> None:
    op.drop_index(op.f("ix_chunk_notification_session_id"), table_name="chunk_notification")
    op.drop_table("chunk_notification")
