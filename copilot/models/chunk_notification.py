"""Chunk arrival ledger model."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint

from copilot.database import Base


class ChunkNotificationRow(Base):
    """One arrival notification per (session, chunk index). Rows are never updated."""

    __tablename__ = "chunk_notification"
    __table_args__ = (UniqueConstraint("session_id", "chunk_index", name="uq_chunk_notification_session_index"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)
    is_last = Column(Boolean, nullable=False, default=False)
    storage_path = Column(String(512), nullable=True)
    public_url = Column(String(1024), nullable=True)
    mime_type = Column(String(128), nullable=True)
    total_chunks_client = Column(Integer, nullable=True)
    template_id = Column(String(128), nullable=True)
    model = Column(String(128), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
