"""Recording session model."""

from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text

from copilot.database import Base


class RecordingSessionRow(Base):
    """A consultation recording and its lifecycle state."""

    __tablename__ = "recording_session"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(128), nullable=False, index=True)
    patient_id = Column(String(128), nullable=False, index=True)
    patient_name = Column(String(256), nullable=True)
    template_id = Column(String(128), nullable=True)
    session_title = Column(String(256), nullable=True)
    session_summary = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default="created", index=True)  # created, recording, finalizing, completed, failed
    transcript_status = Column(String(32), nullable=False, default="pending")  # pending, completed, failed
    transcript = Column(Text, nullable=True)
    failure_reason = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    finalizing_since = Column(DateTime(timezone=True), nullable=True)
