"""Recording sessions and their repositories."""

import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from copilot.models.recording_session import RecordingSessionRow


class SessionStatus(str, Enum):
    CREATED = "created"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class TranscriptStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def new_session_id() -> str:
    return f"session_{uuid.uuid4()}"


@dataclass
class RecordingSession:
    """A consultation recording. Only the state machine changes ``status`` after creation."""

    user_id: str
    patient_id: str
    id: str = field(default_factory=new_session_id)
    patient_name: str | None = None
    template_id: str | None = None
    session_title: str | None = None
    session_summary: str | None = None
    status: SessionStatus = SessionStatus.CREATED
    transcript_status: TranscriptStatus = TranscriptStatus.PENDING
    transcript: str | None = None
    failure_reason: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    start_time: datetime | None = None
    end_time: datetime | None = None
    finalizing_since: datetime | None = None


class SessionRepository(ABC):
    @abstractmethod
    def add(self, session: RecordingSession) -> RecordingSession: ...

    @abstractmethod
    def get(self, session_id: str) -> RecordingSession | None:
        """Return a detached copy; mutate it and call ``save``."""

    @abstractmethod
    def save(self, session: RecordingSession) -> None: ...

    @abstractmethod
    def list_by_user(self, user_id: str) -> list[RecordingSession]: ...

    @abstractmethod
    def list_by_patient(self, patient_id: str) -> list[RecordingSession]: ...

    @abstractmethod
    def list_by_status(self, status: SessionStatus) -> list[RecordingSession]: ...


class InMemorySessionRepository(SessionRepository):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, RecordingSession] = {}

    def add(self, session: RecordingSession) -> RecordingSession:
        with self._lock:
            self._sessions[session.id] = replace(session)
        return session

    def get(self, session_id: str) -> RecordingSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session else None

    def save(self, session: RecordingSession) -> None:
        with self._lock:
            self._sessions[session.id] = replace(session)

    def _filter(self, predicate: Callable[[RecordingSession], bool]) -> list[RecordingSession]:
        with self._lock:
            matches = [replace(s) for s in self._sessions.values() if predicate(s)]
        return sorted(matches, key=lambda s: s.created_at, reverse=True)

    def list_by_user(self, user_id: str) -> list[RecordingSession]:
        return self._filter(lambda s: s.user_id == user_id)

    def list_by_patient(self, patient_id: str) -> list[RecordingSession]:
        return self._filter(lambda s: s.patient_id == patient_id)

    def list_by_status(self, status: SessionStatus) -> list[RecordingSession]:
        return self._filter(lambda s: s.status == status)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlSessionRepository(SessionRepository):
    COLUMNS = (
        "user_id",
        "patient_id",
        "patient_name",
        "template_id",
        "session_title",
        "session_summary",
        "transcript",
        "failure_reason",
        "created_at",
        "start_time",
        "end_time",
        "finalizing_since",
    )

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def _apply(self, row: RecordingSessionRow, session: RecordingSession) -> None:
        for name in self.COLUMNS:
            setattr(row, name, getattr(session, name))
        row.status = session.status.value
        row.transcript_status = session.transcript_status.value

    def _to_session(self, row: RecordingSessionRow) -> RecordingSession:
        return RecordingSession(
            id=row.id,
            user_id=row.user_id,
            patient_id=row.patient_id,
            patient_name=row.patient_name,
            template_id=row.template_id,
            session_title=row.session_title,
            session_summary=row.session_summary,
            status=SessionStatus(row.status),
            transcript_status=TranscriptStatus(row.transcript_status),
            transcript=row.transcript,
            failure_reason=row.failure_reason,
            created_at=_aware(row.created_at),
            start_time=_aware(row.start_time),
            end_time=_aware(row.end_time),
            finalizing_since=_aware(row.finalizing_since),
        )

    def add(self, session: RecordingSession) -> RecordingSession:
        db = self._session_factory()
        try:
            row = RecordingSessionRow(id=session.id)
            self._apply(row, session)
            db.add(row)
            db.commit()
        finally:
            db.close()
        return session

    def get(self, session_id: str) -> RecordingSession | None:
        db = self._session_factory()
        try:
            row = db.get(RecordingSessionRow, session_id)
            return self._to_session(row) if row else None
        finally:
            db.close()

    def save(self, session: RecordingSession) -> None:
        db = self._session_factory()
        try:
            row = db.get(RecordingSessionRow, session.id)
            if row is None:
                row = RecordingSessionRow(id=session.id)
                db.add(row)
            self._apply(row, session)
            db.commit()
        finally:
            db.close()

    def _list(self, *criteria) -> list[RecordingSession]:
        db = self._session_factory()
        try:
            rows = db.scalars(
                select(RecordingSessionRow).where(*criteria).order_by(RecordingSessionRow.created_at.desc())
            ).all()
            return [self._to_session(row) for row in rows]
        finally:
            db.close()

    def list_by_user(self, user_id: str) -> list[RecordingSession]:
        return self._list(RecordingSessionRow.user_id == user_id)

    def list_by_patient(self, patient_id: str) -> list[RecordingSession]:
        return self._list(RecordingSessionRow.patient_id == patient_id)

    def list_by_status(self, status: SessionStatus) -> list[RecordingSession]:
        return self._list(RecordingSessionRow.status == status.value)
