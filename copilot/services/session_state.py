"""Session lifecycle driven by the chunk ledger.

created -> recording -> finalizing -> completed
                                   \\-> failed

``next_status`` decides transitions from a ledger snapshot alone; the only
clock input is whether the finalize deadline has passed.
"""

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timedelta, timezone

from copilot.services.chunk_store import ChunkStore, StorageRef
from copilot.services.ledger import ChunkLedger, ChunkNotification
from copilot.services.locks import KeyedLock
from copilot.services.sessions import RecordingSession, SessionRepository, SessionStatus, TranscriptStatus
from copilot.services.transcription import TranscriptionEngine

logger = logging.getLogger(__name__)

INCOMPLETE_SESSION_TIMEOUT = "incomplete_session_timeout"

# Longest gap list reported to readers and logs
MISSING_REPORT_LIMIT = 100


def terminal_index(chunks: Iterable[ChunkNotification]) -> int | None:
    """Index of the terminal chunk; the lowest flagged index wins if the client flagged several."""
    flagged = [c.chunk_index for c in chunks if c.is_last]
    return min(flagged) if flagged else None


def _present(chunks: Iterable[ChunkNotification], durable_indices: Iterable[int], last: int) -> list[int]:
    """Indices up to ``last`` that are both notified and durable, ascending."""
    notified = {c.chunk_index for c in chunks}
    return sorted(i for i in notified.intersection(durable_indices) if i <= last)


def is_gap_free(chunks: Iterable[ChunkNotification], durable_indices: Iterable[int], last: int) -> bool:
    return len(_present(chunks, durable_indices, last)) == last + 1


def missing_indices(
    chunks: Iterable[ChunkNotification],
    durable_indices: Iterable[int],
    last: int,
    limit: int = MISSING_REPORT_LIMIT,
) -> list[int]:
    """The first ``limit`` indices in 0..last lacking either a ledger entry or a durable payload.

    Work is bounded by the chunks present and ``limit``, not by ``last``.
    """
    missing: list[int] = []
    expected = 0
    for index in _present(chunks, durable_indices, last) + [last + 1]:
        for gap in range(expected, index):
            if len(missing) >= limit:
                return missing
            missing.append(gap)
        expected = index + 1
    return missing


def next_status(
    current: SessionStatus,
    chunks: Sequence[ChunkNotification],
    durable_indices: Iterable[int],
    *,
    deadline_passed: bool = False,
) -> SessionStatus:
    if current.is_terminal:
        return current
    if not chunks:
        return current

    last = terminal_index(chunks)
    if last is None:
        return SessionStatus.RECORDING
    if is_gap_free(chunks, durable_indices, last):
        return SessionStatus.COMPLETED
    return SessionStatus.FAILED if deadline_passed else SessionStatus.FINALIZING


def audio_refs(chunks: Sequence[ChunkNotification], refs: Sequence[StorageRef]) -> list[StorageRef]:
    """Durable chunks that the ledger knows about, ascending by index, cut at the terminal chunk."""
    last = terminal_index(chunks)
    notified = {c.chunk_index for c in chunks}
    return sorted(
        (r for r in refs if r.chunk_index in notified and (last is None or r.chunk_index <= last)),
        key=lambda r: r.chunk_index,
    )


class SessionStateMachine:
    """Applies ``next_status`` to stored sessions, one session at a time."""

    def __init__(
        self,
        sessions: SessionRepository,
        ledger: ChunkLedger,
        store: ChunkStore,
        engine: TranscriptionEngine,
        *,
        finalize_timeout: timedelta = timedelta(seconds=120),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.sessions = sessions
        self.ledger = ledger
        self.store = store
        self.engine = engine
        self.finalize_timeout = finalize_timeout
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.locks = KeyedLock()
        engine.bind(self)

    def _deadline_passed(self, session: RecordingSession, now: datetime) -> bool:
        if session.finalizing_since is None:
            return False
        return now - session.finalizing_since >= self.finalize_timeout

    def advance(self, session_id: str) -> RecordingSession | None:
        """Re-evaluate a session against the ledger and store. Returns None for unknown sessions."""
        with self.locks.hold(session_id):
            session = self.sessions.get(session_id)
            if session is None:
                logger.warning("Cannot advance unknown session %s", session_id)
                return None
            if session.status.is_terminal:
                return session

            chunks = self.ledger.chunks_for(session_id)
            refs = self.store.locate(session_id)
            now = self.clock()
            status = next_status(
                session.status,
                chunks,
                [r.chunk_index for r in refs],
                deadline_passed=self._deadline_passed(session, now),
            )
            if status == session.status:
                return session

            logger.info("Session %s: %s -> %s", session_id, session.status.value, status.value)
            previous = session.status
            session.status = status
            if previous == SessionStatus.CREATED and session.start_time is None:
                session.start_time = now
            if status == SessionStatus.FINALIZING:
                session.finalizing_since = now
                gaps = missing_indices(chunks, [r.chunk_index for r in refs], terminal_index(chunks))
                logger.info("Session %s waiting for chunks %s", session_id, gaps)
            elif status == SessionStatus.COMPLETED:
                session.end_time = now
                session.transcript_status = TranscriptStatus.PENDING
            elif status == SessionStatus.FAILED:
                session.end_time = now
                session.transcript_status = TranscriptStatus.FAILED
                session.failure_reason = INCOMPLETE_SESSION_TIMEOUT
            self.sessions.save(session)

            if status == SessionStatus.COMPLETED:
                self.engine.submit(session_id, audio_refs(chunks, refs))
            return session

    def sweep(self) -> list[RecordingSession]:
        """Re-advance every finalizing session so expired ones fail. Returns sessions that changed."""
        changed = []
        for session in self.sessions.list_by_status(SessionStatus.FINALIZING):
            updated = self.advance(session.id)
            if updated is not None and updated.status != SessionStatus.FINALIZING:
                changed.append(updated)
        return changed

    def missing_chunks(self, session_id: str) -> list[int]:
        chunks = self.ledger.chunks_for(session_id)
        last = terminal_index(chunks)
        if last is None:
            return []
        return missing_indices(chunks, [r.chunk_index for r in self.store.locate(session_id)], last)

    def playable_refs(self, session_id: str) -> list[StorageRef]:
        return audio_refs(self.ledger.chunks_for(session_id), self.store.locate(session_id))

    def on_transcript_ready(self, session_id: str, text: str) -> None:
        with self.locks.hold(session_id):
            session = self.sessions.get(session_id)
            if session is None:
                logger.warning("Transcript for unknown session %s dropped", session_id)
                return
            session.transcript = text
            session.transcript_status = TranscriptStatus.COMPLETED
            self.sessions.save(session)
        logger.info("Transcript ready for session %s", session_id)

    def on_transcript_failed(self, session_id: str, reason: str) -> None:
        with self.locks.hold(session_id):
            session = self.sessions.get(session_id)
            if session is None:
                logger.warning("Transcript failure for unknown session %s dropped", session_id)
                return
            session.transcript_status = TranscriptStatus.FAILED
            self.sessions.save(session)
        logger.warning("Transcription failed for session %s: %s", session_id, reason)
