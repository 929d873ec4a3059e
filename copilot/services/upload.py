"""Upload coordinator: tickets, payload acceptance and arrival notifications."""

import asyncio
import logging
import secrets
import threading
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from copilot.exceptions import (
    CopilotError,
    SessionNotFoundError,
    TicketAlreadyUsedError,
    TicketError,
    TransientStorageError,
    ValidationError,
)
from copilot.services.chunk_store import ChunkStore, StorageRef, check_address, chunk_key
from copilot.services.ledger import ChunkLedger, ChunkNotification
from copilot.services.session_state import SessionStateMachine
from copilot.services.sessions import RecordingSession, SessionRepository, SessionStatus

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    "audio/mpeg",
    "audio/mp4",
    "audio/x-m4a",
    "audio/aac",
    "audio/wav",
    "audio/x-wav",
    "audio/webm",
    "audio/ogg",
    "audio/flac",
    "audio/x-flac",
    "audio/3gpp",
    "video/mp4",  # iOS recorders tag AAC-in-MP4 as video
}


def normalize_mime_type(mime_type: str | None) -> str:
    """Base MIME type without parameters. Raises ValidationError when empty or not audio."""
    base = (mime_type or "").split(";", 1)[0].strip().lower()
    if not base:
        raise ValidationError("mimeType is required")
    if base not in ALLOWED_MIME_TYPES and not base.startswith("audio/"):
        raise ValidationError(f"Unsupported mimeType '{mime_type}'. Must be an audio type.")
    return base


def check_chunk_index(chunk_index, maximum: int | None = None) -> int:
    if isinstance(chunk_index, bool) or not isinstance(chunk_index, int):
        raise ValidationError("chunkIndex must be an integer")
    if chunk_index < 0:
        raise ValidationError("chunkIndex must not be negative")
    if maximum is not None and chunk_index > maximum:
        raise ValidationError(f"chunkIndex must not exceed {maximum}")
    return chunk_index


class TicketState(str, Enum):
    ISSUED = "issued"
    WRITING = "writing"
    USED = "used"


@dataclass
class UploadTicket:
    token: str
    session_id: str
    chunk_index: int
    mime_type: str
    key: str
    write_url: str
    read_url: str
    expires_at: datetime
    state: TicketState = TicketState.ISSUED


@dataclass
class NotifyResult:
    session: RecordingSession
    duplicate: bool


class Destinations:
    """URL scheme for write and read destinations. Kept apart so either side can move to a CDN."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    def write_url(self, token: str) -> str:
        return f"{self.base_url}/api/v1/uploads/{token}"

    def read_url(self, session_id: str, chunk_index: int) -> str:
        return f"{self.base_url}/api/v1/sessions/{session_id}/chunks/{chunk_index}"

    def audio_url(self, session_id: str) -> str:
        return f"{self.base_url}/api/v1/sessions/{session_id}/audio"


class UploadCoordinator:
    def __init__(
        self,
        sessions: SessionRepository,
        store: ChunkStore,
        ledger: ChunkLedger,
        state_machine: SessionStateMachine,
        destinations: Destinations,
        *,
        ticket_ttl: timedelta = timedelta(minutes=15),
        max_chunk_index: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.sessions = sessions
        self.store = store
        self.ledger = ledger
        self.state_machine = state_machine
        self.destinations = destinations
        self.ticket_ttl = ticket_ttl
        self.max_chunk_index = max_chunk_index
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._tickets: dict[str, UploadTicket] = {}

    def _require_session(self, session_id: str | None) -> RecordingSession:
        if not session_id:
            raise ValidationError("sessionId is required")
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def issue_ticket(self, session_id: str | None, chunk_index, mime_type: str | None) -> UploadTicket:
        """Mint a single-use write destination for one chunk."""
        chunk_index = check_chunk_index(chunk_index, self.max_chunk_index)
        mime_type = normalize_mime_type(mime_type)
        if not session_id:
            raise ValidationError("sessionId is required")
        check_address(session_id, chunk_index)
        self._require_session(session_id)

        now = self.clock()
        token = secrets.token_urlsafe(24)
        ticket = UploadTicket(
            token=token,
            session_id=session_id,
            chunk_index=chunk_index,
            mime_type=mime_type,
            key=chunk_key(session_id, chunk_index, mime_type),
            write_url=self.destinations.write_url(token),
            read_url=self.destinations.read_url(session_id, chunk_index),
            expires_at=now + self.ticket_ttl,
        )
        with self._lock:
            expired = [t for t, tk in self._tickets.items() if tk.expires_at <= now]
            for t in expired:
                del self._tickets[t]
            self._tickets[token] = ticket
        logger.info("Issued ticket for chunk %d of %s", chunk_index, session_id)
        return ticket

    def _claim(self, token: str) -> UploadTicket:
        with self._lock:
            ticket = self._tickets.get(token)
            if ticket is None or ticket.expires_at <= self.clock():
                raise TicketError("Upload ticket is invalid or expired")
            if ticket.state != TicketState.ISSUED:
                raise TicketAlreadyUsedError("Upload ticket has already been used")
            ticket.state = TicketState.WRITING
            return ticket

    def _release(self, ticket: UploadTicket, state: TicketState) -> None:
        with self._lock:
            ticket.state = state

    async def accept(self, token: str, stream: AsyncIterator[bytes]) -> StorageRef:
        """Store the payload for a ticket. Interrupted streams leave nothing behind and are retryable."""
        ticket = self._claim(token)
        try:
            ref = await self.store.put(ticket.session_id, ticket.chunk_index, stream, mime_type=ticket.mime_type)
        except CopilotError:
            self._release(ticket, TicketState.ISSUED)
            raise
        except Exception as e:
            self._release(ticket, TicketState.ISSUED)
            logger.warning("Upload of chunk %d of %s aborted: %r", ticket.chunk_index, ticket.session_id, e)
            raise TransientStorageError(f"Upload of chunk {ticket.chunk_index} was interrupted") from e
        except BaseException:
            # Cancellation: the ticket stays usable for a retry
            self._release(ticket, TicketState.ISSUED)
            raise

        self._release(ticket, TicketState.USED)

        await asyncio.to_thread(self._advance_if_finalizing, ticket.session_id)
        return ref

    def _advance_if_finalizing(self, session_id: str) -> None:
        # A late payload may close the last gap of a finalizing session
        session = self.sessions.get(session_id)
        if session is not None and session.status == SessionStatus.FINALIZING:
            self.state_machine.advance(session_id)

    def notify_arrival(self, notification: ChunkNotification) -> NotifyResult:
        """Record an arrival and advance the session. Repeats are accepted as no-ops."""
        check_chunk_index(notification.chunk_index, self.max_chunk_index)
        self._require_session(notification.session_id)
        check_address(notification.session_id, notification.chunk_index)

        is_new = self.ledger.record(notification)
        if is_new and not self.store.exists(notification.session_id, notification.chunk_index):
            logger.info(
                "Chunk %d of %s notified before its payload landed", notification.chunk_index, notification.session_id
            )
        session = self.state_machine.advance(notification.session_id)
        if session is None:
            raise SessionNotFoundError(notification.session_id)
        if is_new:
            logger.info(
                "Chunk %d of %s notified (last=%s) -> %s",
                notification.chunk_index,
                notification.session_id,
                notification.is_last,
                session.status.value,
            )
        return NotifyResult(session=session, duplicate=not is_new)
