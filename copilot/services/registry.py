"""Wiring of the ingestion components, selected by configuration."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from copilot.config import Settings, get_settings
from copilot.services.chunk_store import ChunkStore, InMemoryChunkStore, LocalChunkStore
from copilot.services.directory import SessionDirectory
from copilot.services.ledger import ChunkLedger, InMemoryChunkLedger, SqlChunkLedger
from copilot.services.session_state import SessionStateMachine
from copilot.services.sessions import InMemorySessionRepository, SessionRepository, SqlSessionRepository
from copilot.services.transcription import (
    ExternalTranscriptionEngine,
    TranscriptionEngine,
    WhisperTranscriptionEngine,
)
from copilot.services.upload import Destinations, UploadCoordinator

logger = logging.getLogger(__name__)


@dataclass
class Components:
    settings: Settings
    store: ChunkStore
    ledger: ChunkLedger
    sessions: SessionRepository
    directory: SessionDirectory
    engine: TranscriptionEngine
    state_machine: SessionStateMachine
    coordinator: UploadCoordinator
    destinations: Destinations


def build_components(
    settings: Settings,
    *,
    session_factory=None,
    clock: Callable[[], datetime] | None = None,
) -> Components:
    """Build every component for the configured backends.

    ``session_factory`` overrides the SQLAlchemy session maker used by the
    ``sql`` state backend.
    """
    for warning in settings.validate():
        logger.warning(warning)

    if settings.STORAGE_BACKEND == "memory":
        store: ChunkStore = InMemoryChunkStore(settings.max_chunk_bytes)
    else:
        store = LocalChunkStore(settings.STORAGE_DIR, settings.max_chunk_bytes)

    if settings.STATE_BACKEND == "sql":
        if session_factory is None:
            from copilot.database import SessionLocal

            session_factory = SessionLocal
        ledger: ChunkLedger = SqlChunkLedger(session_factory)
        sessions: SessionRepository = SqlSessionRepository(session_factory)
    else:
        ledger = InMemoryChunkLedger()
        sessions = InMemorySessionRepository()

    if settings.TRANSCRIPTION_ENGINE == "whisper" and isinstance(store, LocalChunkStore):
        engine: TranscriptionEngine = WhisperTranscriptionEngine(settings.WHISPER_MODEL_SIZE)
    else:
        engine = ExternalTranscriptionEngine()

    destinations = Destinations(settings.PUBLIC_BASE_URL)
    state_machine = SessionStateMachine(
        sessions,
        ledger,
        store,
        engine,
        finalize_timeout=timedelta(seconds=settings.FINALIZE_TIMEOUT_SECONDS),
        clock=clock,
    )
    coordinator = UploadCoordinator(
        sessions,
        store,
        ledger,
        state_machine,
        destinations,
        ticket_ttl=timedelta(seconds=settings.TICKET_TTL_SECONDS),
        max_chunk_index=settings.MAX_CHUNK_INDEX,
        clock=clock,
    )
    logger.info(
        "Components ready: storage=%s state=%s engine=%s",
        type(store).__name__,
        type(ledger).__name__,
        type(engine).__name__,
    )
    return Components(
        settings=settings,
        store=store,
        ledger=ledger,
        sessions=sessions,
        directory=SessionDirectory(sessions),
        engine=engine,
        state_machine=state_machine,
        coordinator=coordinator,
        destinations=destinations,
    )


_components: Components | None = None


def get_components() -> Components:
    """Get singleton components instance."""
    global _components
    if _components is None:
        _components = build_components(get_settings())
    return _components


def set_components(components: Components | None) -> None:
    """Replace the process-wide components (tests, embedding)."""
    global _components
    _components = components
