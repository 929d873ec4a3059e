"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from copilot.config import Settings
from copilot.database import Base
from copilot.models.chunk_notification import ChunkNotificationRow  # noqa: F401
from copilot.models.recording_session import RecordingSessionRow  # noqa: F401
from copilot.services.registry import build_components, set_components
from copilot.services.sessions import RecordingSession

AUTH_HEADERS = {"Authorization": "Bearer test-token"}


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


async def stream_of(*blocks: bytes):
    """Async byte stream like Starlette's request.stream()."""
    for block in blocks:
        yield block


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="settings")
def settings_fixture(tmp_path) -> Settings:
    settings = Settings()
    settings.STORAGE_BACKEND = "local"
    settings.STORAGE_DIR = str(tmp_path / "uploads")
    settings.STATE_BACKEND = "memory"
    settings.TRANSCRIPTION_ENGINE = "external"
    settings.AUTH_MODE = "mock"
    settings.PUBLIC_BASE_URL = "http://testserver"
    settings.FINALIZE_TIMEOUT_SECONDS = 60
    settings.MAX_CHUNK_SIZE_MB = 1
    return settings


@pytest.fixture(name="components")
def components_fixture(settings: Settings, clock: FakeClock):
    components = build_components(settings, clock=clock)
    set_components(components)
    yield components
    set_components(None)


@pytest.fixture(name="db_session_factory")
def db_session_factory_fixture():
    """In-memory SQLite database for the SQL backends."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(name="client")
def client_fixture(components):
    """Create a test client wired to fresh components with rate limiting disabled."""
    from copilot.rate_limit import limiter
    from main import app

    limiter.enabled = False
    with TestClient(app) as c:
        yield c
    limiter.enabled = True


@pytest.fixture(name="recording")
def recording_fixture(components) -> RecordingSession:
    """A freshly opened session for the demo patient."""
    return components.sessions.add(RecordingSession(user_id="user_123", patient_id="patient_123"))
