"""Configuration settings for the Medical Copilot backend."""

import os
import secrets
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Database (only used when STATE_BACKEND=sql)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./copilot.db")

    # Backends: ledger + sessions ("memory" or "sql"), chunk payloads ("local" or "memory")
    STATE_BACKEND: str = os.getenv("STATE_BACKEND", "memory")
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "local")
    STORAGE_DIR: str = os.getenv("STORAGE_DIR", "uploads")

    # Upload destinations
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")
    TICKET_TTL_SECONDS: int = int(os.getenv("TICKET_TTL_SECONDS", "900"))
    MAX_CHUNK_SIZE_MB: int = int(os.getenv("MAX_CHUNK_SIZE_MB", "50"))
    MAX_CHUNK_INDEX: int = int(os.getenv("MAX_CHUNK_INDEX", "100000"))

    # Finalize policy for sessions whose terminal chunk arrived with gaps
    FINALIZE_TIMEOUT_SECONDS: int = int(os.getenv("FINALIZE_TIMEOUT_SECONDS", "120"))
    FINALIZE_SWEEP_INTERVAL_SECONDS: int = int(os.getenv("FINALIZE_SWEEP_INTERVAL_SECONDS", "15"))

    # Transcription engine ("external" waits for a callback, "whisper" runs faster-whisper locally)
    TRANSCRIPTION_ENGINE: str = os.getenv("TRANSCRIPTION_ENGINE", "external")
    WHISPER_MODEL_SIZE: str = os.getenv("WHISPER_MODEL_SIZE", "base")

    # Credential validation ("mock" accepts any bearer token, "jwt" verifies it)
    AUTH_MODE: str = os.getenv("AUTH_MODE", "mock")
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", secrets.token_urlsafe(32))
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

    # Rate limits
    RATE_LIMIT_TICKETS: str = os.getenv("RATE_LIMIT_TICKETS", "600/minute")
    RATE_LIMIT_NOTIFY: str = os.getenv("RATE_LIMIT_NOTIFY", "600/minute")

    # Application
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    @property
    def max_chunk_bytes(self) -> int:
        return self.MAX_CHUNK_SIZE_MB * 1024 * 1024

    def validate(self) -> list[str]:
        """Validate settings and return list of warnings."""
        errors = []
        if self.STATE_BACKEND not in ("memory", "sql"):
            errors.append(f"Unknown STATE_BACKEND '{self.STATE_BACKEND}' - falling back to memory")
        if self.STORAGE_BACKEND not in ("local", "memory"):
            errors.append(f"Unknown STORAGE_BACKEND '{self.STORAGE_BACKEND}' - falling back to local")
        if self.TRANSCRIPTION_ENGINE == "whisper" and self.STORAGE_BACKEND == "memory":
            errors.append("TRANSCRIPTION_ENGINE=whisper needs STORAGE_BACKEND=local - using external engine")
        if self.AUTH_MODE == "jwt" and not os.getenv("JWT_SECRET_KEY"):
            errors.append("JWT_SECRET_KEY is not set - using auto-generated key (not persistent across restarts)")
        if not 0 <= self.MAX_CHUNK_INDEX < 2**31:
            errors.append("MAX_CHUNK_INDEX must fit a 32-bit integer column")
        if self.FINALIZE_TIMEOUT_SECONDS <= 0:
            errors.append("FINALIZE_TIMEOUT_SECONDS must be positive - sessions with gaps fail on the next sweep")
        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
