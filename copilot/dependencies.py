"""Credential and component dependencies for FastAPI routes."""

from dataclasses import dataclass

from fastapi import HTTPException, Request

from copilot.config import get_settings
from copilot.services.jwt import get_jwt_service
from copilot.services.registry import Components, get_components


@dataclass
class Credentials:
    """Bearer credentials accepted by the validator."""

    token: str
    subject: str | None = None


def validate_token(token: str) -> Credentials | None:
    """Credential validator. ``mock`` accepts any token; ``jwt`` requires a valid signature."""
    if get_settings().AUTH_MODE != "jwt":
        return Credentials(token=token)

    payload = get_jwt_service().decode_token(token)
    if not payload:
        return None
    return Credentials(token=token, subject=payload.get("sub"))


def require_credentials(request: Request) -> Credentials:
    """Extract and validate the Bearer token. Raises 401 if missing or invalid."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")

    token = auth_header[7:].strip()
    credentials = validate_token(token) if token else None
    if credentials is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return credentials


def components() -> Components:
    return get_components()
