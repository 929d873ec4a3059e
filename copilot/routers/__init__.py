"""API routers."""

from copilot.routers.directory import router as directory_router
from copilot.routers.sessions import router as sessions_router
from copilot.routers.uploads import router as uploads_router

__all__ = ["directory_router", "sessions_router", "uploads_router"]
