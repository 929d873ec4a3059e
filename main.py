"""Medical Copilot backend - chunked consultation recording ingestion."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from copilot.config import get_settings
from copilot.exceptions import CopilotError
from copilot.rate_limit import limiter
from copilot.routers import directory_router, sessions_router, uploads_router
from copilot.services.registry import get_components

# Logging
logger = logging.getLogger("copilot")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

settings = get_settings()


async def sweep_finalizing_sessions(interval: float) -> None:
    """Fail finalizing sessions whose missing chunks never arrived."""
    while True:
        await asyncio.sleep(interval)
        try:
            changed = await run_in_threadpool(get_components().state_machine.sweep)
        except Exception:
            logger.exception("Finalize sweep failed")
            continue
        for session in changed:
            logger.info("Sweep moved session %s to %s", session.id, session.status.value)


@asynccontextmanager
async def lifespan(app: FastAPI):
    components = get_components()
    sweeper = asyncio.create_task(sweep_finalizing_sessions(settings.FINALIZE_SWEEP_INTERVAL_SECONDS))
    logger.info("Medical Copilot backend started (%s)", settings.APP_ENV)
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        components.engine.shutdown()


app = FastAPI(title="Medical Copilot Backend", version="1.0.0", lifespan=lifespan)
app.state.limiter = limiter


# --- Security headers middleware ---
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        return response


# --- Request size limit middleware ---
class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    # Slightly above the largest accepted chunk
    MAX_BODY_SIZE = settings.max_chunk_bytes + 1024 * 1024

    async def dispatch(self, request: Request, call_next) -> Response:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.MAX_BODY_SIZE:
            return JSONResponse(status_code=413, content={"detail": "Request body too large"})
        return await call_next(request)


# --- Audit logging middleware ---
class AuditLogMiddleware(BaseHTTPMiddleware):
    AUDIT_PATHS = (
        "/api/v1/get-presigned-url",
        "/api/v1/presigned-url",
        "/api/v1/uploads/",
        "/api/v1/notify-chunk-uploaded",
        "/api/v1/upload-session",
        "/api/v1/add-patient-ext",
    )

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start) * 1000

        path = request.url.path
        method = request.method
        if method in ("POST", "PUT") and path.startswith(self.AUDIT_PATHS):
            logger.info(
                "AUDIT %s %s -> %d (%.0fms) from %s",
                method,
                path,
                response.status_code,
                duration_ms,
                request.client.host if request.client else "unknown",
            )

        return response


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestSizeLimitMiddleware)
app.add_middleware(AuditLogMiddleware)

# API routers
app.include_router(directory_router)
app.include_router(sessions_router)
app.include_router(uploads_router)


# --- Rate limit error handler ---
@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Handle rate limit exceeded."""
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded. Try again later."})


# --- Domain errors ---
@app.exception_handler(CopilotError)
async def copilot_error_handler(request: Request, exc: CopilotError) -> Response:
    """Render domain errors with their status and whether a retry can succeed."""
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "retryable": exc.retryable})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> Response:
    """Malformed bodies are client errors like any other validation failure."""
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": "Bad Request", "errors": errors, "retryable": False})


# --- Health check ---
@app.get("/health")
def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/")
def root() -> dict:
    return {
        "status": "running",
        "message": "Medical Copilot Backend API",
        "version": "1.0.0",
        "endpoints": {"base": "/api", "health": "/health"},
    }
