"""Chunk upload API endpoints: tickets, payloads and arrival notifications."""

from fastapi import APIRouter, Depends, Request

from copilot.config import get_settings
from copilot.dependencies import components, require_credentials
from copilot.exceptions import ValidationError
from copilot.rate_limit import limiter
from copilot.schemas.upload import (
    ChunkNotificationRequest,
    NotifyResponse,
    PresignedUrlRequest,
    PresignedUrlResponse,
    UploadResponse,
)
from copilot.services.ledger import ChunkNotification
from copilot.services.registry import Components

router = APIRouter(prefix="/api/v1", tags=["Uploads"], dependencies=[Depends(require_credentials)])

settings = get_settings()


@router.post("/get-presigned-url", response_model=PresignedUrlResponse)
@router.post("/presigned-url", response_model=PresignedUrlResponse, include_in_schema=False)
@limiter.limit(settings.RATE_LIMIT_TICKETS)
def get_presigned_url(
    request: Request,
    body: PresignedUrlRequest,
    c: Components = Depends(components),
) -> PresignedUrlResponse:
    """Issue a single-use upload destination for one chunk."""
    ticket = c.coordinator.issue_ticket(body.session_id, body.chunk_index, body.mime_type)
    return PresignedUrlResponse(
        write_destination=ticket.write_url,
        read_destination=ticket.read_url,
        url=ticket.write_url,
        public_url=ticket.read_url,
        gcs_path=ticket.key,
        token=ticket.token,
        expires_at=ticket.expires_at,
    )


@router.put("/uploads/{token}", response_model=UploadResponse)
async def upload_chunk(
    token: str,
    request: Request,
    c: Components = Depends(components),
) -> UploadResponse:
    """Stream the raw request body into the chunk store."""
    ref = await c.coordinator.accept(token, request.stream())
    return UploadResponse(
        session_id=ref.session_id,
        chunk_index=ref.chunk_index,
        gcs_path=ref.key,
        size_bytes=ref.size_bytes,
    )


@router.post("/notify-chunk-uploaded", response_model=NotifyResponse)
@limiter.limit(settings.RATE_LIMIT_NOTIFY)
def notify_chunk_uploaded(
    request: Request,
    body: ChunkNotificationRequest,
    c: Components = Depends(components),
) -> NotifyResponse:
    """Record that a chunk landed and advance the session lifecycle."""
    if not body.session_id or not body.gcs_path or body.chunk_index is None:
        raise ValidationError("Invalid chunk notification")

    result = c.coordinator.notify_arrival(
        ChunkNotification(
            session_id=body.session_id,
            chunk_index=body.chunk_index,
            is_last=body.is_last,
            storage_path=body.gcs_path,
            public_url=body.public_url,
            mime_type=body.mime_type,
            total_chunks_client=body.total_chunks_client,
            template_id=body.selected_template_id or body.selected_template,
            model=body.model,
        )
    )
    return NotifyResponse(status=result.session.status.value, duplicate=result.duplicate)
