"""Pydantic schemas for chunk upload endpoints."""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PresignedUrlRequest(CamelModel):
    session_id: str | None = None
    chunk_index: int | None = Field(
        default=None, validation_alias=AliasChoices("chunkIndex", "chunkNumber", "chunk_index")
    )
    mime_type: str | None = None


class PresignedUrlResponse(CamelModel):
    write_destination: str
    read_destination: str
    url: str
    public_url: str
    gcs_path: str
    token: str
    expires_at: datetime


class UploadResponse(CamelModel):
    session_id: str
    chunk_index: int
    gcs_path: str
    size_bytes: int


class ChunkNotificationRequest(CamelModel):
    session_id: str | None = None
    gcs_path: str | None = None
    chunk_index: int | None = Field(
        default=None, validation_alias=AliasChoices("chunkIndex", "chunkNumber", "chunk_index")
    )
    is_last: bool = False
    total_chunks_client: int | None = None
    public_url: str | None = None
    mime_type: str | None = None
    selected_template: str | None = None
    selected_template_id: str | None = None
    model: str | None = None


class NotifyResponse(CamelModel):
    status: str
    duplicate: bool
