"""Pydantic schemas for recording session endpoints."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from copilot.schemas.upload import CamelModel


class CreateSessionRequest(CamelModel):
    patient_id: str | None = None
    user_id: str | None = None
    patient_name: str | None = None
    status: str | None = None
    start_time: datetime | None = None
    template_id: str | None = None


class CreateSessionResponse(BaseModel):
    id: str


class SessionResponse(BaseModel):
    id: str
    user_id: str
    patient_id: str
    session_title: str
    session_summary: str
    transcript_status: str
    transcript: str
    status: str
    failure_reason: str | None = None
    date: str
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: str | None = None
    patient_name: str
    pronouns: str | None = None
    patient_pronouns: str | None = None
    template_id: str | None = None
    clinical_notes: list[dict] = []
    audio_url: str | None = None
    audio_chunks: list[str] = []
    missing_chunks: list[int] = []


class PatientSummary(BaseModel):
    name: str
    pronouns: str | None = None


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]
    patientMap: dict[str, PatientSummary]


class PatientSessionResponse(BaseModel):
    id: str
    date: str
    session_title: str
    session_summary: str
    start_time: datetime | None = None
    status: str
    transcript_status: str
    audio_url: str | None = None


class PatientSessionListResponse(BaseModel):
    sessions: list[PatientSessionResponse]


class TranscriptCallbackRequest(BaseModel):
    status: Literal["completed", "failed"] = "completed"
    text: str | None = None
    reason: str | None = None
