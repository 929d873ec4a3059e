"""Recording session API endpoints."""

import mimetypes
from itertools import chain

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from copilot.dependencies import components, require_credentials
from copilot.exceptions import ChunkNotFoundError, SessionNotFoundError, ValidationError
from copilot.schemas.session import (
    CreateSessionRequest,
    CreateSessionResponse,
    PatientSessionListResponse,
    PatientSummary,
    SessionListResponse,
    SessionResponse,
    TranscriptCallbackRequest,
)
from copilot.services.materialize import materialize_patient_session, materialize_session
from copilot.services.registry import Components
from copilot.services.sessions import RecordingSession, SessionStatus

router = APIRouter(prefix="/api/v1", tags=["Sessions"], dependencies=[Depends(require_credentials)])


def _current(c: Components, session: RecordingSession) -> RecordingSession:
    """Apply an expired finalize deadline before reporting a session."""
    if session.status == SessionStatus.FINALIZING:
        return c.state_machine.advance(session.id) or session
    return session


def _session_response(c: Components, session: RecordingSession) -> SessionResponse:
    session = _current(c, session)
    patient_id = c.directory.resolve_patient(session.id) or session.patient_id
    return materialize_session(
        session,
        owner_id=c.directory.resolve_owner(session.id),
        patient=c.directory.get_patient(patient_id),
        refs=c.state_machine.playable_refs(session.id),
        destinations=c.destinations,
        missing=c.state_machine.missing_chunks(session.id),
    )


@router.post("/upload-session", response_model=CreateSessionResponse, status_code=201)
def create_session(body: CreateSessionRequest, c: Components = Depends(components)) -> CreateSessionResponse:
    """Open a recording session for a patient."""
    if not all([body.patient_id, body.user_id, body.patient_name, body.status, body.start_time, body.template_id]):
        raise ValidationError("Missing required fields")

    session = c.sessions.add(
        RecordingSession(
            user_id=body.user_id,
            patient_id=body.patient_id,
            patient_name=body.patient_name,
            template_id=body.template_id,
            start_time=body.start_time,
        )
    )
    return CreateSessionResponse(id=session.id)


@router.get("/all-session", response_model=SessionListResponse)
def list_sessions(userId: str = "", c: Components = Depends(components)) -> SessionListResponse:
    """List a user's sessions with patient details and audio references."""
    sessions = c.sessions.list_by_user(userId)
    patient_map = {
        pid: PatientSummary(name=p.name, pronouns=p.pronouns) for pid, p in c.directory.patient_map().items()
    }
    return SessionListResponse(
        sessions=[_session_response(c, s) for s in sessions],
        patientMap=patient_map,
    )


@router.get("/fetch-session-by-patient/{patient_id}", response_model=PatientSessionListResponse)
def list_patient_sessions(patient_id: str, c: Components = Depends(components)) -> PatientSessionListResponse:
    """List a patient's sessions."""
    items = []
    for session in c.sessions.list_by_patient(patient_id):
        session = _current(c, session)
        items.append(
            materialize_patient_session(
                session, refs=c.state_machine.playable_refs(session.id), destinations=c.destinations
            )
        )
    return PatientSessionListResponse(sessions=items)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(session_id: str, c: Components = Depends(components)) -> SessionResponse:
    """Get a session, including chunks still missing from a finalizing or failed recording."""
    session = c.sessions.get(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    return _session_response(c, session)


@router.get("/sessions/{session_id}/chunks/{chunk_index}")
def get_chunk(session_id: str, chunk_index: int, c: Components = Depends(components)) -> StreamingResponse:
    """Stream one stored chunk (the read destination of an upload ticket)."""
    ref = next((r for r in c.store.locate(session_id) if r.chunk_index == chunk_index), None)
    if ref is None:
        raise ChunkNotFoundError(session_id, chunk_index)
    media_type = mimetypes.guess_type(ref.key)[0] or "application/octet-stream"
    return StreamingResponse(c.store.get(session_id, chunk_index), media_type=media_type)


@router.get("/sessions/{session_id}/audio")
def get_session_audio(session_id: str, c: Components = Depends(components)) -> StreamingResponse:
    """Stream the best reconstructible recording: stored chunks in ascending index order."""
    if c.sessions.get(session_id) is None:
        raise SessionNotFoundError(session_id)
    refs = c.state_machine.playable_refs(session_id)
    if not refs:
        raise HTTPException(status_code=404, detail="No audio uploaded yet")

    media_type = mimetypes.guess_type(refs[0].key)[0] or "application/octet-stream"
    return StreamingResponse(
        chain.from_iterable(c.store.get(session_id, ref.chunk_index) for ref in refs),
        media_type=media_type,
    )


@router.post("/sessions/{session_id}/transcript")
def transcript_callback(
    session_id: str,
    body: TranscriptCallbackRequest,
    c: Components = Depends(components),
) -> dict:
    """Receive the transcription engine's result."""
    session = c.sessions.get(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    if session.status != SessionStatus.COMPLETED:
        raise HTTPException(status_code=409, detail=f"Session is '{session.status.value}', not completed")

    if body.status == "completed":
        c.state_machine.on_transcript_ready(session_id, body.text or "")
    else:
        c.state_machine.on_transcript_failed(session_id, body.reason or "unspecified")
    return {"detail": "Transcript recorded"}
