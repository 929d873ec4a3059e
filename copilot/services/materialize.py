"""Read-side materialization.

Every optional field of a read record is defaulted here, once per entity
kind, so neither the state machine nor the stores carry presentation
fallbacks.
"""

from copilot.schemas.directory import PatientDetailsResponse
from copilot.schemas.session import PatientSessionResponse, SessionResponse
from copilot.services.chunk_store import StorageRef
from copilot.services.directory import Patient
from copilot.services.sessions import RecordingSession
from copilot.services.upload import Destinations

SESSION_DEFAULTS = {
    "session_title": "Initial Consultation",
    "session_summary": "",
    "transcript": "",
}

PATIENT_DEFAULTS = {
    "name": "Unknown",
    "pronouns": None,
    "email": None,
    "background": "",
    "medical_history": "",
    "family_history": "",
    "social_history": "",
    "previous_treatment": "",
}


def _or_default(value, defaults: dict, key: str):
    return defaults[key] if value is None else value


def _duration(session: RecordingSession) -> str | None:
    if session.start_time is None or session.end_time is None:
        return None
    minutes = max(0, round((session.end_time - session.start_time).total_seconds() / 60))
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


def materialize_session(
    session: RecordingSession,
    *,
    owner_id: str | None = None,
    patient: Patient | None,
    refs: list[StorageRef],
    destinations: Destinations,
    missing: list[int] | None = None,
) -> SessionResponse:
    started = session.start_time or session.created_at
    pronouns = patient.pronouns if patient else PATIENT_DEFAULTS["pronouns"]
    return SessionResponse(
        id=session.id,
        user_id=owner_id or session.user_id,
        patient_id=patient.id if patient else session.patient_id,
        session_title=_or_default(session.session_title, SESSION_DEFAULTS, "session_title"),
        session_summary=_or_default(session.session_summary, SESSION_DEFAULTS, "session_summary"),
        transcript_status=session.transcript_status.value,
        transcript=_or_default(session.transcript, SESSION_DEFAULTS, "transcript"),
        status=session.status.value,
        failure_reason=session.failure_reason,
        date=started.date().isoformat(),
        start_time=session.start_time,
        end_time=session.end_time,
        duration=_duration(session),
        patient_name=patient.name if patient else (session.patient_name or PATIENT_DEFAULTS["name"]),
        pronouns=pronouns,
        patient_pronouns=pronouns,
        template_id=session.template_id,
        audio_url=destinations.audio_url(session.id) if refs else None,
        audio_chunks=[destinations.read_url(session.id, ref.chunk_index) for ref in refs],
        missing_chunks=missing or [],
    )


def materialize_patient_session(
    session: RecordingSession, *, refs: list[StorageRef], destinations: Destinations
) -> PatientSessionResponse:
    started = session.start_time or session.created_at
    return PatientSessionResponse(
        id=session.id,
        date=started.date().isoformat(),
        session_title=_or_default(session.session_title, SESSION_DEFAULTS, "session_title"),
        session_summary=_or_default(session.session_summary, SESSION_DEFAULTS, "session_summary"),
        start_time=session.start_time,
        status=session.status.value,
        transcript_status=session.transcript_status.value,
        audio_url=destinations.audio_url(session.id) if refs else None,
    )


def materialize_patient(patient: Patient) -> PatientDetailsResponse:
    fields = dict(PATIENT_DEFAULTS)
    fields["name"] = patient.name
    fields["pronouns"] = patient.pronouns
    return PatientDetailsResponse(id=patient.id, **fields)
