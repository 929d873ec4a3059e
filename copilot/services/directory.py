"""Session directory: users, patients and note templates.

Stands in for the practice-management system the mobile client talks to.
It enriches read responses and is never consulted to gate ingestion.
"""

import threading
import uuid
from dataclasses import dataclass

from copilot.services.sessions import SessionRepository


@dataclass
class User:
    id: str
    email: str


@dataclass
class Patient:
    id: str
    name: str
    user_id: str
    pronouns: str | None = None


@dataclass
class Template:
    id: str
    title: str
    type: str


DEMO_USERS = [User(id="user_123", email="user@example.com")]
DEMO_PATIENTS = [Patient(id="patient_123", name="John Doe", user_id="user_123", pronouns="he/him")]
DEMO_TEMPLATES = [
    Template(id="template_123", title="New Patient Visit", type="default"),
    Template(id="template_456", title="Follow-up Visit", type="predefined"),
]


class SessionDirectory:
    """In-memory directory seeded with demo records."""

    def __init__(
        self,
        sessions: SessionRepository,
        users: list[User] | None = None,
        patients: list[Patient] | None = None,
        templates: list[Template] | None = None,
    ) -> None:
        self._sessions = sessions
        self._lock = threading.Lock()
        self._users = list(DEMO_USERS if users is None else users)
        self._patients = {p.id: p for p in (DEMO_PATIENTS if patients is None else patients)}
        self._templates = list(DEMO_TEMPLATES if templates is None else templates)

    def resolve_patient(self, session_id: str) -> str | None:
        session = self._sessions.get(session_id)
        return session.patient_id if session else None

    def resolve_owner(self, session_id: str) -> str | None:
        session = self._sessions.get(session_id)
        return session.user_id if session else None

    def find_user_id(self, email: str) -> str | None:
        """User id for an email, falling back to the first known user."""
        email = email.strip().lower()
        with self._lock:
            for user in self._users:
                if user.email.lower() == email:
                    return user.id
            return self._users[0].id if self._users else None

    def list_patients(self, user_id: str) -> list[Patient]:
        with self._lock:
            return [p for p in self._patients.values() if p.user_id == user_id]

    def get_patient(self, patient_id: str) -> Patient | None:
        with self._lock:
            return self._patients.get(patient_id)

    def add_patient(self, name: str, user_id: str) -> Patient:
        patient = Patient(id=f"patient_{uuid.uuid4()}", name=name.strip(), user_id=user_id)
        with self._lock:
            self._patients[patient.id] = patient
        return patient

    def patient_map(self) -> dict[str, Patient]:
        with self._lock:
            return dict(self._patients)

    def list_templates(self, user_id: str | None = None) -> list[Template]:
        # Templates are shared across users
        return list(self._templates)
