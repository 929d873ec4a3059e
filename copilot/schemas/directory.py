"""Pydantic schemas for the users, patients and templates lookups."""

from pydantic import BaseModel

from copilot.schemas.upload import CamelModel


class UserLookupResponse(BaseModel):
    id: str


class PatientResponse(BaseModel):
    id: str
    name: str
    pronouns: str | None = None

    model_config = {"from_attributes": True}


class PatientListResponse(BaseModel):
    patients: list[PatientResponse]


class AddPatientRequest(CamelModel):
    name: str | None = None
    user_id: str | None = None


class NewPatient(BaseModel):
    id: str
    name: str
    user_id: str
    pronouns: str | None = None

    model_config = {"from_attributes": True}


class AddPatientResponse(BaseModel):
    patient: NewPatient


class PatientDetailsResponse(BaseModel):
    id: str
    name: str
    pronouns: str | None = None
    email: str | None = None
    background: str
    medical_history: str
    family_history: str
    social_history: str
    previous_treatment: str


class TemplateResponse(BaseModel):
    id: str
    title: str
    type: str

    model_config = {"from_attributes": True}


class TemplateListResponse(BaseModel):
    success: bool
    data: list[TemplateResponse]
