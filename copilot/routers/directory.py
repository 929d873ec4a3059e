"""User, patient and template lookup endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from copilot.dependencies import components, require_credentials
from copilot.exceptions import ValidationError
from copilot.schemas.directory import (
    AddPatientRequest,
    AddPatientResponse,
    NewPatient,
    PatientDetailsResponse,
    PatientListResponse,
    PatientResponse,
    TemplateListResponse,
    TemplateResponse,
    UserLookupResponse,
)
from copilot.services.materialize import materialize_patient
from copilot.services.registry import Components

router = APIRouter(prefix="/api", tags=["Directory"], dependencies=[Depends(require_credentials)])


# Path fixed by the mobile client
@router.get("/users/asd3fd2faec", response_model=UserLookupResponse)
def lookup_user(email: str = "", c: Components = Depends(components)) -> UserLookupResponse:
    user_id = c.directory.find_user_id(email)
    if user_id is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserLookupResponse(id=user_id)


@router.get("/v1/patients", response_model=PatientListResponse)
def list_patients(userId: str = "", c: Components = Depends(components)) -> PatientListResponse:
    patients = c.directory.list_patients(userId)
    return PatientListResponse(patients=[PatientResponse.model_validate(p) for p in patients])


@router.post("/v1/add-patient-ext", response_model=AddPatientResponse, status_code=201)
def add_patient(body: AddPatientRequest, c: Components = Depends(components)) -> AddPatientResponse:
    if not body.name or not body.user_id:
        raise ValidationError("name and userId are required")
    patient = c.directory.add_patient(body.name, body.user_id)
    return AddPatientResponse(patient=NewPatient.model_validate(patient))


@router.get("/v1/patient-details/{patient_id}", response_model=PatientDetailsResponse)
def get_patient_details(patient_id: str, c: Components = Depends(components)) -> PatientDetailsResponse:
    patient = c.directory.get_patient(patient_id)
    if patient is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    return materialize_patient(patient)


@router.get("/v1/fetch-default-template-ext", response_model=TemplateListResponse)
def list_templates(userId: str | None = None, c: Components = Depends(components)) -> TemplateListResponse:
    templates = c.directory.list_templates(userId)
    return TemplateListResponse(success=True, data=[TemplateResponse.model_validate(t) for t in templates])
