from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlmodel import Session

from database import get_session
from errors import NotFoundError, ValidationError
from models import AdmissionType, AssignmentStatus, PatientCondition
from services import assignments
from tenancy import TenantNamespace, get_actor_id, get_tenant

router = APIRouter(prefix="/assignments", tags=["assignments"])


class AdmissionCreate(BaseModel):
    bed_id: int
    patient_id: int
    admission_date: Optional[datetime] = None
    admission_type: AdmissionType = AdmissionType.SCHEDULED
    reason: str = Field(default="", max_length=500)
    notes: str = ""


class AssignmentUpdate(BaseModel):
    expected_discharge_date: Optional[datetime] = None
    patient_condition: Optional[PatientCondition] = None
    assigned_nurse_id: Optional[int] = None
    assigned_doctor_id: Optional[int] = None
    notes: Optional[str] = None


@router.post("", status_code=201)
def admit_patient(
    body: AdmissionCreate,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    return assignments.admit_patient(session, tenant, actor_id=actor_id, **body.model_dump())


@router.get("")
def list_assignments(
    bed_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    status: Optional[AssignmentStatus] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return assignments.list_assignments(
        session,
        tenant,
        bed_id=bed_id,
        patient_id=patient_id,
        status=status,
        page=page,
        page_size=page_size,
    )


@router.get("/current")
def current_assignment(
    bed_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    if bed_id is None and patient_id is None:
        raise ValidationError("Provide bed_id or patient_id")
    assignment = assignments.current_assignment(session, tenant, bed_id=bed_id, patient_id=patient_id)
    if assignment is None:
        raise NotFoundError("No active assignment")
    return assignment


@router.get("/{assignment_id}")
def get_assignment(
    assignment_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return assignments.get_assignment(session, tenant, assignment_id)


@router.patch("/{assignment_id}")
def update_assignment(
    assignment_id: int,
    body: AssignmentUpdate,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    patch = body.model_dump(exclude_unset=True)
    return assignments.update_assignment(session, tenant, assignment_id, patch, actor_id=actor_id)
