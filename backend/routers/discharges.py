from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlmodel import Session

from database import get_session
from models import BillStatus, DischargeType, PatientDischarge
from services import discharges
from services.discharges import DischargeData
from tenancy import TenantNamespace, get_actor_id, get_tenant

router = APIRouter(prefix="/discharges", tags=["discharges"])


class DischargeCreate(BaseModel):
    bed_id: int
    patient_id: int
    discharge_type: DischargeType
    discharge_summary: str = ""
    discharge_date: Optional[datetime] = None
    final_bill_status: BillStatus = BillStatus.PENDING
    follow_up_required: bool = False
    follow_up_date: Optional[datetime] = None
    follow_up_instructions: Optional[str] = None
    medications: list[str] = Field(default_factory=list)
    home_care_instructions: Optional[str] = None
    transport_arrangement: str = ""
    notifications: list[str] = Field(default_factory=list)


def discharge_out(discharge: PatientDischarge) -> dict:
    data = discharge.model_dump(exclude={"medications_json"})
    data["medications"] = discharge.medications
    return data


@router.post("", status_code=201)
async def discharge_patient(
    body: DischargeCreate,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    data = DischargeData(**body.model_dump(exclude={"bed_id", "patient_id"}))
    discharge = await discharges.discharge_and_notify(
        session,
        tenant,
        bed_id=body.bed_id,
        patient_id=body.patient_id,
        data=data,
        actor_id=actor_id,
    )
    return discharge_out(discharge)


@router.get("")
def list_discharges(
    patient_id: Optional[int] = None,
    bed_id: Optional[int] = None,
    discharge_type: Optional[DischargeType] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    result = discharges.list_discharges(
        session,
        tenant,
        patient_id=patient_id,
        bed_id=bed_id,
        discharge_type=discharge_type,
        page=page,
        page_size=page_size,
    )
    result["discharges"] = [discharge_out(d) for d in result["discharges"]]
    return result


@router.get("/follow-ups")
def list_follow_ups(
    patient_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return discharges.list_follow_ups(session, tenant, patient_id=patient_id)


@router.get("/{discharge_id}")
def get_discharge(
    discharge_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return discharge_out(discharges.get_discharge(session, tenant, discharge_id))
