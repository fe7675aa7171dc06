from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session

from database import get_session
from models import ReservationStatus
from services import reservations
from tenancy import TenantNamespace, get_actor_id, get_tenant

router = APIRouter(prefix="/reservations", tags=["reservations"])


class ReservationCreate(BaseModel):
    bed_id: int
    patient_id: int
    reserved_until: datetime
    notes: str = Field(default="", max_length=500)


@router.post("", status_code=201)
def reserve_bed(
    body: ReservationCreate,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    return reservations.reserve_bed(session, tenant, actor_id=actor_id, **body.model_dump())


@router.get("")
def list_reservations(
    bed_id: Optional[int] = None,
    status: Optional[ReservationStatus] = None,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return reservations.list_reservations(session, tenant, bed_id=bed_id, status=status)


@router.post("/{reservation_id}/release")
def release_reservation(
    reservation_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    return reservations.release_reservation(session, tenant, reservation_id, actor_id=actor_id)
