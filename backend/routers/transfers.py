from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlmodel import Session

from database import get_session
from models import TransferPriority, TransferStatus
from services import transfers
from tenancy import TenantNamespace, get_actor_id, get_tenant

router = APIRouter(prefix="/transfers", tags=["transfers"])


class TransferCreate(BaseModel):
    from_bed_id: int
    to_bed_id: int
    patient_id: int
    reason: str = Field(default="", max_length=500)
    scheduled_time: Optional[datetime] = None
    priority: TransferPriority = TransferPriority.ROUTINE
    notes: str = ""


class TransferUpdate(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
    priority: Optional[TransferPriority] = None
    scheduled_time: Optional[datetime] = None
    notes: Optional[str] = None


class TransferCancel(BaseModel):
    reason: str = Field(default="", max_length=500)


@router.post("", status_code=201)
def request_transfer(
    body: TransferCreate,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    return transfers.request_transfer(session, tenant, actor_id=actor_id, **body.model_dump())


@router.get("")
def list_transfers(
    patient_id: Optional[int] = None,
    status: Optional[TransferStatus] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return transfers.list_transfers(
        session, tenant, patient_id=patient_id, status=status, page=page, page_size=page_size
    )


@router.get("/{transfer_id}")
def get_transfer(
    transfer_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return transfers.get_transfer(session, tenant, transfer_id)


@router.patch("/{transfer_id}")
def update_transfer(
    transfer_id: int,
    body: TransferUpdate,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    patch = body.model_dump(exclude_unset=True)
    return transfers.update_transfer(session, tenant, transfer_id, patch, actor_id=actor_id)


@router.post("/{transfer_id}/complete")
async def complete_transfer(
    transfer_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    return await transfers.complete_and_notify(session, tenant, transfer_id, actor_id=actor_id)


@router.post("/{transfer_id}/cancel")
def cancel_transfer(
    transfer_id: int,
    body: TransferCancel,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    return transfers.cancel_transfer(session, tenant, transfer_id, reason=body.reason, actor_id=actor_id)
