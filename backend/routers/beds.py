from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlmodel import Session

from database import get_session
from errors import NotFoundError
from models import Bed, BedStatus, BedType
from services import availability, beds, history
from tenancy import TenantNamespace, get_actor_id, get_tenant

router = APIRouter(prefix="/beds", tags=["beds"])


class BedCreate(BaseModel):
    bed_number: str = Field(min_length=1, max_length=32)
    department_id: int
    bed_type: BedType = BedType.STANDARD
    floor_number: Optional[int] = None
    room_number: Optional[str] = Field(default=None, max_length=32)
    wing: Optional[str] = Field(default=None, max_length=64)
    features: list[str] = Field(default_factory=list)
    notes: str = ""


class BedUpdate(BaseModel):
    bed_number: Optional[str] = Field(default=None, min_length=1, max_length=32)
    department_id: Optional[int] = None
    bed_type: Optional[BedType] = None
    floor_number: Optional[int] = None
    room_number: Optional[str] = Field(default=None, max_length=32)
    wing: Optional[str] = Field(default=None, max_length=64)
    features: Optional[list[str]] = None
    status: Optional[BedStatus] = None
    notes: Optional[str] = None
    last_maintenance_at: Optional[datetime] = None


class BedStatusUpdate(BaseModel):
    status: BedStatus
    notes: Optional[str] = None


def bed_out(bed: Bed) -> dict:
    data = bed.model_dump(exclude={"features_json"})
    data["features"] = bed.features
    return data


@router.post("", status_code=201)
def create_bed(
    body: BedCreate,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    bed = beds.create_bed(session, tenant, actor_id=actor_id, **body.model_dump())
    return bed_out(bed)


@router.get("")
def list_beds(
    department_id: Optional[int] = None,
    status: Optional[BedStatus] = None,
    bed_type: Optional[BedType] = None,
    floor_number: Optional[int] = None,
    search: str = "",
    include_inactive: bool = False,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    result = beds.list_beds(
        session,
        tenant,
        department_id=department_id,
        status=status,
        bed_type=bed_type,
        floor_number=floor_number,
        search=search,
        include_inactive=include_inactive,
        page=page,
        page_size=page_size,
    )
    result["beds"] = [bed_out(bed) for bed in result["beds"]]
    return result


@router.get("/available")
def list_available_beds(
    department_id: Optional[int] = None,
    bed_type: Optional[BedType] = None,
    floor_number: Optional[int] = None,
    features: Optional[list[str]] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    found = availability.list_available_beds(
        session,
        tenant,
        department_id=department_id,
        bed_type=bed_type,
        floor_number=floor_number,
        required_features=features,
        limit=limit,
        offset=offset,
    )
    return [bed_out(bed) for bed in found]


@router.get("/nearest")
def find_nearest_available_bed(
    department_id: Optional[int] = None,
    floor_number: Optional[int] = None,
    bed_type: Optional[BedType] = None,
    features: Optional[list[str]] = Query(default=None),
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    bed = availability.find_nearest_available_bed(
        session,
        tenant,
        department_id=department_id,
        floor_number=floor_number,
        bed_type=bed_type,
        required_features=features,
    )
    if bed is None:
        raise NotFoundError("No available bed matches the request")
    return bed_out(bed)


@router.get("/{bed_id}")
def get_bed(
    bed_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return bed_out(beds.get_bed(session, tenant, bed_id))


@router.patch("/{bed_id}")
def update_bed(
    bed_id: int,
    body: BedUpdate,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    patch = body.model_dump(exclude_unset=True)
    return bed_out(beds.update_bed(session, tenant, bed_id, patch, actor_id=actor_id))


@router.put("/{bed_id}/status")
def update_bed_status(
    bed_id: int,
    body: BedStatusUpdate,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    bed = beds.update_bed_status(session, tenant, bed_id, body.status, actor_id=actor_id, notes=body.notes)
    return bed_out(bed)


@router.post("/{bed_id}/deactivate")
def deactivate_bed(
    bed_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    return bed_out(beds.deactivate_bed(session, tenant, bed_id, actor_id=actor_id))


@router.post("/{bed_id}/reactivate")
def reactivate_bed(
    bed_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    return bed_out(beds.reactivate_bed(session, tenant, bed_id, actor_id=actor_id))


@router.get("/{bed_id}/availability")
def bed_availability(
    bed_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return availability.check_bed_availability(session, tenant, bed_id).as_dict()


@router.get("/{bed_id}/history")
def bed_history(
    bed_id: int,
    limit: int = Query(default=20, ge=1, le=200),
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    beds.get_bed(session, tenant, bed_id)
    return history.bed_history(session, tenant, bed_id, limit=limit)
