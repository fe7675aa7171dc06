from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session

from database import get_session
from models import DepartmentStatus
from services import departments, stats
from tenancy import TenantNamespace, get_actor_id, get_tenant

router = APIRouter(prefix="/departments", tags=["departments"])


class DepartmentCreate(BaseModel):
    department_code: str = Field(min_length=1, max_length=32)
    name: str = Field(min_length=1, max_length=120)
    description: str = ""
    floor_number: Optional[int] = None
    building: Optional[str] = Field(default=None, max_length=64)
    total_bed_capacity: int = Field(default=0, ge=0)


class DepartmentUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    floor_number: Optional[int] = None
    building: Optional[str] = Field(default=None, max_length=64)
    total_bed_capacity: Optional[int] = Field(default=None, ge=0)
    status: Optional[DepartmentStatus] = None


@router.post("", status_code=201)
def create_department(
    body: DepartmentCreate,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    return departments.create_department(session, tenant, actor_id=actor_id, **body.model_dump())


@router.get("")
def list_departments(
    status: Optional[DepartmentStatus] = None,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return departments.list_departments(session, tenant, status=status)


@router.get("/{department_id}")
def get_department(
    department_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return departments.get_department(session, tenant, department_id)


@router.patch("/{department_id}")
def update_department(
    department_id: int,
    body: DepartmentUpdate,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    patch = body.model_dump(exclude_unset=True)
    return departments.update_department(session, tenant, department_id, patch, actor_id=actor_id)


@router.get("/{department_id}/occupancy")
def department_occupancy(
    department_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return stats.department_occupancy(session, tenant, department_id)


@router.get("/{department_id}/capacity")
def department_capacity(
    department_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return stats.department_capacity(session, tenant, department_id)
