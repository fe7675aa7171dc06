from __future__ import annotations

from typing import Any

from sqlmodel import Session, select

from database import unit_of_work
from errors import NotFoundError, ValidationError
from models import Department, DepartmentStatus, utcnow
from tenancy import TenantNamespace

UPDATABLE_FIELDS = {"name", "description", "floor_number", "building", "total_bed_capacity", "status"}


def load_department(session: Session, department_id: int) -> Department:
    department = session.get(Department, department_id)
    if not department:
        raise NotFoundError(f"Department {department_id} not found")
    return department


def create_department(
    session: Session,
    tenant: TenantNamespace,
    *,
    department_code: str,
    name: str,
    description: str = "",
    floor_number: int | None = None,
    building: str | None = None,
    total_bed_capacity: int = 0,
    actor_id: int | None = None,
) -> Department:
    code = department_code.strip().upper()
    if not code:
        raise ValidationError("Department code cannot be empty")
    if not name.strip():
        raise ValidationError("Department name cannot be empty")
    if total_bed_capacity < 0:
        raise ValidationError("Bed capacity cannot be negative")

    with unit_of_work(session, tenant):
        duplicate = session.exec(select(Department).where(Department.department_code == code)).first()
        if duplicate:
            raise ValidationError(f"Department code '{code}' already exists")

        department = Department(
            department_code=code,
            name=name.strip(),
            description=description.strip(),
            floor_number=floor_number,
            building=building,
            total_bed_capacity=total_bed_capacity,
            created_by=actor_id,
            updated_by=actor_id,
        )
        session.add(department)
        session.flush()
        return department


def get_department(session: Session, tenant: TenantNamespace, department_id: int) -> Department:
    with unit_of_work(session, tenant, read_only=True):
        return load_department(session, department_id)


def list_departments(
    session: Session,
    tenant: TenantNamespace,
    *,
    status: DepartmentStatus | None = None,
) -> list[Department]:
    with unit_of_work(session, tenant, read_only=True):
        query = select(Department)
        if status is not None:
            query = query.where(Department.status == status)
        return list(session.exec(query.order_by(Department.name.asc())).all())  # type: ignore[union-attr]


def update_department(
    session: Session,
    tenant: TenantNamespace,
    department_id: int,
    patch: dict[str, Any],
    *,
    actor_id: int | None = None,
) -> Department:
    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update department fields: {sorted(unknown)}")
    if "name" in patch and not str(patch["name"] or "").strip():
        raise ValidationError("Department name cannot be empty")
    if patch.get("total_bed_capacity") is not None and patch["total_bed_capacity"] < 0:
        raise ValidationError("Bed capacity cannot be negative")

    with unit_of_work(session, tenant):
        department = load_department(session, department_id)
        for field, value in patch.items():
            setattr(department, field, value)
        department.updated_by = actor_id
        department.updated_at = utcnow()
        session.flush()
        return department
