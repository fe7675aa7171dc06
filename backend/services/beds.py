"""Bed registry: creation, attribute updates, status changes and soft deactivation."""

from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session, select

from database import unit_of_work
from errors import NotFoundError, UnavailableError, ValidationError
from models import Bed, BedStatus, BedType, Department, DepartmentStatus, utcnow
from services.availability import active_assignment_for_bed, lock_bed
from services.history import record_bed_event
from state_machine import REACTIVATED_STATUS, validate_status_change
from tenancy import TenantNamespace

logger = logging.getLogger("bedwise.beds")

UPDATABLE_FIELDS = {
    "bed_number",
    "department_id",
    "bed_type",
    "floor_number",
    "room_number",
    "wing",
    "features",
    "status",
    "notes",
    "last_maintenance_at",
}


def _normalize_features(features: list[str] | None) -> list[str]:
    seen: list[str] = []
    for feature in features or []:
        tag = feature.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def _require_active_department(session: Session, department_id: int) -> Department:
    department = session.get(Department, department_id)
    if not department:
        raise ValidationError(f"Department {department_id} does not exist")
    if department.status != DepartmentStatus.ACTIVE:
        raise ValidationError(f"Department {department.department_code} is not active")
    return department


def _ensure_bed_number_free(session: Session, bed_number: str, *, exclude_id: int | None = None):
    query = select(Bed).where(Bed.bed_number == bed_number)
    if exclude_id is not None:
        query = query.where(Bed.id != exclude_id)
    if session.exec(query).first():
        raise ValidationError(f"Bed number '{bed_number}' already exists")


def create_bed(
    session: Session,
    tenant: TenantNamespace,
    *,
    bed_number: str,
    department_id: int,
    bed_type: BedType = BedType.STANDARD,
    floor_number: int | None = None,
    room_number: str | None = None,
    wing: str | None = None,
    features: list[str] | None = None,
    notes: str = "",
    actor_id: int | None = None,
) -> Bed:
    number = bed_number.strip()
    if not number:
        raise ValidationError("Bed number cannot be empty")

    with unit_of_work(session, tenant):
        _require_active_department(session, department_id)
        _ensure_bed_number_free(session, number)

        bed = Bed(
            bed_number=number,
            department_id=department_id,
            bed_type=bed_type,
            floor_number=floor_number,
            room_number=room_number,
            wing=wing,
            notes=notes.strip(),
            status=BedStatus.AVAILABLE,
            is_active=True,
            created_by=actor_id,
            updated_by=actor_id,
        )
        bed.features = _normalize_features(features)
        session.add(bed)
        session.flush()
        record_bed_event(session, bed, event_type="created", previous_status=None, actor_id=actor_id)
        logger.info("Bed %s created in %s", bed.bed_number, tenant.tenant_id)
        return bed


def get_bed(session: Session, tenant: TenantNamespace, bed_id: int) -> Bed:
    with unit_of_work(session, tenant, read_only=True):
        bed = session.get(Bed, bed_id)
        if not bed:
            raise NotFoundError(f"Bed {bed_id} not found")
        return bed


def list_beds(
    session: Session,
    tenant: TenantNamespace,
    *,
    department_id: int | None = None,
    status: BedStatus | None = None,
    bed_type: BedType | None = None,
    floor_number: int | None = None,
    search: str = "",
    include_inactive: bool = False,
    page: int = 1,
    page_size: int = 50,
) -> dict:
    query = select(Bed)
    if not include_inactive:
        query = query.where(Bed.is_active == True)  # noqa: E712
    if department_id is not None:
        query = query.where(Bed.department_id == department_id)
    if status is not None:
        query = query.where(Bed.status == status)
    if bed_type is not None:
        query = query.where(Bed.bed_type == bed_type)
    if floor_number is not None:
        query = query.where(Bed.floor_number == floor_number)
    if search.strip():
        term = search.strip()
        query = query.where(
            Bed.bed_number.contains(term) | Bed.room_number.contains(term)  # type: ignore[union-attr]
        )

    with unit_of_work(session, tenant, read_only=True):
        total = len(session.exec(query).all())
        beds = session.exec(
            query.order_by(Bed.bed_number.asc())  # type: ignore[union-attr]
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return {"beds": list(beds), "total": total, "page": page, "page_size": page_size}


def update_bed(
    session: Session,
    tenant: TenantNamespace,
    bed_id: int,
    patch: dict[str, Any],
    *,
    actor_id: int | None = None,
) -> Bed:
    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update bed fields: {sorted(unknown)}")

    with unit_of_work(session, tenant):
        bed = lock_bed(session, bed_id)
        previous_status = bed.status

        if "bed_number" in patch:
            number = str(patch["bed_number"] or "").strip()
            if not number:
                raise ValidationError("Bed number cannot be empty")
            _ensure_bed_number_free(session, number, exclude_id=bed.id)
            patch = {**patch, "bed_number": number}

        if "department_id" in patch and patch["department_id"] != bed.department_id:
            _require_active_department(session, patch["department_id"])

        new_status = patch.get("status")
        if new_status is not None:
            new_status = BedStatus(new_status)
            validate_status_change(
                bed.status,
                new_status,
                has_active_assignment=active_assignment_for_bed(session, bed.id) is not None,
            )

        for field, value in patch.items():
            if field == "features":
                bed.features = _normalize_features(value)
            elif field == "status":
                if value is not None:
                    bed.status = new_status
            else:
                setattr(bed, field, value)

        if bed.status == BedStatus.MAINTENANCE and previous_status != BedStatus.MAINTENANCE:
            bed.last_maintenance_at = utcnow()
        if previous_status == BedStatus.CLEANING and bed.status == BedStatus.AVAILABLE:
            bed.last_cleaned_at = utcnow()

        bed.updated_by = actor_id
        bed.updated_at = utcnow()
        if bed.status != previous_status:
            record_bed_event(
                session,
                bed,
                event_type="status_change",
                previous_status=previous_status,
                actor_id=actor_id,
                notes=str(patch.get("notes") or ""),
            )
        session.flush()
        return bed


def update_bed_status(
    session: Session,
    tenant: TenantNamespace,
    bed_id: int,
    status: BedStatus,
    *,
    actor_id: int | None = None,
    notes: str | None = None,
) -> Bed:
    patch: dict[str, Any] = {"status": status}
    if notes is not None:
        patch["notes"] = notes
    return update_bed(session, tenant, bed_id, patch, actor_id=actor_id)


def deactivate_bed(
    session: Session,
    tenant: TenantNamespace,
    bed_id: int,
    *,
    actor_id: int | None = None,
) -> Bed:
    with unit_of_work(session, tenant):
        bed = lock_bed(session, bed_id)
        if bed.status == BedStatus.OCCUPIED or active_assignment_for_bed(session, bed.id) is not None:
            raise UnavailableError(f"Bed {bed.bed_number} has an active assignment and cannot be deactivated")

        previous_status = bed.status
        bed.is_active = False
        bed.status = BedStatus.BLOCKED
        bed.updated_by = actor_id
        bed.updated_at = utcnow()
        record_bed_event(session, bed, event_type="deactivated", previous_status=previous_status, actor_id=actor_id)
        session.flush()
        logger.info("Bed %s deactivated in %s", bed.bed_number, tenant.tenant_id)
        return bed


def reactivate_bed(
    session: Session,
    tenant: TenantNamespace,
    bed_id: int,
    *,
    actor_id: int | None = None,
) -> Bed:
    with unit_of_work(session, tenant):
        bed = lock_bed(session, bed_id)
        if bed.is_active:
            raise ValidationError(f"Bed {bed.bed_number} is already active")
        _require_active_department(session, bed.department_id)

        previous_status = bed.status
        bed.is_active = True
        bed.status = REACTIVATED_STATUS
        bed.last_maintenance_at = utcnow()
        bed.updated_by = actor_id
        bed.updated_at = utcnow()
        record_bed_event(session, bed, event_type="reactivated", previous_status=previous_status, actor_id=actor_id)
        session.flush()
        return bed
