"""Admission and termination of the single active patient-to-bed binding."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from database import unit_of_work
from errors import ConflictError, NotFoundError, ValidationError
from models import (
    AdmissionType,
    AssignmentStatus,
    Bed,
    BedAssignment,
    BedStatus,
    PatientCondition,
    ReservationStatus,
    naive_utc,
    utcnow,
)
from services.availability import (
    active_assignment_for_bed,
    active_assignment_for_patient,
    evaluate_bed,
    lock_bed,
)
from services.history import record_bed_event
from services.reservations import settle_reservations
from state_machine import validate_assignment_termination
from tenancy import TenantNamespace

logger = logging.getLogger("bedwise.assignments")

EDITABLE_FIELDS = {
    "expected_discharge_date",
    "patient_condition",
    "assigned_nurse_id",
    "assigned_doctor_id",
    "notes",
}


def create_assignment(
    session: Session,
    bed: Bed,
    *,
    patient_id: int,
    actor_id: int | None,
    admission_date: datetime | None = None,
    admission_type: AdmissionType = AdmissionType.SCHEDULED,
    reason: str = "",
    notes: str = "",
) -> BedAssignment:
    """Insert an active assignment and flip the bed to occupied.

    The caller must already hold the bed lock and have checked availability.
    """
    assignment = BedAssignment(
        bed_id=bed.id,
        patient_id=patient_id,
        admission_date=admission_date or utcnow(),
        admission_type=admission_type,
        status=AssignmentStatus.ACTIVE,
        reason=reason.strip(),
        notes=notes.strip(),
        created_by=actor_id,
        updated_by=actor_id,
    )
    session.add(assignment)
    try:
        session.flush()
    except IntegrityError as exc:
        raise ConflictError(
            f"Bed {bed.bed_number} or patient {patient_id} already has an active assignment"
        ) from exc

    previous_status = bed.status
    bed.status = BedStatus.OCCUPIED
    bed.updated_by = actor_id
    bed.updated_at = utcnow()
    record_bed_event(
        session,
        bed,
        event_type="admission" if admission_type != AdmissionType.TRANSFER else "transfer_in",
        previous_status=previous_status,
        actor_id=actor_id,
        patient_id=patient_id,
    )
    return assignment


def terminate_assignment(
    session: Session,
    assignment: BedAssignment,
    final_status: AssignmentStatus,
    *,
    actor_id: int | None,
    ended_at: datetime | None = None,
    notes: str = "",
) -> BedAssignment:
    """Close an active assignment. Bed status is left to the caller."""
    validate_assignment_termination(assignment.status, final_status)
    assignment.status = final_status
    assignment.discharge_date = ended_at or utcnow()
    if notes.strip():
        assignment.notes = f"{assignment.notes}\n{notes.strip()}".strip()
    assignment.updated_by = actor_id
    assignment.updated_at = utcnow()
    session.flush()
    return assignment


def admit_patient(
    session: Session,
    tenant: TenantNamespace,
    *,
    bed_id: int,
    patient_id: int,
    admission_date: datetime | None = None,
    admission_type: AdmissionType = AdmissionType.SCHEDULED,
    reason: str = "",
    notes: str = "",
    actor_id: int | None = None,
) -> BedAssignment:
    with unit_of_work(session, tenant):
        bed = lock_bed(session, bed_id)

        check = evaluate_bed(session, bed, holder_patient_id=patient_id)
        if not check.available:
            raise ConflictError(f"Bed {bed.bed_number} is not available: {check.reason}")
        if active_assignment_for_patient(session, patient_id) is not None:
            raise ConflictError(f"Patient {patient_id} already occupies another bed")

        assignment = create_assignment(
            session,
            bed,
            patient_id=patient_id,
            actor_id=actor_id,
            admission_date=admission_date,
            admission_type=admission_type,
            reason=reason,
            notes=notes,
        )
        settle_reservations(
            session,
            bed_id=bed.id,
            patient_id=patient_id,
            final_status=ReservationStatus.FULFILLED,
        )
        session.flush()

    logger.info("Patient %s admitted to bed %s in %s", patient_id, bed.bed_number, tenant.tenant_id)
    return assignment


def terminate(
    session: Session,
    tenant: TenantNamespace,
    assignment_id: int,
    final_status: AssignmentStatus,
    *,
    actor_id: int | None = None,
) -> BedAssignment:
    with unit_of_work(session, tenant):
        assignment = session.get(BedAssignment, assignment_id)
        if not assignment:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        return terminate_assignment(session, assignment, final_status, actor_id=actor_id)


def update_assignment(
    session: Session,
    tenant: TenantNamespace,
    assignment_id: int,
    patch: dict,
    *,
    actor_id: int | None = None,
) -> BedAssignment:
    """Edit the clinical details of an active assignment. Bed and patient never change here."""
    unknown = set(patch) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Assignment fields cannot be updated: {', '.join(sorted(unknown))}")

    with unit_of_work(session, tenant):
        assignment = session.exec(
            select(BedAssignment).where(BedAssignment.id == assignment_id).with_for_update()
        ).first()
        if not assignment:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        if assignment.status != AssignmentStatus.ACTIVE:
            raise ConflictError(f"Assignment is already {assignment.status.value}")

        updates = dict(patch)
        if updates.get("expected_discharge_date") is not None:
            expected = naive_utc(updates["expected_discharge_date"])
            if expected < assignment.admission_date:
                raise ValidationError("Expected discharge date cannot be before the admission date")
            updates["expected_discharge_date"] = expected
        if updates.get("patient_condition") is not None:
            updates["patient_condition"] = PatientCondition(updates["patient_condition"])
        if "notes" in updates:
            updates["notes"] = (updates["notes"] or "").strip()

        for key, value in updates.items():
            setattr(assignment, key, value)
        assignment.updated_by = actor_id
        assignment.updated_at = utcnow()
        session.flush()
        return assignment


def get_assignment(session: Session, tenant: TenantNamespace, assignment_id: int) -> BedAssignment:
    with unit_of_work(session, tenant, read_only=True):
        assignment = session.get(BedAssignment, assignment_id)
        if not assignment:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        return assignment


def current_assignment(
    session: Session,
    tenant: TenantNamespace,
    *,
    bed_id: int | None = None,
    patient_id: int | None = None,
) -> BedAssignment | None:
    with unit_of_work(session, tenant, read_only=True):
        if bed_id is not None:
            return active_assignment_for_bed(session, bed_id)
        if patient_id is not None:
            return active_assignment_for_patient(session, patient_id)
        return None


def list_assignments(
    session: Session,
    tenant: TenantNamespace,
    *,
    bed_id: int | None = None,
    patient_id: int | None = None,
    status: AssignmentStatus | None = None,
    page: int = 1,
    page_size: int = 50,
) -> dict:
    query = select(BedAssignment)
    if bed_id is not None:
        query = query.where(BedAssignment.bed_id == bed_id)
    if patient_id is not None:
        query = query.where(BedAssignment.patient_id == patient_id)
    if status is not None:
        query = query.where(BedAssignment.status == status)

    with unit_of_work(session, tenant, read_only=True):
        total = len(session.exec(query).all())
        rows = session.exec(
            query.order_by(BedAssignment.admission_date.desc(), BedAssignment.id.desc())  # type: ignore[union-attr]
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return {"assignments": list(rows), "total": total, "page": page, "page_size": page_size}
