from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlmodel import Session, select

from database import unit_of_work
from errors import NotFoundError
from models import (
    AssignmentStatus,
    Bed,
    BedAssignment,
    BedReservation,
    BedStatus,
    BedType,
    ReservationStatus,
    utcnow,
)
from tenancy import TenantNamespace

STATUS_REASONS = {
    BedStatus.OCCUPIED: "Bed is currently occupied",
    BedStatus.MAINTENANCE: "Bed is under maintenance",
    BedStatus.CLEANING: "Bed is being cleaned",
    BedStatus.RESERVED: "Bed is on administrative hold",
    BedStatus.BLOCKED: "Bed is blocked",
}


@dataclass
class AvailabilityCheck:
    bed_id: int
    available: bool
    reason: str | None = None
    code: str | None = None
    current_status: BedStatus | None = None
    has_active_assignment: bool = False
    reserved_until: datetime | None = None

    def as_dict(self) -> dict:
        return {
            "bed_id": self.bed_id,
            "available": self.available,
            "reason": self.reason,
            "code": self.code,
            "current_status": self.current_status.value if self.current_status else None,
            "has_active_assignment": self.has_active_assignment,
            "reserved_until": self.reserved_until.isoformat() if self.reserved_until else None,
        }


def lock_bed(session: Session, bed_id: int) -> Bed:
    bed = session.exec(select(Bed).where(Bed.id == bed_id).with_for_update()).first()
    if not bed:
        raise NotFoundError(f"Bed {bed_id} not found")
    return bed


def lock_beds(session: Session, *bed_ids: int) -> dict[int, Bed]:
    """Lock several beds in ascending id order so concurrent callers never deadlock."""
    return {bed_id: lock_bed(session, bed_id) for bed_id in sorted(set(bed_ids))}


def active_assignment_for_bed(session: Session, bed_id: int) -> BedAssignment | None:
    return session.exec(
        select(BedAssignment).where(
            BedAssignment.bed_id == bed_id,
            BedAssignment.status == AssignmentStatus.ACTIVE,
        )
    ).first()


def active_assignment_for_patient(session: Session, patient_id: int) -> BedAssignment | None:
    return session.exec(
        select(BedAssignment).where(
            BedAssignment.patient_id == patient_id,
            BedAssignment.status == AssignmentStatus.ACTIVE,
        )
    ).first()


def live_reservation(
    session: Session,
    bed_id: int,
    *,
    now: datetime | None = None,
    holder_patient_id: int | None = None,
    holder_transfer_id: int | None = None,
) -> BedReservation | None:
    """Return the first live reservation on the bed that the given holder does not own."""
    now = now or utcnow()
    reservations = session.exec(
        select(BedReservation)
        .where(
            BedReservation.bed_id == bed_id,
            BedReservation.status == ReservationStatus.ACTIVE,
            BedReservation.reserved_from <= now,
            BedReservation.reserved_until > now,
        )
        .order_by(BedReservation.reserved_until.desc())  # type: ignore[union-attr]
    ).all()
    for reservation in reservations:
        if holder_transfer_id is not None and reservation.transfer_id == holder_transfer_id:
            continue
        if holder_patient_id is not None and reservation.patient_id == holder_patient_id:
            continue
        return reservation
    return None


def evaluate_bed(
    session: Session,
    bed: Bed,
    *,
    now: datetime | None = None,
    holder_patient_id: int | None = None,
    holder_transfer_id: int | None = None,
) -> AvailabilityCheck:
    check = AvailabilityCheck(bed_id=bed.id, available=False, current_status=bed.status)
    check.has_active_assignment = active_assignment_for_bed(session, bed.id) is not None

    if not bed.is_active:
        check.reason, check.code = "Bed is inactive", "inactive"
        return check
    if bed.status != BedStatus.AVAILABLE:
        check.reason, check.code = STATUS_REASONS.get(bed.status, f"Bed is {bed.status.value}"), "status"
        return check
    if check.has_active_assignment:
        check.reason, check.code = "Bed has an active patient assignment", "assigned"
        return check

    reservation = live_reservation(
        session,
        bed.id,
        now=now,
        holder_patient_id=holder_patient_id,
        holder_transfer_id=holder_transfer_id,
    )
    if reservation:
        check.reserved_until = reservation.reserved_until
        check.reason = f"Bed is reserved until {reservation.reserved_until.isoformat()}"
        check.code = "reserved"
        return check

    check.available = True
    return check


def check_bed_availability(session: Session, tenant: TenantNamespace, bed_id: int) -> AvailabilityCheck:
    with unit_of_work(session, tenant, read_only=True):
        bed = session.get(Bed, bed_id)
        if not bed:
            raise NotFoundError(f"Bed {bed_id} not found")
        return evaluate_bed(session, bed)


def query_available_beds(
    session: Session,
    *,
    department_id: int | None = None,
    bed_type: BedType | None = None,
    floor_number: int | None = None,
    required_features: list[str] | None = None,
) -> list[Bed]:
    now = utcnow()
    has_assignment = (
        select(BedAssignment.id)
        .where(BedAssignment.bed_id == Bed.id, BedAssignment.status == AssignmentStatus.ACTIVE)
        .exists()
    )
    has_reservation = (
        select(BedReservation.id)
        .where(
            BedReservation.bed_id == Bed.id,
            BedReservation.status == ReservationStatus.ACTIVE,
            BedReservation.reserved_from <= now,
            BedReservation.reserved_until > now,
        )
        .exists()
    )
    query = select(Bed).where(
        Bed.is_active == True,  # noqa: E712
        Bed.status == BedStatus.AVAILABLE,
        ~has_assignment,
        ~has_reservation,
    )
    if department_id is not None:
        query = query.where(Bed.department_id == department_id)
    if bed_type is not None:
        query = query.where(Bed.bed_type == bed_type)
    if floor_number is not None:
        query = query.where(Bed.floor_number == floor_number)

    beds = list(session.exec(query.order_by(Bed.bed_number.asc())).all())  # type: ignore[union-attr]
    if required_features:
        wanted = {feature.strip().casefold() for feature in required_features if feature.strip()}
        beds = [bed for bed in beds if wanted.issubset({f.casefold() for f in bed.features})]
    return beds


def list_available_beds(
    session: Session,
    tenant: TenantNamespace,
    *,
    department_id: int | None = None,
    bed_type: BedType | None = None,
    floor_number: int | None = None,
    required_features: list[str] | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[Bed]:
    with unit_of_work(session, tenant, read_only=True):
        beds = query_available_beds(
            session,
            department_id=department_id,
            bed_type=bed_type,
            floor_number=floor_number,
            required_features=required_features,
        )
    return beds[offset:offset + limit] if limit is not None else beds[offset:]


def find_nearest_available_bed(
    session: Session,
    tenant: TenantNamespace,
    *,
    department_id: int | None = None,
    floor_number: int | None = None,
    bed_type: BedType | None = None,
    required_features: list[str] | None = None,
) -> Bed | None:
    """Best available bed for a placement, widening the search step by step.

    Tries the preferred department on the preferred floor, then the department
    on any floor, then the floor in any department, then any bed of the type,
    and finally any bed at all. Required features apply at every step.
    """
    attempts = []
    if department_id is not None and floor_number is not None:
        attempts.append({"department_id": department_id, "floor_number": floor_number, "bed_type": bed_type})
    if department_id is not None:
        attempts.append({"department_id": department_id, "bed_type": bed_type})
    if floor_number is not None:
        attempts.append({"floor_number": floor_number, "bed_type": bed_type})
    if bed_type is not None:
        attempts.append({"bed_type": bed_type})
    attempts.append({})

    with unit_of_work(session, tenant, read_only=True):
        for filters in attempts:
            beds = query_available_beds(session, required_features=required_features, **filters)
            if beds:
                return beds[0]
    return None
