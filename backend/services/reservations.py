from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta

from sqlmodel import Session, select

from database import unit_of_work
from errors import ConflictError, NotFoundError, ValidationError
from models import BedReservation, ReservationStatus, naive_utc, utcnow
from services.availability import evaluate_bed, lock_bed
from services.history import record_bed_event
from tenancy import TenantNamespace

logger = logging.getLogger("bedwise.reservations")

RESERVE_SCHEDULED_TRANSFERS = os.getenv("BEDWISE_RESERVE_SCHEDULED_TRANSFERS", "1") == "1"
RESERVATION_GRACE = timedelta(minutes=int(os.getenv("BEDWISE_RESERVATION_GRACE_MINUTES", "30")))


def hold_bed(
    session: Session,
    *,
    bed_id: int,
    patient_id: int,
    reserved_until: datetime,
    transfer_id: int | None = None,
    actor_id: int | None = None,
    notes: str = "",
) -> BedReservation:
    reservation = BedReservation(
        bed_id=bed_id,
        patient_id=patient_id,
        transfer_id=transfer_id,
        reserved_until=reserved_until,
        created_by=actor_id,
        notes=notes.strip(),
    )
    session.add(reservation)
    session.flush()
    return reservation


def settle_reservations(
    session: Session,
    *,
    bed_id: int,
    final_status: ReservationStatus,
    patient_id: int | None = None,
    transfer_id: int | None = None,
) -> int:
    """Close the active reservations a holder owns on a bed; returns how many changed."""
    query = select(BedReservation).where(
        BedReservation.bed_id == bed_id,
        BedReservation.status == ReservationStatus.ACTIVE,
    )
    if transfer_id is not None:
        query = query.where(BedReservation.transfer_id == transfer_id)
    elif patient_id is not None:
        query = query.where(BedReservation.patient_id == patient_id)
    changed = 0
    for reservation in session.exec(query).all():
        reservation.status = final_status
        reservation.updated_at = utcnow()
        changed += 1
    return changed


def reserve_bed(
    session: Session,
    tenant: TenantNamespace,
    *,
    bed_id: int,
    patient_id: int,
    reserved_until: datetime,
    actor_id: int | None = None,
    notes: str = "",
) -> BedReservation:
    now = utcnow()
    reserved_until = naive_utc(reserved_until)
    if reserved_until <= now:
        raise ValidationError("Reservation must end in the future")

    with unit_of_work(session, tenant):
        bed = lock_bed(session, bed_id)
        check = evaluate_bed(session, bed, now=now)
        if not check.available:
            raise ConflictError(f"Bed {bed.bed_number} cannot be reserved: {check.reason}")

        reservation = hold_bed(
            session,
            bed_id=bed.id,
            patient_id=patient_id,
            reserved_until=reserved_until,
            actor_id=actor_id,
            notes=notes,
        )
        record_bed_event(
            session,
            bed,
            event_type="reserved",
            previous_status=bed.status,
            actor_id=actor_id,
            patient_id=patient_id,
            notes=f"Reserved until {reserved_until.isoformat()}",
        )
        return reservation


def release_reservation(
    session: Session,
    tenant: TenantNamespace,
    reservation_id: int,
    *,
    actor_id: int | None = None,
) -> BedReservation:
    with unit_of_work(session, tenant):
        reservation = session.get(BedReservation, reservation_id)
        if not reservation:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        if reservation.status != ReservationStatus.ACTIVE:
            raise ConflictError(f"Reservation is already {reservation.status.value}")
        if reservation.transfer_id is not None:
            raise ConflictError("Reservation belongs to a transfer; cancel the transfer instead")

        reservation.status = ReservationStatus.RELEASED
        reservation.updated_at = utcnow()
        bed = lock_bed(session, reservation.bed_id)
        record_bed_event(
            session,
            bed,
            event_type="reservation_released",
            previous_status=bed.status,
            actor_id=actor_id,
            patient_id=reservation.patient_id,
        )
        session.flush()
        return reservation


def list_reservations(
    session: Session,
    tenant: TenantNamespace,
    *,
    bed_id: int | None = None,
    status: ReservationStatus | None = None,
) -> list[BedReservation]:
    query = select(BedReservation)
    if bed_id is not None:
        query = query.where(BedReservation.bed_id == bed_id)
    if status is not None:
        query = query.where(BedReservation.status == status)
    with unit_of_work(session, tenant, read_only=True):
        return list(session.exec(query.order_by(BedReservation.reserved_until.asc())).all())  # type: ignore[union-attr]


def expire_reservations(session: Session, tenant: TenantNamespace, *, now: datetime | None = None) -> int:
    now = now or utcnow()
    with unit_of_work(session, tenant):
        lapsed = session.exec(
            select(BedReservation).where(
                BedReservation.status == ReservationStatus.ACTIVE,
                BedReservation.reserved_until <= now,
            )
        ).all()
        for reservation in lapsed:
            reservation.status = ReservationStatus.EXPIRED
            reservation.updated_at = now
    if lapsed:
        logger.info("Expired %d reservations in %s", len(lapsed), tenant.tenant_id)
    return len(lapsed)
