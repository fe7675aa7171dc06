"""Two-bed transfer protocol.

A transfer is requested against an advisory availability snapshot and completed
in a single transaction that re-checks the destination under lock, so two
completions racing for the same destination bed cannot both succeed.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session, select

from database import unit_of_work
from errors import ConflictError, NotFoundError, ValidationError
from models import (
    AdmissionType,
    AssignmentStatus,
    Bed,
    BedStatus,
    BedTransfer,
    ReservationStatus,
    TransferPriority,
    TransferStatus,
    naive_utc,
    utcnow,
)
from services.assignments import create_assignment, terminate_assignment
from services.availability import active_assignment_for_bed, evaluate_bed, lock_bed, lock_beds
from services.history import record_bed_event
from services.notifications import send_transfer_notifications
from services.reservations import (
    RESERVATION_GRACE,
    RESERVE_SCHEDULED_TRANSFERS,
    hold_bed,
    settle_reservations,
)
from state_machine import validate_transfer_transition
from tenancy import TenantNamespace

logger = logging.getLogger("bedwise.transfers")

OPEN_TRANSFER_STATES = (TransferStatus.PENDING, TransferStatus.SCHEDULED)
EDITABLE_FIELDS = {"reason", "priority", "notes", "scheduled_time"}


def _load_transfer(session: Session, transfer_id: int) -> BedTransfer:
    transfer = session.exec(
        select(BedTransfer).where(BedTransfer.id == transfer_id).with_for_update()
    ).first()
    if not transfer:
        raise NotFoundError(f"Transfer {transfer_id} not found")
    return transfer


def _append_note(transfer: BedTransfer, note: str):
    note = note.strip()
    if note:
        transfer.notes = f"{transfer.notes}\n{note}".strip()


def _hold_for_schedule(session: Session, transfer: BedTransfer, *, actor_id: int | None):
    if not (RESERVE_SCHEDULED_TRANSFERS and transfer.scheduled_time and transfer.scheduled_time > utcnow()):
        return None
    return hold_bed(
        session,
        bed_id=transfer.to_bed_id,
        patient_id=transfer.patient_id,
        transfer_id=transfer.id,
        reserved_until=transfer.scheduled_time + RESERVATION_GRACE,
        actor_id=actor_id,
        notes=f"Held for transfer #{transfer.id}",
    )


def request_transfer(
    session: Session,
    tenant: TenantNamespace,
    *,
    from_bed_id: int,
    to_bed_id: int,
    patient_id: int,
    reason: str = "",
    scheduled_time: datetime | None = None,
    priority: TransferPriority = TransferPriority.ROUTINE,
    notes: str = "",
    actor_id: int | None = None,
) -> BedTransfer:
    if from_bed_id == to_bed_id:
        raise ValidationError("Source and destination beds must be different")
    if scheduled_time is not None:
        scheduled_time = naive_utc(scheduled_time)

    with unit_of_work(session, tenant):
        from_bed = session.get(Bed, from_bed_id)
        if not from_bed:
            raise NotFoundError(f"Source bed {from_bed_id} not found")
        to_bed = session.get(Bed, to_bed_id)
        if not to_bed:
            raise NotFoundError(f"Destination bed {to_bed_id} not found")

        source_assignment = active_assignment_for_bed(session, from_bed.id)
        if source_assignment is None or source_assignment.patient_id != patient_id:
            raise ValidationError(f"Patient {patient_id} is not assigned to bed {from_bed.bed_number}")

        open_transfer = session.exec(
            select(BedTransfer).where(
                BedTransfer.patient_id == patient_id,
                BedTransfer.status.in_(OPEN_TRANSFER_STATES),  # type: ignore[union-attr]
            )
        ).first()
        if open_transfer:
            raise ConflictError(f"Patient {patient_id} already has open transfer #{open_transfer.id}")

        # Advisory only: completion re-checks under lock.
        check = evaluate_bed(session, to_bed, holder_patient_id=patient_id)
        if not check.available:
            raise ConflictError(f"Destination bed {to_bed.bed_number} is not available: {check.reason}")

        transfer = BedTransfer(
            patient_id=patient_id,
            from_bed_id=from_bed.id,
            to_bed_id=to_bed.id,
            from_department_id=from_bed.department_id,
            to_department_id=to_bed.department_id,
            reason=reason.strip(),
            priority=priority,
            scheduled_time=scheduled_time,
            status=TransferStatus.SCHEDULED if scheduled_time else TransferStatus.PENDING,
            requested_by=actor_id,
            notes=notes.strip(),
        )
        session.add(transfer)
        session.flush()

        _hold_for_schedule(session, transfer, actor_id=actor_id)
        return transfer


def complete_transfer(
    session: Session,
    tenant: TenantNamespace,
    transfer_id: int,
    *,
    actor_id: int | None = None,
) -> BedTransfer:
    with unit_of_work(session, tenant):
        transfer = _load_transfer(session, transfer_id)
        validate_transfer_transition(transfer.status, TransferStatus.COMPLETED)

        beds = lock_beds(session, transfer.from_bed_id, transfer.to_bed_id)
        from_bed = beds[transfer.from_bed_id]
        to_bed = beds[transfer.to_bed_id]

        check = evaluate_bed(
            session,
            to_bed,
            holder_patient_id=transfer.patient_id,
            holder_transfer_id=transfer.id,
        )
        if not check.available:
            raise ConflictError(f"Destination bed {to_bed.bed_number} is no longer available: {check.reason}")

        source_assignment = active_assignment_for_bed(session, from_bed.id)
        if source_assignment is None or source_assignment.patient_id != transfer.patient_id:
            raise ConflictError(
                f"Patient {transfer.patient_id} is no longer assigned to bed {from_bed.bed_number}"
            )

        now = utcnow()
        terminate_assignment(
            session,
            source_assignment,
            AssignmentStatus.TRANSFERRED,
            actor_id=actor_id,
            ended_at=now,
            notes=f"Transferred to bed {to_bed.bed_number} (transfer #{transfer.id})",
        )
        create_assignment(
            session,
            to_bed,
            patient_id=transfer.patient_id,
            actor_id=actor_id,
            admission_date=now,
            admission_type=AdmissionType.TRANSFER,
            reason=transfer.reason,
            notes=f"Transferred from bed {from_bed.bed_number} (transfer #{transfer.id})",
        )

        previous_status = from_bed.status
        from_bed.status = BedStatus.AVAILABLE
        from_bed.updated_by = actor_id
        from_bed.updated_at = now
        record_bed_event(
            session,
            from_bed,
            event_type="transfer_out",
            previous_status=previous_status,
            actor_id=actor_id,
            patient_id=transfer.patient_id,
            notes=f"Transfer #{transfer.id} to bed {to_bed.bed_number}",
        )

        settle_reservations(
            session,
            bed_id=to_bed.id,
            transfer_id=transfer.id,
            final_status=ReservationStatus.FULFILLED,
        )

        transfer.status = TransferStatus.COMPLETED
        transfer.completed_by = actor_id
        transfer.completion_date = now
        transfer.updated_at = now
        session.flush()

    logger.info(
        "Transfer #%s completed in %s: patient %s moved %s -> %s",
        transfer.id,
        tenant.tenant_id,
        transfer.patient_id,
        from_bed.bed_number,
        to_bed.bed_number,
    )
    return transfer


def cancel_transfer(
    session: Session,
    tenant: TenantNamespace,
    transfer_id: int,
    *,
    reason: str = "",
    actor_id: int | None = None,
) -> BedTransfer:
    with unit_of_work(session, tenant):
        transfer = _load_transfer(session, transfer_id)
        validate_transfer_transition(transfer.status, TransferStatus.CANCELLED)

        transfer.status = TransferStatus.CANCELLED
        transfer.cancellation_reason = reason.strip() or None
        _append_note(transfer, f"Cancelled: {reason}" if reason.strip() else "Cancelled")
        transfer.updated_at = utcnow()
        settle_reservations(
            session,
            bed_id=transfer.to_bed_id,
            transfer_id=transfer.id,
            final_status=ReservationStatus.RELEASED,
        )
        session.flush()
        return transfer


def get_transfer(session: Session, tenant: TenantNamespace, transfer_id: int) -> BedTransfer:
    with unit_of_work(session, tenant, read_only=True):
        transfer = session.get(BedTransfer, transfer_id)
        if not transfer:
            raise NotFoundError(f"Transfer {transfer_id} not found")
        return transfer


def list_transfers(
    session: Session,
    tenant: TenantNamespace,
    *,
    patient_id: int | None = None,
    status: TransferStatus | None = None,
    page: int = 1,
    page_size: int = 50,
) -> dict:
    query = select(BedTransfer)
    if patient_id is not None:
        query = query.where(BedTransfer.patient_id == patient_id)
    if status is not None:
        query = query.where(BedTransfer.status == status)

    with unit_of_work(session, tenant, read_only=True):
        total = len(session.exec(query).all())
        rows = session.exec(
            query.order_by(BedTransfer.created_at.desc(), BedTransfer.id.desc())  # type: ignore[union-attr]
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return {"transfers": list(rows), "total": total, "page": page, "page_size": page_size}


async def complete_and_notify(
    session: Session,
    tenant: TenantNamespace,
    transfer_id: int,
    *,
    actor_id: int | None = None,
) -> BedTransfer:
    """Complete on a worker thread, then notify from the event loop."""
    transfer = await run_in_threadpool(complete_transfer, session, tenant, transfer_id, actor_id=actor_id)
    try:
        await send_transfer_notifications(tenant, transfer)
    except Exception:
        logger.exception("Transfer #%s committed but notifications failed", transfer.id)
    return transfer


def _reschedule(
    session: Session,
    transfer: BedTransfer,
    scheduled_time: datetime | None,
    *,
    actor_id: int | None,
):
    scheduled_time = naive_utc(scheduled_time) if scheduled_time is not None else None
    target = TransferStatus.SCHEDULED if scheduled_time else TransferStatus.PENDING
    if target != transfer.status:
        validate_transfer_transition(transfer.status, target)

    settle_reservations(
        session,
        bed_id=transfer.to_bed_id,
        transfer_id=transfer.id,
        final_status=ReservationStatus.RELEASED,
    )
    transfer.scheduled_time = scheduled_time
    transfer.status = target

    if RESERVE_SCHEDULED_TRANSFERS and scheduled_time and scheduled_time > utcnow():
        to_bed = lock_bed(session, transfer.to_bed_id)
        check = evaluate_bed(
            session,
            to_bed,
            holder_patient_id=transfer.patient_id,
            holder_transfer_id=transfer.id,
        )
        if not check.available:
            raise ConflictError(f"Destination bed {to_bed.bed_number} cannot be held: {check.reason}")
        _hold_for_schedule(session, transfer, actor_id=actor_id)


def update_transfer(
    session: Session,
    tenant: TenantNamespace,
    transfer_id: int,
    patch: dict,
    *,
    actor_id: int | None = None,
) -> BedTransfer:
    """Edit an open transfer.

    Setting ``scheduled_time`` moves a pending transfer to scheduled and clearing
    it moves a scheduled one back to pending. The destination hold follows the
    new schedule.
    """
    unknown = set(patch) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Transfer fields cannot be updated: {', '.join(sorted(unknown))}")

    with unit_of_work(session, tenant):
        transfer = _load_transfer(session, transfer_id)
        if transfer.status not in OPEN_TRANSFER_STATES:
            raise ConflictError(f"Transfer is already {transfer.status.value}")

        if "reason" in patch:
            transfer.reason = (patch["reason"] or "").strip()
        if patch.get("priority") is not None:
            transfer.priority = TransferPriority(patch["priority"])
        if "notes" in patch:
            transfer.notes = (patch["notes"] or "").strip()
        if "scheduled_time" in patch:
            _reschedule(session, transfer, patch["scheduled_time"], actor_id=actor_id)

        transfer.updated_at = utcnow()
        session.flush()

    logger.info("Transfer #%s updated in %s (%s)", transfer.id, tenant.tenant_id, transfer.status.value)
    return transfer
