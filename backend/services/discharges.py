"""Discharge protocol.

The discharge record, the assignment termination, the bed's move into cleaning
and the housekeeping / follow-up fan-out commit together. Notifications go out
afterwards and may fail without undoing anything.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session, select

from database import unit_of_work
from errors import NotFoundError, ValidationError
from models import (
    AssignmentStatus,
    Bed,
    BedStatus,
    BillStatus,
    DischargeType,
    FollowUpAppointment,
    PatientDischarge,
    naive_utc,
    utcnow,
)
from services.assignments import terminate_assignment
from services.availability import active_assignment_for_bed, lock_bed
from services.history import record_bed_event
from services.housekeeping import create_housekeeping_task
from services.notifications import send_discharge_notifications
from state_machine import POST_DISCHARGE_STATUS
from tenancy import TenantNamespace

logger = logging.getLogger("bedwise.discharge")


@dataclass
class DischargeData:
    discharge_type: DischargeType
    discharge_summary: str = ""
    discharge_date: datetime | None = None
    final_bill_status: BillStatus = BillStatus.PENDING
    follow_up_required: bool = False
    follow_up_date: datetime | None = None
    follow_up_instructions: str | None = None
    medications: list[str] = field(default_factory=list)
    home_care_instructions: str | None = None
    transport_arrangement: str = ""
    notifications: list[str] = field(default_factory=list)

    def __post_init__(self):
        if self.discharge_date is not None:
            self.discharge_date = naive_utc(self.discharge_date)
        if self.follow_up_date is not None:
            self.follow_up_date = naive_utc(self.follow_up_date)


def validate_discharge_data(data: DischargeData):
    if data.follow_up_required:
        if data.follow_up_date is None:
            raise ValidationError("Follow-up date is required when follow-up is marked as required")
        if not (data.follow_up_instructions or "").strip():
            raise ValidationError("Follow-up instructions are required when follow-up is marked as required")
    if data.discharge_date and data.follow_up_date and data.follow_up_date < data.discharge_date:
        raise ValidationError("Follow-up date cannot be before the discharge date")


def _record_discharge(
    session: Session,
    *,
    bed_id: int,
    patient_id: int,
    data: DischargeData,
    actor_id: int | None,
) -> tuple[PatientDischarge, Bed]:
    bed = lock_bed(session, bed_id)
    if bed.status != BedStatus.OCCUPIED:
        raise ValidationError(f"Bed {bed.bed_number} is not currently occupied")
    assignment = active_assignment_for_bed(session, bed.id)
    if assignment is None or assignment.patient_id != patient_id:
        raise ValidationError(f"Patient {patient_id} is not currently assigned to bed {bed.bed_number}")

    validate_discharge_data(data)

    discharged_at = data.discharge_date or utcnow()
    discharge = PatientDischarge(
        bed_id=bed.id,
        patient_id=patient_id,
        assignment_id=assignment.id,
        discharge_date=discharged_at,
        discharge_type=data.discharge_type,
        discharge_summary=data.discharge_summary.strip(),
        final_bill_status=data.final_bill_status,
        follow_up_required=data.follow_up_required,
        follow_up_date=data.follow_up_date,
        follow_up_instructions=(data.follow_up_instructions or "").strip() or None,
        home_care_instructions=data.home_care_instructions,
        transport_arrangement=data.transport_arrangement.strip(),
        performed_by=actor_id,
    )
    discharge.medications = [m.strip() for m in data.medications if m.strip()]
    session.add(discharge)
    session.flush()

    terminate_assignment(
        session,
        assignment,
        AssignmentStatus.DISCHARGED,
        actor_id=actor_id,
        ended_at=discharged_at,
    )

    previous_status = bed.status
    bed.status = POST_DISCHARGE_STATUS
    bed.updated_by = actor_id
    bed.updated_at = utcnow()
    record_bed_event(
        session,
        bed,
        event_type="discharge",
        previous_status=previous_status,
        actor_id=actor_id,
        patient_id=patient_id,
        notes=f"Patient discharged - {data.discharge_type.value}",
    )

    create_housekeeping_task(
        session,
        bed,
        actor_id=actor_id,
        notes=f"Post-discharge cleaning required. Discharge type: {data.discharge_type.value}",
    )

    if data.follow_up_required:
        session.add(
            FollowUpAppointment(
                patient_id=patient_id,
                discharge_id=discharge.id,
                scheduled_date=data.follow_up_date,
                instructions=(data.follow_up_instructions or "").strip(),
                created_by=actor_id,
            )
        )
    session.flush()
    return discharge, bed


def _commit_discharge(
    session: Session,
    tenant: TenantNamespace,
    *,
    bed_id: int,
    patient_id: int,
    data: DischargeData,
    actor_id: int | None,
) -> tuple[PatientDischarge, Bed]:
    with unit_of_work(session, tenant):
        discharge, bed = _record_discharge(
            session, bed_id=bed_id, patient_id=patient_id, data=data, actor_id=actor_id
        )
    logger.info("Patient %s discharged from bed %s in %s", patient_id, bed.bed_number, tenant.tenant_id)
    return discharge, bed


def discharge_patient(
    session: Session,
    tenant: TenantNamespace,
    *,
    bed_id: int,
    patient_id: int,
    data: DischargeData,
    actor_id: int | None = None,
) -> PatientDischarge:
    discharge, _ = _commit_discharge(
        session, tenant, bed_id=bed_id, patient_id=patient_id, data=data, actor_id=actor_id
    )
    return discharge


async def discharge_and_notify(
    session: Session,
    tenant: TenantNamespace,
    *,
    bed_id: int,
    patient_id: int,
    data: DischargeData,
    actor_id: int | None = None,
) -> PatientDischarge:
    """Discharge on a worker thread, then notify from the event loop."""
    discharge, bed = await run_in_threadpool(
        _commit_discharge,
        session,
        tenant,
        bed_id=bed_id,
        patient_id=patient_id,
        data=data,
        actor_id=actor_id,
    )

    try:
        await send_discharge_notifications(
            tenant,
            discharge,
            department_id=bed.department_id,
            recipients=data.notifications,
        )
    except Exception:
        logger.exception("Discharge #%s committed but notifications failed", discharge.id)
    return discharge


def get_discharge(session: Session, tenant: TenantNamespace, discharge_id: int) -> PatientDischarge:
    with unit_of_work(session, tenant, read_only=True):
        discharge = session.get(PatientDischarge, discharge_id)
        if not discharge:
            raise NotFoundError(f"Discharge {discharge_id} not found")
        return discharge


def list_follow_ups(session: Session, tenant: TenantNamespace, *, patient_id: int) -> list[FollowUpAppointment]:
    with unit_of_work(session, tenant, read_only=True):
        return list(
            session.exec(
                select(FollowUpAppointment)
                .where(FollowUpAppointment.patient_id == patient_id)
                .order_by(FollowUpAppointment.scheduled_date.asc())  # type: ignore[union-attr]
            ).all()
        )


def list_discharges(
    session: Session,
    tenant: TenantNamespace,
    *,
    patient_id: int | None = None,
    bed_id: int | None = None,
    discharge_type: DischargeType | None = None,
    page: int = 1,
    page_size: int = 50,
) -> dict:
    query = select(PatientDischarge)
    if patient_id is not None:
        query = query.where(PatientDischarge.patient_id == patient_id)
    if bed_id is not None:
        query = query.where(PatientDischarge.bed_id == bed_id)
    if discharge_type is not None:
        query = query.where(PatientDischarge.discharge_type == discharge_type)

    with unit_of_work(session, tenant, read_only=True):
        total = len(session.exec(query).all())
        rows = session.exec(
            query.order_by(PatientDischarge.discharge_date.desc(), PatientDischarge.id.desc())  # type: ignore[union-attr]
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return {"discharges": list(rows), "total": total, "page": page, "page_size": page_size}
