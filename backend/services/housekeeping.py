from __future__ import annotations

import logging

from sqlmodel import Session, select

from database import unit_of_work
from errors import ConflictError, NotFoundError
from models import Bed, BedStatus, HousekeepingTask, TaskStatus, utcnow
from services.availability import active_assignment_for_bed, lock_bed
from services.history import record_bed_event
from state_machine import validate_status_change
from tenancy import TenantNamespace

logger = logging.getLogger("bedwise.housekeeping")


def create_housekeeping_task(
    session: Session,
    bed: Bed,
    *,
    actor_id: int | None,
    notes: str = "",
    task_type: str = "deep_cleaning",
    priority: str = "high",
) -> HousekeepingTask:
    task = HousekeepingTask(
        bed_id=bed.id,
        task_type=task_type,
        priority=priority,
        notes=notes.strip(),
        created_by=actor_id,
    )
    session.add(task)
    return task


def list_housekeeping_tasks(
    session: Session,
    tenant: TenantNamespace,
    *,
    status: TaskStatus | None = None,
    bed_id: int | None = None,
) -> list[HousekeepingTask]:
    query = select(HousekeepingTask)
    if status is not None:
        query = query.where(HousekeepingTask.status == status)
    if bed_id is not None:
        query = query.where(HousekeepingTask.bed_id == bed_id)
    with unit_of_work(session, tenant, read_only=True):
        return list(
            session.exec(
                query.order_by(HousekeepingTask.created_at.asc(), HousekeepingTask.id.asc())  # type: ignore[union-attr]
            ).all()
        )


def complete_housekeeping_task(
    session: Session,
    tenant: TenantNamespace,
    task_id: int,
    *,
    actor_id: int | None = None,
) -> HousekeepingTask:
    """Close a cleaning task and return a bed still in cleaning to the available pool."""
    with unit_of_work(session, tenant):
        task = session.exec(
            select(HousekeepingTask).where(HousekeepingTask.id == task_id).with_for_update()
        ).first()
        if not task:
            raise NotFoundError(f"Housekeeping task {task_id} not found")
        if task.status != TaskStatus.PENDING:
            raise ConflictError(f"Housekeeping task is already {task.status.value}")

        now = utcnow()
        bed = lock_bed(session, task.bed_id)
        if bed.status == BedStatus.CLEANING:
            validate_status_change(
                bed.status,
                BedStatus.AVAILABLE,
                has_active_assignment=active_assignment_for_bed(session, bed.id) is not None,
            )
            bed.status = BedStatus.AVAILABLE
            bed.last_cleaned_at = now
            bed.updated_by = actor_id
            bed.updated_at = now
            record_bed_event(
                session,
                bed,
                event_type="cleaned",
                previous_status=BedStatus.CLEANING,
                actor_id=actor_id,
                notes=f"Housekeeping task #{task.id} completed",
            )

        task.status = TaskStatus.COMPLETED
        task.completed_by = actor_id
        task.completed_at = now
        session.flush()

    logger.info("Housekeeping task #%s completed for bed %s in %s", task.id, bed.bed_number, tenant.tenant_id)
    return task
