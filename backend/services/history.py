from __future__ import annotations

from sqlmodel import Session, select

from database import unit_of_work
from models import Bed, BedEvent, BedStatus
from tenancy import TenantNamespace


def record_bed_event(
    session: Session,
    bed: Bed,
    *,
    event_type: str,
    previous_status: BedStatus | None,
    actor_id: int | None,
    patient_id: int | None = None,
    notes: str = "",
) -> BedEvent:
    event = BedEvent(
        bed_id=bed.id,
        event_type=event_type.strip().lower(),
        patient_id=patient_id,
        previous_status=previous_status,
        new_status=bed.status,
        actor_id=actor_id,
        notes=notes.strip(),
    )
    session.add(event)
    return event


def bed_history(
    session: Session,
    tenant: TenantNamespace,
    bed_id: int,
    *,
    limit: int = 20,
) -> list[BedEvent]:
    with unit_of_work(session, tenant, read_only=True):
        return list(
            session.exec(
                select(BedEvent)
                .where(BedEvent.bed_id == bed_id)
                .order_by(BedEvent.timestamp.desc(), BedEvent.id.desc())  # type: ignore[union-attr]
                .limit(limit)
            ).all()
        )
