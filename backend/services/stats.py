from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta

from sqlmodel import Session, select

from database import unit_of_work
from models import Bed, BedAssignment, BedStatus, BedTransfer, Department, DepartmentStatus, utcnow
from services.availability import query_available_beds
from services.departments import load_department
from tenancy import TenantNamespace

RECENT_WINDOW = timedelta(days=7)
CRITICAL_OCCUPANCY = 90.0
COUNTED_STATUSES = (
    BedStatus.AVAILABLE,
    BedStatus.OCCUPIED,
    BedStatus.MAINTENANCE,
    BedStatus.CLEANING,
    BedStatus.RESERVED,
)


def _rate(part: int, total: int) -> float:
    return round((part / total) * 100, 2) if total else 0.0


def _bed_counts(beds: list[Bed]) -> dict:
    by_status = Counter(bed.status for bed in beds)
    total = len(beds)
    counts = {"total_beds": total}
    for status in COUNTED_STATUSES:
        counts[f"{status.value}_beds"] = by_status.get(status, 0)
    counts["occupancy_rate"] = _rate(counts["occupied_beds"], total)
    counts["availability_rate"] = _rate(counts["available_beds"], total)
    return counts


def _department_metrics(session: Session, department: Department, *, since: datetime, now: datetime) -> dict:
    beds = list(
        session.exec(
            select(Bed).where(Bed.department_id == department.id, Bed.is_active == True)  # noqa: E712
        ).all()
    )
    bed_ids = [bed.id for bed in beds]

    assignments: list[BedAssignment] = []
    if bed_ids:
        assignments = list(
            session.exec(
                select(BedAssignment).where(BedAssignment.bed_id.in_(bed_ids))  # type: ignore[union-attr]
            ).all()
        )
    stays = [
        ((a.discharge_date or now) - a.admission_date).total_seconds() / 86400
        for a in assignments
        if a.admission_date is not None
    ]

    recent_transfers = session.exec(
        select(BedTransfer).where(
            (BedTransfer.from_department_id == department.id) | (BedTransfer.to_department_id == department.id),
            BedTransfer.created_at >= since,
        )
    ).all()

    return {
        "department_id": department.id,
        "department_code": department.department_code,
        "department_name": department.name,
        "total_bed_capacity": department.total_bed_capacity,
        **_bed_counts(beds),
        "average_stay_days": round(sum(stays) / len(stays), 1) if stays else 0.0,
        "recent_admissions": sum(1 for a in assignments if a.admission_date >= since),
        "recent_discharges": sum(1 for a in assignments if a.discharge_date and a.discharge_date >= since),
        "recent_transfers": len(recent_transfers),
    }


def department_occupancy(session: Session, tenant: TenantNamespace, department_id: int) -> dict:
    now = utcnow()
    with unit_of_work(session, tenant, read_only=True):
        department = load_department(session, department_id)
        return _department_metrics(session, department, since=now - RECENT_WINDOW, now=now)


def occupancy_overview(session: Session, tenant: TenantNamespace) -> dict:
    now = utcnow()
    with unit_of_work(session, tenant, read_only=True):
        departments = session.exec(
            select(Department)
            .where(Department.status == DepartmentStatus.ACTIVE)
            .order_by(Department.name.asc())  # type: ignore[union-attr]
        ).all()
        rows = [
            _department_metrics(session, department, since=now - RECENT_WINDOW, now=now)
            for department in departments
        ]

    totals = {"total_beds": sum(row["total_beds"] for row in rows)}
    for status in COUNTED_STATUSES:
        key = f"{status.value}_beds"
        totals[key] = sum(row[key] for row in rows)
    totals["occupancy_rate"] = _rate(totals["occupied_beds"], totals["total_beds"])
    totals["availability_rate"] = _rate(totals["available_beds"], totals["total_beds"])

    return {
        "tenant": tenant.tenant_id,
        "generated_at": now.isoformat(),
        "departments": rows,
        "totals": totals,
    }


def department_capacity(session: Session, tenant: TenantNamespace, department_id: int) -> dict:
    """Can this department take another patient right now?"""
    with unit_of_work(session, tenant, read_only=True):
        department = load_department(session, department_id)
        beds = session.exec(
            select(Bed).where(Bed.department_id == department.id, Bed.is_active == True)  # noqa: E712
        ).all()
        available = query_available_beds(session, department_id=department.id)

    total = len(beds)
    occupied = sum(1 for bed in beds if bed.status == BedStatus.OCCUPIED)
    return {
        "department_id": department.id,
        "total_bed_capacity": department.total_bed_capacity,
        "total_beds": total,
        "available_beds": len(available),
        "occupied_beds": occupied,
        "occupancy_rate": _rate(occupied, total),
        "has_capacity": bool(available),
    }


def availability_summary(session: Session, tenant: TenantNamespace) -> dict:
    now = utcnow()
    with unit_of_work(session, tenant, read_only=True):
        rows = session.exec(
            select(Bed, Department)
            .join(Department, Bed.department_id == Department.id)
            .where(Bed.is_active == True)  # noqa: E712
        ).all()
        available_ids = {bed.id for bed in query_available_beds(session)}

    by_department: dict[str, int] = {}
    by_bed_type: dict[str, int] = {}
    department_totals: Counter = Counter()
    for bed, department in rows:
        is_available = int(bed.id in available_ids)
        department_totals[department.name] += 1
        by_department[department.name] = by_department.get(department.name, 0) + is_available
        by_bed_type[bed.bed_type.value] = by_bed_type.get(bed.bed_type.value, 0) + is_available

    critical = sorted(
        name
        for name, total in department_totals.items()
        if _rate(total - by_department[name], total) > CRITICAL_OCCUPANCY
    )
    return {
        "tenant": tenant.tenant_id,
        "generated_at": now.isoformat(),
        "total_available": len(available_ids),
        "by_department": by_department,
        "by_bed_type": by_bed_type,
        "critical_departments": critical,
    }
