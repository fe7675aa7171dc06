import json
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, text
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(value: datetime) -> datetime:
    """Store and compare timestamps as naive UTC, like every other column."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# Timestamps are stored as naive UTC; the column type is pinned so no SQLModel
# release maps them to timezone-aware columns.
NAIVE_TIMESTAMP = DateTime(timezone=False)


class BedType(str, Enum):
    STANDARD = "standard"
    ICU = "icu"
    ISOLATION = "isolation"
    PEDIATRIC = "pediatric"
    MATERNITY = "maternity"


class BedStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    CLEANING = "cleaning"
    RESERVED = "reserved"
    BLOCKED = "blocked"


class DepartmentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AssignmentStatus(str, Enum):
    ACTIVE = "active"
    DISCHARGED = "discharged"
    TRANSFERRED = "transferred"


class AdmissionType(str, Enum):
    EMERGENCY = "emergency"
    SCHEDULED = "scheduled"
    TRANSFER = "transfer"


class PatientCondition(str, Enum):
    STABLE = "stable"
    MODERATE = "moderate"
    SERIOUS = "serious"
    CRITICAL = "critical"


class TransferStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransferPriority(str, Enum):
    ROUTINE = "routine"
    URGENT = "urgent"
    EMERGENCY = "emergency"


class DischargeType(str, Enum):
    RECOVERED = "recovered"
    TRANSFERRED_OUT = "transferred_out"
    AGAINST_MEDICAL_ADVICE = "against_medical_advice"
    DECEASED = "deceased"


class BillStatus(str, Enum):
    PAID = "paid"
    PENDING = "pending"
    INSURANCE_CLAIM = "insurance_claim"


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    FULFILLED = "fulfilled"
    RELEASED = "released"
    EXPIRED = "expired"


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


# Enum columns persist the member *name*, so raw SQL predicates compare
# against 'ACTIVE' rather than 'active'.
ACTIVE_ROW = text("status = 'ACTIVE'")


class Department(SQLModel, table=True):
    __tablename__ = "departments"

    id: Optional[int] = Field(default=None, primary_key=True)
    department_code: str = Field(unique=True, index=True, max_length=32)
    name: str = Field(max_length=120)
    description: str = ""
    floor_number: Optional[int] = None
    building: Optional[str] = None
    total_bed_capacity: int = 0
    status: DepartmentStatus = DepartmentStatus.ACTIVE
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)
    updated_at: Optional[datetime] = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)


class Bed(SQLModel, table=True):
    __tablename__ = "beds"

    id: Optional[int] = Field(default=None, primary_key=True)
    bed_number: str = Field(unique=True, index=True, max_length=32)
    department_id: int = Field(foreign_key="departments.id", index=True)
    bed_type: BedType = BedType.STANDARD
    floor_number: Optional[int] = None
    room_number: Optional[str] = None
    wing: Optional[str] = None
    features_json: str = Field(default="[]")
    status: BedStatus = Field(default=BedStatus.AVAILABLE, index=True)
    is_active: bool = True
    last_cleaned_at: Optional[datetime] = Field(default=None, sa_type=NAIVE_TIMESTAMP)
    last_maintenance_at: Optional[datetime] = Field(default=None, sa_type=NAIVE_TIMESTAMP)
    notes: str = ""
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)
    updated_at: Optional[datetime] = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)

    @property
    def features(self) -> list[str]:
        return json.loads(self.features_json)

    @features.setter
    def features(self, val: list[str]):
        self.features_json = json.dumps(val)


class BedAssignment(SQLModel, table=True):
    __tablename__ = "bed_assignments"
    __table_args__ = (
        Index(
            "uq_bed_assignments_active_bed",
            "bed_id",
            unique=True,
            sqlite_where=ACTIVE_ROW,
            postgresql_where=ACTIVE_ROW,
        ),
        Index(
            "uq_bed_assignments_active_patient",
            "patient_id",
            unique=True,
            sqlite_where=ACTIVE_ROW,
            postgresql_where=ACTIVE_ROW,
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    bed_id: int = Field(foreign_key="beds.id", index=True)
    patient_id: int = Field(index=True)
    admission_date: datetime = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)
    discharge_date: Optional[datetime] = Field(default=None, sa_type=NAIVE_TIMESTAMP)
    expected_discharge_date: Optional[datetime] = Field(default=None, sa_type=NAIVE_TIMESTAMP)
    admission_type: AdmissionType = AdmissionType.SCHEDULED
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    patient_condition: Optional[PatientCondition] = None
    assigned_nurse_id: Optional[int] = None
    assigned_doctor_id: Optional[int] = None
    reason: str = ""
    notes: str = ""
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)
    updated_at: Optional[datetime] = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)


class BedTransfer(SQLModel, table=True):
    __tablename__ = "bed_transfers"

    id: Optional[int] = Field(default=None, primary_key=True)
    patient_id: int = Field(index=True)
    from_bed_id: int = Field(foreign_key="beds.id")
    to_bed_id: int = Field(foreign_key="beds.id")
    from_department_id: Optional[int] = Field(default=None, foreign_key="departments.id")
    to_department_id: Optional[int] = Field(default=None, foreign_key="departments.id")
    reason: str = ""
    priority: TransferPriority = TransferPriority.ROUTINE
    scheduled_time: Optional[datetime] = Field(default=None, sa_type=NAIVE_TIMESTAMP)
    status: TransferStatus = Field(default=TransferStatus.PENDING, index=True)
    requested_by: Optional[int] = None
    completed_by: Optional[int] = None
    completion_date: Optional[datetime] = Field(default=None, sa_type=NAIVE_TIMESTAMP)
    cancellation_reason: Optional[str] = None
    notes: str = ""
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)
    updated_at: Optional[datetime] = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)


class PatientDischarge(SQLModel, table=True):
    __tablename__ = "patient_discharges"

    id: Optional[int] = Field(default=None, primary_key=True)
    bed_id: int = Field(foreign_key="beds.id", index=True)
    patient_id: int = Field(index=True)
    assignment_id: int = Field(foreign_key="bed_assignments.id")
    discharge_date: datetime = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)
    discharge_type: DischargeType
    discharge_summary: str = ""
    final_bill_status: BillStatus = BillStatus.PENDING
    follow_up_required: bool = False
    follow_up_date: Optional[datetime] = Field(default=None, sa_type=NAIVE_TIMESTAMP)
    follow_up_instructions: Optional[str] = None
    medications_json: str = Field(default="[]")
    home_care_instructions: Optional[str] = None
    transport_arrangement: str = ""
    performed_by: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)

    @property
    def medications(self) -> list[str]:
        return json.loads(self.medications_json)

    @medications.setter
    def medications(self, val: list[str]):
        self.medications_json = json.dumps(val)


class BedReservation(SQLModel, table=True):
    __tablename__ = "bed_reservations"

    id: Optional[int] = Field(default=None, primary_key=True)
    bed_id: int = Field(foreign_key="beds.id", index=True)
    patient_id: int
    transfer_id: Optional[int] = Field(default=None, foreign_key="bed_transfers.id")
    reserved_from: datetime = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)
    reserved_until: datetime = Field(sa_type=NAIVE_TIMESTAMP)
    status: ReservationStatus = Field(default=ReservationStatus.ACTIVE, index=True)
    notes: str = ""
    created_by: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)
    updated_at: Optional[datetime] = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)


class HousekeepingTask(SQLModel, table=True):
    __tablename__ = "housekeeping_tasks"

    id: Optional[int] = Field(default=None, primary_key=True)
    bed_id: int = Field(foreign_key="beds.id", index=True)
    task_type: str = "deep_cleaning"
    priority: str = "high"
    status: TaskStatus = Field(default=TaskStatus.PENDING, index=True)
    notes: str = ""
    created_by: Optional[int] = None
    completed_by: Optional[int] = None
    completed_at: Optional[datetime] = Field(default=None, sa_type=NAIVE_TIMESTAMP)
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)


class FollowUpAppointment(SQLModel, table=True):
    __tablename__ = "follow_up_appointments"

    id: Optional[int] = Field(default=None, primary_key=True)
    patient_id: int = Field(index=True)
    discharge_id: int = Field(foreign_key="patient_discharges.id")
    scheduled_date: datetime = Field(sa_type=NAIVE_TIMESTAMP)
    instructions: str = ""
    created_by: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)


class BedEvent(SQLModel, table=True):
    __tablename__ = "bed_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    bed_id: int = Field(foreign_key="beds.id", index=True)
    event_type: str = Field(max_length=40)
    patient_id: Optional[int] = None
    previous_status: Optional[BedStatus] = None
    new_status: Optional[BedStatus] = None
    actor_id: Optional[int] = None
    notes: str = ""
    timestamp: datetime = Field(default_factory=utcnow, sa_type=NAIVE_TIMESTAMP)


TENANT_TABLES = [
    Department.__table__,
    Bed.__table__,
    BedAssignment.__table__,
    BedTransfer.__table__,
    PatientDischarge.__table__,
    BedReservation.__table__,
    HousekeepingTask.__table__,
    FollowUpAppointment.__table__,
    BedEvent.__table__,
]
