import pytest

from errors import ConflictError, NotFoundError
from models import BedStatus, DischargeType, TaskStatus
from services.assignments import admit_patient
from services.availability import check_bed_availability
from services.beds import get_bed, update_bed_status
from services.discharges import DischargeData, discharge_patient
from services.history import bed_history
from services.housekeeping import complete_housekeeping_task, list_housekeeping_tasks


@pytest.fixture
def discharged_bed(session, tenant, make_bed):
    bed = make_bed("H-1")
    admit_patient(session, tenant, bed_id=bed.id, patient_id=5)
    discharge_patient(
        session,
        tenant,
        bed_id=bed.id,
        patient_id=5,
        data=DischargeData(discharge_type=DischargeType.RECOVERED),
    )
    return bed.id


def test_completing_cleaning_returns_bed_to_pool(session, tenant, discharged_bed):
    [task] = list_housekeeping_tasks(session, tenant, status=TaskStatus.PENDING)

    done = complete_housekeeping_task(session, tenant, task.id, actor_id=21)

    assert done.status == TaskStatus.COMPLETED
    assert done.completed_by == 21
    assert done.completed_at is not None
    bed = get_bed(session, tenant, discharged_bed)
    assert bed.status == BedStatus.AVAILABLE
    assert bed.last_cleaned_at is not None
    assert check_bed_availability(session, tenant, discharged_bed).available is True
    assert bed_history(session, tenant, discharged_bed, limit=1)[0].event_type == "cleaned"
    assert list_housekeeping_tasks(session, tenant, status=TaskStatus.PENDING) == []


def test_task_completes_once(session, tenant, discharged_bed):
    [task] = list_housekeeping_tasks(session, tenant)
    complete_housekeeping_task(session, tenant, task.id)

    with pytest.raises(ConflictError, match="already completed"):
        complete_housekeeping_task(session, tenant, task.id)
    with pytest.raises(NotFoundError):
        complete_housekeeping_task(session, tenant, 999)


def test_bed_moved_out_of_cleaning_keeps_its_status(session, tenant, discharged_bed):
    update_bed_status(session, tenant, discharged_bed, BedStatus.MAINTENANCE)
    [task] = list_housekeeping_tasks(session, tenant)

    complete_housekeeping_task(session, tenant, task.id)

    assert get_bed(session, tenant, discharged_bed).status == BedStatus.MAINTENANCE
