from datetime import timedelta

import pytest

from errors import NotFoundError
from models import BedStatus, BedType, utcnow
from services.assignments import admit_patient
from services.availability import check_bed_availability, find_nearest_available_bed, list_available_beds
from services.beds import deactivate_bed, update_bed_status
from services.departments import create_department
from services.reservations import reserve_bed


def test_available_bed(session, tenant, make_bed):
    bed = make_bed("A-101")

    check = check_bed_availability(session, tenant, bed.id)
    assert check.available is True
    assert check.reason is None
    assert check.as_dict()["current_status"] == "available"


def test_missing_bed_is_not_found(session, tenant):
    with pytest.raises(NotFoundError):
        check_bed_availability(session, tenant, 404)


def test_reasons_for_each_negative_case(session, tenant, make_bed):
    inactive = make_bed("A-101")
    deactivate_bed(session, tenant, inactive.id)
    check = check_bed_availability(session, tenant, inactive.id)
    assert (check.available, check.code) == (False, "inactive")

    cleaning = make_bed("A-102")
    update_bed_status(session, tenant, cleaning.id, BedStatus.CLEANING)
    check = check_bed_availability(session, tenant, cleaning.id)
    assert (check.available, check.code) == (False, "status")
    assert check.reason == "Bed is being cleaned"

    occupied = make_bed("A-103")
    admit_patient(session, tenant, bed_id=occupied.id, patient_id=1)
    check = check_bed_availability(session, tenant, occupied.id)
    assert check.available is False
    assert check.has_active_assignment is True

    reserved = make_bed("A-104")
    until = utcnow() + timedelta(hours=2)
    reserve_bed(session, tenant, bed_id=reserved.id, patient_id=2, reserved_until=until)
    check = check_bed_availability(session, tenant, reserved.id)
    assert (check.available, check.code) == (False, "reserved")
    assert check.reason == f"Bed is reserved until {until.isoformat()}"
    assert check.reserved_until == until


def test_list_available_beds_filters_and_orders(session, tenant, make_bed):
    make_bed("C-3", bed_type=BedType.ICU, floor_number=3, features=["Ventilator", "monitor"])
    make_bed("C-1", floor_number=2, features=["oxygen"])
    make_bed("C-2", floor_number=2)
    busy = make_bed("C-0")
    admit_patient(session, tenant, bed_id=busy.id, patient_id=9)
    held = make_bed("C-4")
    reserve_bed(
        session,
        tenant,
        bed_id=held.id,
        patient_id=10,
        reserved_until=utcnow() + timedelta(hours=1),
    )

    assert [b.bed_number for b in list_available_beds(session, tenant)] == ["C-1", "C-2", "C-3"]
    assert [b.bed_number for b in list_available_beds(session, tenant, floor_number=2)] == ["C-1", "C-2"]
    assert [b.bed_number for b in list_available_beds(session, tenant, bed_type=BedType.ICU)] == ["C-3"]
    assert [
        b.bed_number for b in list_available_beds(session, tenant, required_features=["ventilator"])
    ] == ["C-3"]
    assert [b.bed_number for b in list_available_beds(session, tenant, limit=1, offset=1)] == ["C-2"]


def test_nearest_bed_widens_the_search(session, tenant, department, make_bed):
    icu = create_department(session, tenant, department_code="icu", name="Intensive Care")
    ward_bed = make_bed("N-201", floor_number=2)
    make_bed("N-301", floor_number=3, bed_type=BedType.ICU)
    make_bed("N-302", floor_number=3, department_id=icu.id, bed_type=BedType.ICU, features=["ventilator"])
    make_bed("N-401", floor_number=4, department_id=icu.id, bed_type=BedType.ISOLATION)

    def nearest(**preferences):
        bed = find_nearest_available_bed(session, tenant, **preferences)
        return bed.bed_number if bed else None

    assert nearest(department_id=department.id, floor_number=2) == "N-201"
    assert nearest(department_id=department.id, floor_number=3, bed_type=BedType.ICU) == "N-301"
    assert nearest(department_id=department.id, floor_number=4) == "N-201"
    assert nearest(department_id=department.id, floor_number=4, bed_type=BedType.ISOLATION) == "N-401"
    assert nearest(department_id=department.id, required_features=["Ventilator"]) == "N-302"
    assert nearest(bed_type=BedType.MATERNITY, required_features=["crib"]) is None

    admit_patient(session, tenant, bed_id=ward_bed.id, patient_id=1)
    assert nearest(department_id=department.id, floor_number=2) == "N-301"
