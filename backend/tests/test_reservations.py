from datetime import timedelta

import pytest

from errors import ConflictError, NotFoundError, ValidationError
from models import BedStatus, ReservationStatus, utcnow
from services.assignments import admit_patient
from services.availability import check_bed_availability
from services.beds import update_bed_status
from services.history import bed_history
from services.reservations import expire_reservations, list_reservations, release_reservation, reserve_bed
from services.transfers import request_transfer


def test_reserve_and_release(session, tenant, make_bed):
    bed = make_bed("R-1")
    reservation = reserve_bed(
        session,
        tenant,
        bed_id=bed.id,
        patient_id=4,
        reserved_until=utcnow() + timedelta(hours=1),
        actor_id=2,
    )
    assert reservation.status == ReservationStatus.ACTIVE
    assert bed_history(session, tenant, bed.id, limit=1)[0].event_type == "reserved"

    released = release_reservation(session, tenant, reservation.id)
    assert released.status == ReservationStatus.RELEASED
    assert check_bed_availability(session, tenant, bed.id).available is True

    with pytest.raises(ConflictError, match="already released"):
        release_reservation(session, tenant, reservation.id)
    with pytest.raises(NotFoundError):
        release_reservation(session, tenant, 999)


def test_reservation_rules(session, tenant, make_bed):
    bed = make_bed("R-1")
    with pytest.raises(ValidationError, match="future"):
        reserve_bed(session, tenant, bed_id=bed.id, patient_id=4, reserved_until=utcnow() - timedelta(minutes=1))

    update_bed_status(session, tenant, bed.id, BedStatus.MAINTENANCE)
    with pytest.raises(ConflictError, match="cannot be reserved"):
        reserve_bed(session, tenant, bed_id=bed.id, patient_id=4, reserved_until=utcnow() + timedelta(hours=1))


def test_transfer_hold_cannot_be_released_directly(session, tenant, make_bed):
    source = make_bed("R-1")
    destination = make_bed("R-2")
    admit_patient(session, tenant, bed_id=source.id, patient_id=4)
    request_transfer(
        session,
        tenant,
        from_bed_id=source.id,
        to_bed_id=destination.id,
        patient_id=4,
        scheduled_time=utcnow() + timedelta(hours=1),
    )
    [hold] = list_reservations(session, tenant, bed_id=destination.id)

    with pytest.raises(ConflictError, match="cancel the transfer"):
        release_reservation(session, tenant, hold.id)


def test_expire_reservations(session, tenant, make_bed):
    bed = make_bed("R-1")
    reserve_bed(session, tenant, bed_id=bed.id, patient_id=4, reserved_until=utcnow() + timedelta(minutes=5))

    assert expire_reservations(session, tenant) == 0
    assert expire_reservations(session, tenant, now=utcnow() + timedelta(minutes=10)) == 1

    [reservation] = list_reservations(session, tenant)
    assert reservation.status == ReservationStatus.EXPIRED
    assert check_bed_availability(session, tenant, bed.id).available is True
    assert list_reservations(session, tenant, status=ReservationStatus.ACTIVE) == []
