from datetime import datetime, timedelta, timezone

from sqlalchemy import DateTime
from sqlmodel import SQLModel

from models import BedReservation, naive_utc, utcnow
from services.reservations import list_reservations, reserve_bed


def test_timestamp_columns_are_naive():
    timestamp_columns = [
        (table.name, column.name, column.type.timezone)
        for table in SQLModel.metadata.sorted_tables
        for column in table.columns
        if isinstance(column.type, DateTime)
    ]

    assert ("bed_reservations", "reserved_until", False) in timestamp_columns
    assert [c for c in timestamp_columns if c[2]] == []
    assert BedReservation.__table__.c.created_at.type.timezone is False


def test_naive_utc_normalizes_offsets():
    local = datetime(2026, 10, 19, 12, 30, tzinfo=timezone(timedelta(hours=2)))

    assert naive_utc(local) == datetime(2026, 10, 19, 10, 30)
    assert naive_utc(datetime(2026, 10, 19, 12, 30)) == datetime(2026, 10, 19, 12, 30)
    assert utcnow().tzinfo is None


def test_aware_reservation_window_round_trips_as_naive(session, tenant, make_bed):
    bed = make_bed("M-1")
    until = (utcnow() + timedelta(hours=2)).replace(microsecond=0)

    reserve_bed(session, tenant, bed_id=bed.id, patient_id=1, reserved_until=until.replace(tzinfo=timezone.utc))

    [stored] = list_reservations(session, tenant, bed_id=bed.id)
    assert stored.reserved_until == until
    assert stored.reserved_until.tzinfo is None
