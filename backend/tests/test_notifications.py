import threading

import pytest

from models import BedStatus, DischargeType, TransferStatus
from services.assignments import admit_patient
from services.beds import get_bed
from services.discharges import DischargeData, discharge_and_notify, list_discharges
from services.transfers import complete_and_notify, request_transfer
from ws import manager


@pytest.mark.anyio
async def test_notification_failure_keeps_discharge(session, tenant, make_bed, monkeypatch):
    bed = make_bed("N-1")
    admit_patient(session, tenant, bed_id=bed.id, patient_id=3)

    async def broken_broadcast(*args, **kwargs):
        raise ConnectionError("status board offline")

    monkeypatch.setattr(manager, "broadcast_status", broken_broadcast)

    discharge = await discharge_and_notify(
        session,
        tenant,
        bed_id=bed.id,
        patient_id=3,
        data=DischargeData(discharge_type=DischargeType.RECOVERED, notifications=["ward-clerk"]),
    )

    assert discharge.id is not None
    assert list_discharges(session, tenant)["total"] == 1
    assert get_bed(session, tenant, bed.id).status == BedStatus.CLEANING


def test_websocket_requires_known_tenant(client):
    from starlette.websockets import WebSocketDisconnect

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/status"):
            pass
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/status?tenant=elsewhere"):
            pass


def test_status_and_department_channels_receive_discharge(client, headers, api_bed):
    bed = api_bed("N-1")
    client.post("/assignments", headers=headers, json={"bed_id": bed["id"], "patient_id": 3})

    with client.websocket_connect("/ws/status?tenant=demo_hospital") as status_ws:
        with client.websocket_connect(f"/ws/departments/{bed['department_id']}?tenant=demo_hospital") as dept_ws:
            response = client.post(
                "/discharges",
                headers=headers,
                json={"bed_id": bed["id"], "patient_id": 3, "discharge_type": "recovered"},
            )
            assert response.status_code == 201, response.text

            for ws in (status_ws, dept_ws):
                message = ws.receive_json()
                assert message["event"] == "bed_discharged"
                assert message["bed_id"] == bed["id"]
                assert message["tenant"] == "demo_hospital"
                assert message["housekeeping_required"] is True


def test_broadcasts_are_scoped_to_the_acting_tenant(client, headers, api_bed, monkeypatch):
    bed = api_bed("N-1")
    client.post("/assignments", headers=headers, json={"bed_id": bed["id"], "patient_id": 3})
    seen = []

    async def record_status(tenant_id, data):
        seen.append((tenant_id, data["event"]))

    monkeypatch.setattr(manager, "broadcast_status", record_status)
    response = client.post(
        "/discharges",
        headers=headers,
        json={"bed_id": bed["id"], "patient_id": 3, "discharge_type": "recovered"},
    )

    assert response.status_code == 201, response.text
    assert seen == [("demo_hospital", "bed_discharged")]


@pytest.mark.anyio
async def test_discharge_writes_run_off_the_event_loop(session, tenant, make_bed, monkeypatch):
    import services.discharges as discharges_module

    bed = make_bed("N-1")
    admit_patient(session, tenant, bed_id=bed.id, patient_id=3)
    writer_threads = []
    record_discharge = discharges_module._record_discharge

    def recording(*args, **kwargs):
        writer_threads.append(threading.get_ident())
        return record_discharge(*args, **kwargs)

    monkeypatch.setattr(discharges_module, "_record_discharge", recording)
    await discharge_and_notify(
        session,
        tenant,
        bed_id=bed.id,
        patient_id=3,
        data=DischargeData(discharge_type=DischargeType.RECOVERED),
    )

    assert len(writer_threads) == 1
    assert writer_threads[0] != threading.get_ident()


@pytest.mark.anyio
async def test_transfer_completion_runs_off_the_event_loop(session, tenant, make_bed, monkeypatch):
    import services.transfers as transfers_module

    source = make_bed("N-1")
    destination = make_bed("N-2")
    admit_patient(session, tenant, bed_id=source.id, patient_id=3)
    transfer = request_transfer(session, tenant, from_bed_id=source.id, to_bed_id=destination.id, patient_id=3)
    writer_threads = []
    complete_transfer = transfers_module.complete_transfer

    def recording(*args, **kwargs):
        writer_threads.append(threading.get_ident())
        return complete_transfer(*args, **kwargs)

    async def broken_broadcast(*args, **kwargs):
        raise ConnectionError("status board offline")

    monkeypatch.setattr(transfers_module, "complete_transfer", recording)
    monkeypatch.setattr(manager, "broadcast_status", broken_broadcast)
    done = await complete_and_notify(session, tenant, transfer.id)

    assert done.status == TransferStatus.COMPLETED
    assert len(writer_threads) == 1
    assert writer_threads[0] != threading.get_ident()
    assert get_bed(session, tenant, destination.id).status == BedStatus.OCCUPIED
