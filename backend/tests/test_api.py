from datetime import timedelta

import pytest

from models import utcnow


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "demo_hospital" in response.json()["tenants"]


def test_tenant_header_is_required(client):
    response = client.get("/beds")
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"

    response = client.get("/beds", headers={"X-Tenant-ID": "nowhere_general"})
    assert response.status_code == 404
    assert response.json()["error"] == "unknown_tenant"


def test_actor_header_must_be_numeric(client, api_department):
    response = client.post(
        "/beds",
        headers={"X-Tenant-ID": "demo_hospital", "X-Actor-ID": "nurse"},
        json={"bed_number": "API-1", "department_id": api_department["id"]},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "validation_error", "detail": "X-Actor-ID must be an integer"}
    assert client.get("/beds", headers={"X-Tenant-ID": "demo_hospital"}).json()["total"] == 0


def test_bed_crud_and_errors(client, headers, api_bed):
    bed = api_bed("API-1", features=["oxygen"], bed_type="icu")
    assert bed["status"] == "available"
    assert bed["features"] == ["oxygen"]
    assert bed["created_by"] == 7

    duplicate = client.post("/beds", headers=headers, json={"bed_number": "API-1", "department_id": bed["department_id"]})
    assert duplicate.status_code == 400
    assert duplicate.json() == {"error": "validation_error", "detail": "Bed number 'API-1' already exists"}

    patched = client.patch(f"/beds/{bed['id']}", headers=headers, json={"wing": "North"})
    assert patched.status_code == 200
    assert patched.json()["wing"] == "North"

    occupied = client.put(f"/beds/{bed['id']}/status", headers=headers, json={"status": "occupied"})
    assert occupied.status_code == 409
    assert occupied.json()["error"] == "conflict"

    missing = client.get("/beds/9999", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"

    listed = client.get("/api/v1/beds", headers=headers)
    assert listed.status_code == 200
    assert listed.json()["total"] == 1
    assert listed.headers["Cache-Control"] == "no-store, max-age=0"


def test_admission_lifecycle_over_http(client, headers, api_bed):
    bed = api_bed("API-1")
    other = api_bed("API-2")

    admitted = client.post("/assignments", headers=headers, json={"bed_id": bed["id"], "patient_id": 101})
    assert admitted.status_code == 201, admitted.text
    assert admitted.json()["status"] == "active"

    again = client.post("/assignments", headers=headers, json={"bed_id": bed["id"], "patient_id": 102})
    assert again.status_code == 409

    availability = client.get(f"/beds/{bed['id']}/availability", headers=headers).json()
    assert availability["available"] is False
    assert availability["has_active_assignment"] is True

    current = client.get("/assignments/current", headers=headers, params={"patient_id": 101})
    assert current.status_code == 200
    assert current.json()["bed_id"] == bed["id"]

    transfer = client.post(
        "/transfers",
        headers=headers,
        json={"from_bed_id": bed["id"], "to_bed_id": other["id"], "patient_id": 101, "reason": "Isolation"},
    )
    assert transfer.status_code == 201, transfer.text
    assert transfer.json()["status"] == "pending"

    completed = client.post(f"/transfers/{transfer.json()['id']}/complete", headers=headers)
    assert completed.status_code == 200, completed.text
    assert completed.json()["status"] == "completed"

    second = client.post(f"/transfers/{transfer.json()['id']}/complete", headers=headers)
    assert second.status_code == 409

    discharged = client.post(
        "/discharges",
        headers=headers,
        json={
            "bed_id": other["id"],
            "patient_id": 101,
            "discharge_type": "recovered",
            "medications": ["Ibuprofen"],
        },
    )
    assert discharged.status_code == 201, discharged.text
    assert discharged.json()["medications"] == ["Ibuprofen"]
    assert client.get(f"/beds/{other['id']}", headers=headers).json()["status"] == "cleaning"

    tasks = client.get("/housekeeping/tasks", headers=headers, params={"status": "pending"}).json()
    assert len(tasks) == 1
    cleaned = client.post(f"/housekeeping/tasks/{tasks[0]['id']}/complete", headers=headers)
    assert cleaned.status_code == 200
    assert client.get(f"/beds/{other['id']}", headers=headers).json()["status"] == "available"

    history = client.get(f"/beds/{other['id']}/history", headers=headers).json()
    assert [event["event_type"] for event in history[:3]] == ["cleaned", "discharge", "transfer_in"]


def test_same_bed_transfer_is_rejected(client, headers, api_bed):
    bed = api_bed("API-1")
    client.post("/assignments", headers=headers, json={"bed_id": bed["id"], "patient_id": 1})

    response = client.post(
        "/transfers",
        headers=headers,
        json={"from_bed_id": bed["id"], "to_bed_id": bed["id"], "patient_id": 1},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_discharge_follow_up_validation_over_http(client, headers, api_bed):
    bed = api_bed("API-1")
    client.post("/assignments", headers=headers, json={"bed_id": bed["id"], "patient_id": 1})

    response = client.post(
        "/discharges",
        headers=headers,
        json={"bed_id": bed["id"], "patient_id": 1, "discharge_type": "recovered", "follow_up_required": True},
    )
    assert response.status_code == 400
    assert client.get(f"/beds/{bed['id']}", headers=headers).json()["status"] == "occupied"


def test_reservations_over_http(client, headers, api_bed):
    bed = api_bed("API-1")
    until = (utcnow() + timedelta(hours=2)).isoformat()

    created = client.post(
        "/reservations",
        headers=headers,
        json={"bed_id": bed["id"], "patient_id": 5, "reserved_until": until},
    )
    assert created.status_code == 201, created.text

    available = client.get("/beds/available", headers=headers).json()
    assert available == []

    released = client.post(f"/reservations/{created.json()['id']}/release", headers=headers)
    assert released.status_code == 200
    assert released.json()["status"] == "released"
    assert [b["bed_number"] for b in client.get("/beds/available", headers=headers).json()] == ["API-1"]


def test_departments_and_stats(client, headers, api_department, api_bed):
    api_bed("API-1")
    assert api_department["department_code"] == "ICU"

    listed = client.get("/departments", headers=headers).json()
    assert [d["department_code"] for d in listed] == ["ICU"]

    occupancy = client.get(f"/departments/{api_department['id']}/occupancy", headers=headers).json()
    assert occupancy["total_beds"] == 1
    assert occupancy["available_beds"] == 1

    overview = client.get("/stats/occupancy", headers=headers).json()
    assert overview["totals"]["total_beds"] == 1


def test_tenants_do_not_see_each_other(client, headers, other_headers, api_bed):
    bed = api_bed("API-1")

    assert client.get(f"/beds/{bed['id']}", headers=other_headers).status_code == 404
    assert client.get("/beds", headers=other_headers).json()["total"] == 0
    assert client.get("/beds", headers=headers).json()["total"] == 1


@pytest.mark.anyio
async def test_async_client_lists_beds(async_client, headers):
    response = await async_client.get("/beds", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"beds": [], "total": 0, "page": 1, "page_size": 50}


def test_discharge_with_mixed_timezone_dates_over_http(client, headers, api_bed):
    bed = api_bed("API-1")
    client.post("/assignments", headers=headers, json={"bed_id": bed["id"], "patient_id": 1})
    discharged_at = utcnow() + timedelta(hours=1)

    response = client.post(
        "/discharges",
        headers=headers,
        json={
            "bed_id": bed["id"],
            "patient_id": 1,
            "discharge_type": "recovered",
            "discharge_date": discharged_at.isoformat(),
            "follow_up_required": True,
            "follow_up_date": (discharged_at + timedelta(days=7)).isoformat() + "Z",
            "follow_up_instructions": "Clinic review",
        },
    )

    assert response.status_code == 201, response.text
    assert client.get(f"/beds/{bed['id']}", headers=headers).json()["status"] == "cleaning"


def test_update_transfer_over_http(client, headers, api_bed):
    bed = api_bed("API-1")
    other = api_bed("API-2")
    client.post("/assignments", headers=headers, json={"bed_id": bed["id"], "patient_id": 1})
    transfer = client.post(
        "/transfers",
        headers=headers,
        json={"from_bed_id": bed["id"], "to_bed_id": other["id"], "patient_id": 1},
    ).json()

    when = (utcnow() + timedelta(hours=2)).isoformat()
    scheduled = client.patch(
        f"/transfers/{transfer['id']}",
        headers=headers,
        json={"scheduled_time": when, "priority": "urgent"},
    )
    assert scheduled.status_code == 200, scheduled.text
    assert scheduled.json()["status"] == "scheduled"
    assert scheduled.json()["priority"] == "urgent"
    assert client.get("/beds/available", headers=headers).json() == []

    pending = client.patch(f"/transfers/{transfer['id']}", headers=headers, json={"scheduled_time": None})
    assert pending.json()["status"] == "pending"
    assert [b["bed_number"] for b in client.get("/beds/available", headers=headers).json()] == ["API-2"]

    rejected = client.patch(f"/transfers/{transfer['id']}", headers=headers, json={"priority": "whenever"})
    assert rejected.status_code == 422


def test_update_assignment_over_http(client, headers, api_bed):
    bed = api_bed("API-1")
    assignment = client.post("/assignments", headers=headers, json={"bed_id": bed["id"], "patient_id": 1}).json()

    response = client.patch(
        f"/assignments/{assignment['id']}",
        headers=headers,
        json={"patient_condition": "critical", "assigned_doctor_id": 31},
    )

    assert response.status_code == 200, response.text
    assert response.json()["patient_condition"] == "critical"
    assert response.json()["assigned_doctor_id"] == 31
    assert response.json()["updated_by"] == 7

    missing = client.patch("/assignments/9999", headers=headers, json={"notes": "x"})
    assert missing.status_code == 404


def test_nearest_bed_capacity_and_summary_over_http(client, headers, api_department, api_bed):
    api_bed("API-1", bed_type="icu", floor_number=4)
    api_bed("API-2", bed_type="icu", floor_number=5, features=["ventilator"])

    nearest = client.get("/beds/nearest", headers=headers, params={"floor_number": 5, "bed_type": "icu"})
    assert nearest.status_code == 200, nearest.text
    assert nearest.json()["bed_number"] == "API-2"

    featured = client.get("/beds/nearest", headers=headers, params={"features": ["ventilator"]})
    assert featured.json()["bed_number"] == "API-2"

    none = client.get("/beds/nearest", headers=headers, params={"bed_type": "maternity", "features": ["crib"]})
    assert none.status_code == 404
    assert none.json()["error"] == "not_found"

    capacity = client.get(f"/departments/{api_department['id']}/capacity", headers=headers).json()
    assert capacity["total_bed_capacity"] == 4
    assert capacity["available_beds"] == 2
    assert capacity["has_capacity"] is True

    summary = client.get("/stats/availability", headers=headers).json()
    assert summary["total_available"] == 2
    assert summary["by_department"] == {"Intensive Care": 2}
    assert summary["by_bed_type"] == {"icu": 2}
    assert summary["critical_departments"] == []
