from __future__ import annotations

import os
import tempfile
from pathlib import Path

# The app lifespan creates tables on the module-level engine; keep it out of the source tree.
os.environ.setdefault("BEDWISE_DB_FILE", str(Path(tempfile.mkdtemp(prefix="bedwise-tests-")) / "bedwise.db"))

import pytest
import httpx
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from database import build_engine, create_db, drop_db, get_session, tenant_session
from main import app
from services.beds import create_bed
from services.departments import create_department
from tenancy import TenantNamespace, get_tenant, resolve_tenant

TEST_ENGINE = build_engine("sqlite://", poolclass=StaticPool)


def _override_get_session(tenant: TenantNamespace = Depends(get_tenant)):
    with tenant_session(tenant, bind=TEST_ENGINE) as session:
        yield session


@pytest.fixture(autouse=True)
def reset_db():
    drop_db(TEST_ENGINE)
    create_db(TEST_ENGINE)


@pytest.fixture
def test_engine():
    return TEST_ENGINE


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def tenant() -> TenantNamespace:
    return resolve_tenant("demo_hospital")


@pytest.fixture
def other_tenant() -> TenantNamespace:
    return resolve_tenant("general_hospital")


@pytest.fixture
def session(tenant):
    with tenant_session(tenant, bind=TEST_ENGINE) as db_session:
        yield db_session


@pytest.fixture
def department(session, tenant):
    return create_department(
        session,
        tenant,
        department_code="gen",
        name="General Medicine",
        floor_number=2,
        total_bed_capacity=10,
        actor_id=1,
    )


@pytest.fixture
def make_bed(session, tenant, department):
    department_id = department.id

    def _make(bed_number: str, **kwargs):
        kwargs.setdefault("department_id", department_id)
        kwargs.setdefault("actor_id", 1)
        return create_bed(session, tenant, bed_number=bed_number, **kwargs)

    return _make


@pytest.fixture
def client():
    app.dependency_overrides[get_session] = _override_get_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client():
    app.dependency_overrides[get_session] = _override_get_session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def headers() -> dict[str, str]:
    return {"X-Tenant-ID": "demo_hospital", "X-Actor-ID": "7"}


@pytest.fixture
def other_headers() -> dict[str, str]:
    return {"X-Tenant-ID": "general_hospital", "X-Actor-ID": "8"}


@pytest.fixture
def api_department(client: TestClient, headers):
    response = client.post(
        "/departments",
        headers=headers,
        json={"department_code": "icu", "name": "Intensive Care", "total_bed_capacity": 4},
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def api_bed(client: TestClient, headers, api_department):
    def _make(bed_number: str, **fields):
        response = client.post(
            "/beds",
            headers=headers,
            json={"bed_number": bed_number, "department_id": api_department["id"], **fields},
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _make
