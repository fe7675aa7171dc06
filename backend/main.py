import asyncio
from contextlib import asynccontextmanager, suppress
import logging
import os

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlmodel import Session, text

from database import create_db, engine, tenant_session
from errors import BedManagementError
import models  # noqa: F401 - ensure tables are registered before create_db
from models import utcnow
from routers import assignments, beds, departments, discharges, housekeeping, reservations, stats, transfers
from services.reservations import expire_reservations
from tenancy import known_namespaces, resolve_tenant
from ws import manager

logger = logging.getLogger("bedwise")

SWEEP_INTERVAL_SECONDS = int(os.getenv("BEDWISE_SWEEP_INTERVAL_SECONDS", "60"))

ROUTERS = [
    departments.router,
    beds.router,
    assignments.router,
    transfers.router,
    discharges.router,
    reservations.router,
    housekeeping.router,
    stats.router,
]


def sweep_reservations() -> int:
    expired = 0
    for namespace in known_namespaces():
        with tenant_session(namespace) as session:
            expired += expire_reservations(session, namespace)
    return expired


async def _reservation_sweeper():
    """Background task: expire lapsed bed reservations for every tenant."""
    while True:
        await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
        try:
            expired = await run_in_threadpool(sweep_reservations)
            if expired:
                logger.info("Reservation sweep expired %d holds", expired)
        except Exception:
            logger.exception("Reservation sweeper error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db()
    sweeper = asyncio.create_task(_reservation_sweeper())
    yield
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper


app = FastAPI(title="Bedwise", version="0.1.0", lifespan=lifespan)


@app.exception_handler(BedManagementError)
async def bed_management_exception_handler(request: Request, exc: BedManagementError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.kind, "detail": exc.detail})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled server error for %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.middleware("http")
async def no_cache_api_responses(request: Request, call_next):
    response = await call_next(request)
    if request.url.path.startswith(
        (
            "/departments",
            "/beds",
            "/assignments",
            "/transfers",
            "/discharges",
            "/reservations",
            "/housekeeping",
            "/stats",
            "/api/v1/",
        )
    ):
        response.headers["Cache-Control"] = "no-store, max-age=0"
        response.headers["Pragma"] = "no-cache"
        response.headers["Expires"] = "0"
    return response


for router in ROUTERS:
    app.include_router(router)
for router in ROUTERS:
    app.include_router(router, prefix="/api/v1")


@app.get("/health")
def health():
    try:
        with Session(engine) as session:
            session.exec(text("SELECT 1"))
        return {
            "status": "ok",
            "database": "connected",
            "tenants": [namespace.tenant_id for namespace in known_namespaces()],
            "timestamp": utcnow().isoformat(),
        }
    except Exception:
        logger.exception("Health check failed")
        return JSONResponse(status_code=500, content={"status": "error"})


def _websocket_tenant(websocket: WebSocket):
    try:
        return resolve_tenant(websocket.query_params.get("tenant"))
    except BedManagementError:
        return None


@app.websocket("/ws/departments/{department_id}")
async def department_ws(websocket: WebSocket, department_id: int):
    tenant = _websocket_tenant(websocket)
    if tenant is None:
        await websocket.close(code=1008)
        return

    await manager.connect_department(tenant.tenant_id, department_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect_department(tenant.tenant_id, department_id, websocket)


@app.websocket("/ws/status")
async def status_board_ws(websocket: WebSocket):
    tenant = _websocket_tenant(websocket)
    if tenant is None:
        await websocket.close(code=1008)
        return

    await manager.connect_status(tenant.tenant_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect_status(tenant.tenant_id, websocket)
