from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from database import get_session
from models import TaskStatus
from services import housekeeping
from tenancy import TenantNamespace, get_actor_id, get_tenant

router = APIRouter(prefix="/housekeeping", tags=["housekeeping"])


@router.get("/tasks")
def list_tasks(
    status: Optional[TaskStatus] = None,
    bed_id: Optional[int] = None,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return housekeeping.list_housekeeping_tasks(session, tenant, status=status, bed_id=bed_id)


@router.post("/tasks/{task_id}/complete")
def complete_task(
    task_id: int,
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    return housekeeping.complete_housekeeping_task(session, tenant, task_id, actor_id=actor_id)
