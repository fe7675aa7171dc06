from fastapi import APIRouter, Depends
from sqlmodel import Session

from database import get_session
from services import stats
from tenancy import TenantNamespace, get_tenant

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/occupancy")
def occupancy_overview(
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return stats.occupancy_overview(session, tenant)


@router.get("/availability")
def availability_summary(
    session: Session = Depends(get_session),
    tenant: TenantNamespace = Depends(get_tenant),
):
    return stats.availability_summary(session, tenant)
