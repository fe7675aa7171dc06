from __future__ import annotations

import logging

from models import BedTransfer, PatientDischarge, utcnow
from tenancy import TenantNamespace
from ws import manager

logger = logging.getLogger("bedwise.notifications")


async def publish_bed_change(
    tenant: TenantNamespace,
    department_ids: list[int | None],
    payload: dict,
) -> bool:
    """Fan a bed event out to the tenant's status board and department channels.

    Best effort: failures are logged and reported as False, never raised.
    """
    payload = {**payload, "tenant": tenant.tenant_id, "timestamp": utcnow().isoformat()}
    try:
        await manager.broadcast_status(tenant.tenant_id, payload)
        for department_id in dict.fromkeys(d for d in department_ids if d is not None):
            await manager.broadcast_department(tenant.tenant_id, department_id, payload)
    except Exception:
        logger.exception("Failed to publish %s for tenant %s", payload.get("event"), tenant.tenant_id)
        return False
    return True


async def send_discharge_notifications(
    tenant: TenantNamespace,
    discharge: PatientDischarge,
    *,
    department_id: int | None,
    recipients: list[str],
) -> bool:
    payload = {
        "event": "bed_discharged",
        "bed_id": discharge.bed_id,
        "patient_id": discharge.patient_id,
        "discharge_id": discharge.id,
        "discharge_type": discharge.discharge_type.value,
        "housekeeping_required": True,
        "recipients": recipients,
    }
    delivered = await publish_bed_change(tenant, [department_id], payload)
    if delivered and recipients:
        logger.info("Discharge #%s notifications queued for %s", discharge.id, ", ".join(recipients))
    return delivered


async def send_transfer_notifications(tenant: TenantNamespace, transfer: BedTransfer) -> bool:
    payload = {
        "event": "bed_transfer_completed",
        "transfer_id": transfer.id,
        "patient_id": transfer.patient_id,
        "from_bed_id": transfer.from_bed_id,
        "to_bed_id": transfer.to_bed_id,
    }
    return await publish_bed_change(
        tenant,
        [transfer.from_department_id, transfer.to_department_id],
        payload,
    )
