"""
Admin controls for the notification queue.
"""
import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from astra.api.deps import get_current_admin, get_notification_worker
from astra.database import get_db
from astra.models.tenant import Tenant
from astra.services.notification_queue import NotificationWorker, queue_stats

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.post("/sweep")
async def run_sweep(
    admin: Tenant = Depends(get_current_admin),
    worker: Optional[NotificationWorker] = Depends(get_notification_worker),
):
    """Run one queue sweep now. A sweep already in progress makes this a no-op."""
    if worker is None:
        raise HTTPException(status_code=503, detail="Notification worker not running")
    result = await worker.sweep()
    logger.info("Manual notification sweep by admin %s", str(admin.id)[:8])
    return {"success": True, "data": asdict(result)}


@router.get("/stats")
async def get_stats(
    admin: Tenant = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "data": await queue_stats(db)}
