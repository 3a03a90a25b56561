"""
Order tracking endpoints: set a tracking number, reconcile tracking status.
Non-admin tenants may only touch orders from their own integrations.
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from astra.api.deps import get_current_tenant, get_tracking_provider
from astra.database import get_db
from astra.integrations.tracking_base import TrackingProvider
from astra.models.integration import Integration
from astra.models.order import Order
from astra.models.tenant import Tenant
from astra.services.tracking import reconcile, tracking_response

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


class TrackingNumberUpdate(BaseModel):
    tracking_number: Optional[str] = Field(None, max_length=100)


async def _load_order(db: AsyncSession, order_id: str, tenant: Tenant) -> Order:
    try:
        order_uuid = uuid.UUID(order_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Order not found")

    row = (
        await db.execute(
            select(Order, Integration.tenant_id)
            .join(Integration, Integration.id == Order.integration_id)
            .where(Order.id == order_uuid)
        )
    ).first()
    if row is None:
        raise HTTPException(status_code=404, detail="Order not found")

    order, owner_id = row
    if not tenant.is_admin and owner_id != tenant.id:
        raise HTTPException(status_code=403, detail="Access denied")
    return order


@router.put("/{order_id}/tracking")
async def set_tracking_number(
    order_id: str,
    payload: TrackingNumberUpdate,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    """Set or clear an order's tracking number. Resets the detected courier."""
    order = await _load_order(db, order_id, tenant)
    number = (payload.tracking_number or "").strip() or None
    if number != order.tracking_number:
        order.tracking_number = number
        order.courier_slug = None
    await db.flush()
    return {
        "success": True,
        "data": {
            "id": str(order.id),
            "tracking_number": order.tracking_number,
            "courier_slug": order.courier_slug,
        },
    }


@router.get("/{order_id}/tracking-status")
async def tracking_status(
    order_id: str,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    provider: TrackingProvider = Depends(get_tracking_provider),
):
    """Normalized tracking status, detecting the courier on first use."""
    order = await _load_order(db, order_id, tenant)
    result = await reconcile(db, order, provider)
    await db.commit()
    return {"success": True, "data": tracking_response(result)}
