"""
Webhook secret rotation for tenants and their storefront integrations.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from astra.api.deps import get_current_tenant
from astra.database import get_db
from astra.errors import SecretGenerationError
from astra.models.integration import Integration
from astra.models.tenant import Tenant
from astra.services.secret_registry import rotate_integration_secret, rotate_tenant_secret

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["integrations"])


@router.post("/tenant/webhook-secret")
async def regenerate_tenant_secret(
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    """Issue a new secret for the lead/customer webhooks. The old one stops working."""
    try:
        secret = await rotate_tenant_secret(db, tenant)
    except SecretGenerationError as e:
        logger.error("Tenant secret rotation failed: %s", str(e), extra={"tenant_id": str(tenant.id)})
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "data": {"webhook_secret": secret}}


@router.post("/integrations/{integration_id}/webhook-secret")
async def regenerate_integration_secret(
    integration_id: str,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
):
    try:
        integration_uuid = uuid.UUID(integration_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Integration not found")

    result = await db.execute(
        select(Integration).where(
            Integration.id == integration_uuid,
            Integration.tenant_id == tenant.id,
        )
    )
    integration = result.scalar_one_or_none()
    if not integration:
        raise HTTPException(status_code=404, detail="Integration not found")

    try:
        secret = await rotate_integration_secret(db, integration)
    except SecretGenerationError as e:
        logger.error("Integration secret rotation failed: %s", str(e), extra={"tenant_id": str(tenant.id)})
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "success": True,
        "data": {"integration_id": str(integration.id), "webhook_secret": secret},
    }
