"""
Shared route dependencies.

Dashboard identity comes from the external auth provider as an HS256 bearer
token whose "tenant_id" claim names the tenant. Login and token issuance
live outside this service.
"""
import logging
import uuid
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from astra.database import get_db
from astra.integrations.aftership import AfterShipClient
from astra.integrations.tracking_base import TrackingProvider
from astra.models.tenant import Tenant
from astra.services.notification_queue import NotificationWorker

logger = logging.getLogger(__name__)
bearer_scheme = HTTPBearer()


async def get_current_tenant(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Tenant:
    """Dependency to extract and verify the tenant from a JWT Bearer token."""
    import jwt as pyjwt
    from astra.config import get_settings
    settings = get_settings()

    try:
        payload = pyjwt.decode(
            credentials.credentials,
            settings.jwt_secret,
            algorithms=["HS256"],
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    tenant_id = payload.get("tenant_id")
    if not tenant_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    try:
        tenant_uuid = uuid.UUID(tenant_id)
    except (ValueError, AttributeError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    result = await db.execute(
        select(Tenant).where(and_(Tenant.id == tenant_uuid, Tenant.is_active == True))  # noqa: E712
    )
    tenant = result.scalar_one_or_none()
    if not tenant:
        raise HTTPException(status_code=401, detail="Tenant not found")
    return tenant


async def get_current_admin(
    tenant: Tenant = Depends(get_current_tenant),
) -> Tenant:
    """Dependency that requires the authenticated tenant to be an admin."""
    if not tenant.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return tenant


def get_notification_worker(request: Request) -> Optional[NotificationWorker]:
    """The worker started in the app lifespan, if any."""
    return getattr(request.app.state, "notification_worker", None)


def get_tracking_provider() -> TrackingProvider:
    from astra.config import get_settings
    settings = get_settings()
    if not settings.aftership_api_key:
        raise HTTPException(status_code=503, detail="Tracking provider not configured")
    return AfterShipClient(
        api_key=settings.aftership_api_key,
        base_url=settings.aftership_base_url,
        timeout=settings.aftership_timeout_seconds,
    )
