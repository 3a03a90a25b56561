"""
Secret registry - webhook secret generation and tenant resolution.

Secrets are "wh_" + 40 hex chars from the OS CSPRNG. Tenants own one secret
for the lead/customer endpoints; each storefront integration owns its own.
"""
import hmac
import logging
import secrets
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from astra.errors import SecretGenerationError
from astra.models.integration import Integration
from astra.models.tenant import Tenant
from astra.utils.webhook_signatures import validate_hmac_sha256_base64

logger = logging.getLogger(__name__)

SECRET_PREFIX = "wh_"
SECRET_RANDOM_BYTES = 20
MAX_SECRET_ATTEMPTS = 5


def generate_webhook_secret() -> str:
    """Return a new random secret (wh_ + 40 lowercase hex chars)."""
    return SECRET_PREFIX + secrets.token_hex(SECRET_RANDOM_BYTES)


def _secrets_match(candidate: str, stored: Optional[str]) -> bool:
    if not stored:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), stored.encode("utf-8"))


async def generate_unique_webhook_secret(
    db: AsyncSession,
    model: type[Union[Tenant, Integration]] = Tenant,
) -> str:
    """
    Generate a secret not already held by any row of *model*.

    Raises SecretGenerationError after MAX_SECRET_ATTEMPTS collisions.
    """
    for attempt in range(1, MAX_SECRET_ATTEMPTS + 1):
        candidate = generate_webhook_secret()
        result = await db.execute(
            select(model.id).where(model.webhook_secret == candidate).limit(1)
        )
        if result.scalar_one_or_none() is None:
            return candidate
        logger.warning(
            "Webhook secret collision on %s (attempt %d/%d)",
            model.__tablename__, attempt, MAX_SECRET_ATTEMPTS,
        )
    raise SecretGenerationError("Failed to generate unique webhook secret after maximum retries")


async def resolve_tenant(db: AsyncSession, secret: Optional[str]) -> Optional[Tenant]:
    """Map an inbound shared secret to its active tenant, or None."""
    if not secret:
        return None
    result = await db.execute(
        select(Tenant).where(Tenant.webhook_secret == secret, Tenant.is_active == True)  # noqa: E712
    )
    tenant = result.scalar_one_or_none()
    if tenant is None or not _secrets_match(secret, tenant.webhook_secret):
        return None
    return tenant


async def resolve_integration(
    db: AsyncSession,
    secret: Optional[str],
    platform: str,
) -> Optional[Integration]:
    """Map an inbound secret to an active integration of the given platform."""
    if not secret:
        return None
    result = await db.execute(
        select(Integration).where(
            Integration.webhook_secret == secret,
            Integration.platform == platform,
            Integration.is_active == True,  # noqa: E712
        )
    )
    integration = result.scalar_one_or_none()
    if integration is None or not _secrets_match(secret, integration.webhook_secret):
        return None
    return integration


async def resolve_integration_by_signature(
    db: AsyncSession,
    platform: str,
    domain: Optional[str],
    signature: Optional[str],
    body: bytes,
) -> Optional[Integration]:
    """
    Map a platform-signed delivery to its integration.

    Candidates are the active integrations of the platform for the store
    domain; the one whose secret verifies the body signature wins.
    """
    if not domain or not signature:
        return None
    result = await db.execute(
        select(Integration).where(
            func.lower(Integration.domain) == domain.lower(),
            Integration.platform == platform,
            Integration.is_active == True,  # noqa: E712
        )
    )
    for integration in result.scalars().all():
        if validate_hmac_sha256_base64(integration.webhook_secret, signature, body):
            return integration
    return None


async def rotate_tenant_secret(db: AsyncSession, tenant: Tenant) -> str:
    tenant.webhook_secret = await generate_unique_webhook_secret(db, Tenant)
    await db.flush()
    logger.info("Tenant webhook secret rotated", extra={"tenant_id": str(tenant.id)})
    return tenant.webhook_secret


async def rotate_integration_secret(db: AsyncSession, integration: Integration) -> str:
    integration.webhook_secret = await generate_unique_webhook_secret(db, Integration)
    await db.flush()
    logger.info(
        "Integration webhook secret rotated: %s",
        str(integration.id)[:8], extra={"tenant_id": str(integration.tenant_id)},
    )
    return integration.webhook_secret
