"""
Tests for astra/services/secret_registry.py - secret generation, tenant and
integration resolution, rotation.
"""
import re
from unittest.mock import patch

import pytest

from astra.errors import SecretGenerationError
from astra.models.integration import Integration
from astra.models.tenant import Tenant
from astra.services.secret_registry import (
    MAX_SECRET_ATTEMPTS,
    generate_unique_webhook_secret,
    generate_webhook_secret,
    resolve_integration,
    resolve_tenant,
    rotate_integration_secret,
    rotate_tenant_secret,
)
from conftest import OTHER_TENANT_SECRET, SHOPIFY_SECRET, TENANT_SECRET

SECRET_RE = re.compile(r"^wh_[0-9a-f]{40}$")


class TestGenerateWebhookSecret:
    def test_format(self):
        assert SECRET_RE.match(generate_webhook_secret())

    def test_secrets_differ(self):
        assert len({generate_webhook_secret() for _ in range(50)}) == 50

    async def test_unique_secret_skips_collision(self, db, tenant):
        fresh = "wh_" + "e" * 40
        with patch(
            "astra.services.secret_registry.generate_webhook_secret",
            side_effect=[TENANT_SECRET, fresh],
        ) as gen:
            secret = await generate_unique_webhook_secret(db, Tenant)
        assert secret == fresh
        assert gen.call_count == 2

    async def test_gives_up_after_max_attempts(self, db, tenant):
        with patch(
            "astra.services.secret_registry.generate_webhook_secret",
            return_value=TENANT_SECRET,
        ) as gen:
            with pytest.raises(SecretGenerationError, match="maximum retries"):
                await generate_unique_webhook_secret(db, Tenant)
        assert gen.call_count == MAX_SECRET_ATTEMPTS

    async def test_collision_checked_against_given_model(self, db, shopify_integration):
        # A tenant-table check does not see integration secrets
        with patch(
            "astra.services.secret_registry.generate_webhook_secret",
            return_value=SHOPIFY_SECRET,
        ):
            assert await generate_unique_webhook_secret(db, Tenant) == SHOPIFY_SECRET
            with pytest.raises(SecretGenerationError):
                await generate_unique_webhook_secret(db, Integration)


class TestResolveTenant:
    async def test_resolves_own_tenant(self, db, tenant, other_tenant):
        assert (await resolve_tenant(db, TENANT_SECRET)).id == tenant.id
        assert (await resolve_tenant(db, OTHER_TENANT_SECRET)).id == other_tenant.id

    async def test_unknown_secret(self, db, tenant):
        assert await resolve_tenant(db, "wh_" + "0" * 40) is None

    async def test_missing_secret(self, db, tenant):
        assert await resolve_tenant(db, None) is None
        assert await resolve_tenant(db, "") is None

    async def test_inactive_tenant_rejected(self, db, tenant):
        tenant.is_active = False
        await db.commit()
        assert await resolve_tenant(db, TENANT_SECRET) is None

    async def test_integration_secret_does_not_resolve_tenant(self, db, shopify_integration):
        assert await resolve_tenant(db, SHOPIFY_SECRET) is None


class TestResolveIntegration:
    async def test_resolves_matching_platform(self, db, shopify_integration):
        integration = await resolve_integration(db, SHOPIFY_SECRET, "shopify")
        assert integration.id == shopify_integration.id

    async def test_wrong_platform(self, db, shopify_integration):
        assert await resolve_integration(db, SHOPIFY_SECRET, "woocommerce") is None

    async def test_tenant_secret_does_not_resolve_integration(self, db, tenant, shopify_integration):
        assert await resolve_integration(db, TENANT_SECRET, "shopify") is None

    async def test_disabled_integration(self, db, shopify_integration):
        shopify_integration.is_active = False
        await db.commit()
        assert await resolve_integration(db, SHOPIFY_SECRET, "shopify") is None


class TestRotation:
    async def test_rotate_tenant_secret(self, db, tenant):
        new_secret = await rotate_tenant_secret(db, tenant)
        await db.commit()

        assert SECRET_RE.match(new_secret)
        assert new_secret != TENANT_SECRET
        assert await resolve_tenant(db, TENANT_SECRET) is None
        assert (await resolve_tenant(db, new_secret)).id == tenant.id

    async def test_rotate_integration_secret(self, db, shopify_integration):
        new_secret = await rotate_integration_secret(db, shopify_integration)
        await db.commit()

        assert await resolve_integration(db, SHOPIFY_SECRET, "shopify") is None
        assert (await resolve_integration(db, new_secret, "shopify")).id == shopify_integration.id
