"""
Tests for astra/services/customers.py - customer webhook creation and the
order-driven customer upsert.
"""
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from astra.errors import ConflictError
from astra.models.customer import Customer
from astra.schemas.order_envelope import NormalizedCustomer
from astra.schemas.webhook_payloads import CustomerWebhookPayload
from astra.services.customers import (
    create_customer,
    find_customer,
    increment_order_count,
    upsert_customer_for_order,
)


async def _count_customers(db) -> int:
    return (await db.execute(select(func.count()).select_from(Customer))).scalar_one()


class TestCreateCustomer:
    async def test_creates_customer(self, db, tenant):
        payload = CustomerWebhookPayload(
            name="  Anna Neri ", email="Anna.Neri@Example.com",
            phone="+39 02 1234 5678", address={"city": "Milano"}, order_id=1001,
        )
        customer = await create_customer(db, tenant.id, payload)
        await db.commit()

        assert customer.name == "Anna Neri"
        assert customer.email == "anna.neri@example.com"
        assert customer.address == {"city": "Milano"}
        assert customer.source == "webhook"
        assert customer.order_ref == 1001
        assert customer.total_orders == 0

    async def test_duplicate_email_conflicts(self, db, tenant):
        payload = CustomerWebhookPayload(name="Anna", email="anna@example.com")
        first = await create_customer(db, tenant.id, payload)
        await db.commit()

        again = CustomerWebhookPayload(name="Anna N.", email="ANNA@example.com")
        with pytest.raises(ConflictError) as exc_info:
            await create_customer(db, tenant.id, again)

        assert exc_info.value.status_code == 409
        assert exc_info.value.details == {"id": str(first.id), "email": "anna@example.com"}
        assert await _count_customers(db) == 1

    async def test_same_email_other_tenant(self, db, tenant, other_tenant):
        payload = CustomerWebhookPayload(name="Anna", email="anna@example.com")
        await create_customer(db, tenant.id, payload)
        await create_customer(db, other_tenant.id, payload)
        await db.commit()
        assert await _count_customers(db) == 2

    async def test_insert_race_reports_conflict(self, db, tenant):
        """A row that appears between the lookup and the insert still yields 409."""
        payload = CustomerWebhookPayload(name="Anna", email="anna@example.com")
        db.add(Customer(tenant_id=tenant.id, name="Winner", email="anna@example.com"))
        await db.commit()

        with patch(
            "astra.services.customers.find_customer",
            new_callable=AsyncMock, side_effect=[None, None],
        ):
            with pytest.raises(ConflictError) as exc_info:
                await create_customer(db, tenant.id, payload)

        assert exc_info.value.details["email"] == "anna@example.com"
        assert await _count_customers(db) == 1


class TestUpsertCustomerForOrder:
    async def test_no_email_no_customer(self, db, tenant):
        result = await upsert_customer_for_order(db, tenant.id, NormalizedCustomer(name="Walk-in"))
        assert result is None
        assert await _count_customers(db) == 0

    async def test_insert_then_refresh(self, db, tenant):
        first = await upsert_customer_for_order(
            db, tenant.id,
            NormalizedCustomer(name="Luca", email="luca@example.com", phone="+39 06 555 0199"),
        )
        second = await upsert_customer_for_order(
            db, tenant.id,
            NormalizedCustomer(name="Luca Verdi", email="luca@example.com", address={"city": "Roma"}),
        )
        await db.commit()

        assert first.id == second.id
        assert second.name == "Luca Verdi"
        assert second.address == {"city": "Roma"}
        # A missing phone does not erase the stored one
        assert second.phone == "+39 06 555 0199"
        assert second.source == "order"
        assert await _count_customers(db) == 1


async def test_increment_order_count(db, tenant):
    customer = await upsert_customer_for_order(
        db, tenant.id, NormalizedCustomer(name="Luca", email="luca@example.com"),
    )
    await increment_order_count(db, customer.id)
    await increment_order_count(db, customer.id)
    await db.commit()

    refreshed = await find_customer(db, tenant.id, "LUCA@example.com")
    await db.refresh(refreshed)
    assert refreshed.total_orders == 2
