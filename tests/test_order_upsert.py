"""
Tests for astra/services/orders.py - idempotent order ingestion.
"""
from sqlalchemy import func, select

from astra.models.customer import Customer
from astra.models.order import Order, OrderItem
from astra.schemas.order_envelope import NormalizedCustomer, NormalizedOrder, NormalizedOrderItem
from astra.services.orders import ingest_order, upsert_order


def _normalized(external_id="1001", items=None, status="paid", email="buyer@example.com") -> NormalizedOrder:
    return NormalizedOrder(
        platform="shopify",
        external_order_id=external_id,
        status=status,
        total_amount=59.9,
        currency="EUR",
        customer=NormalizedCustomer(name="Giulia Bianchi", email=email),
        items=items if items is not None else [
            NormalizedOrderItem(product_sku="TEE-M", product_name="T-shirt", quantity=2, unit_price=19.95),
            NormalizedOrderItem(product_name="Gift wrap", quantity=1, unit_price=20.0),
        ],
        raw_payload={"id": external_id},
    )


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def _items(db, order_id) -> list[OrderItem]:
    result = await db.execute(
        select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.product_name)
    )
    return list(result.scalars().all())


class TestUpsertOrder:
    async def test_first_delivery_creates(self, db, shopify_integration):
        order, created = await upsert_order(db, shopify_integration, _normalized())
        await db.commit()

        assert created is True
        assert order.external_order_id == "1001"
        assert order.integration_id == shopify_integration.id
        assert order.total_amount == 59.9
        assert len(await _items(db, order.id)) == 2

    async def test_redelivery_updates_in_place(self, db, shopify_integration):
        first, _ = await upsert_order(db, shopify_integration, _normalized())
        await db.commit()

        second, created = await upsert_order(
            db, shopify_integration,
            _normalized(status="refunded", items=[
                NormalizedOrderItem(product_sku="MUG", product_name="Mug", quantity=1, unit_price=9.5),
            ]),
        )
        await db.commit()

        assert created is False
        assert second.id == first.id
        assert second.status == "refunded"
        assert await _count(db, Order) == 1
        items = await _items(db, first.id)
        assert [(i.product_name, i.quantity) for i in items] == [("Mug", 1)]

    async def test_same_external_id_different_integration(self, db, shopify_integration, woo_integration):
        await upsert_order(db, shopify_integration, _normalized())
        await upsert_order(db, woo_integration, _normalized())
        await db.commit()
        assert await _count(db, Order) == 2


class TestIngestOrder:
    async def test_identical_payload_twice(self, db, shopify_integration):
        first = await ingest_order(db, shopify_integration, _normalized())
        await db.commit()
        second = await ingest_order(db, shopify_integration, _normalized())
        await db.commit()

        assert first.created is True
        assert second.created is False
        assert first.order.id == second.order.id
        assert await _count(db, Order) == 1
        assert await _count(db, OrderItem) == 2
        assert await _count(db, Customer) == 1
        # Only the first delivery counts as an order for the customer
        assert second.customer.total_orders == 1
        assert second.items_count == 2

    async def test_order_without_email_has_no_customer(self, db, shopify_integration):
        result = await ingest_order(db, shopify_integration, _normalized(email=None))
        await db.commit()

        assert result.customer is None
        assert result.order.customer_id is None
        assert await _count(db, Customer) == 0

    async def test_customer_linked(self, db, shopify_integration):
        result = await ingest_order(db, shopify_integration, _normalized())
        await db.commit()
        assert result.order.customer_id == result.customer.id
        assert result.customer.tenant_id == shopify_integration.tenant_id

    async def test_two_orders_same_customer(self, db, shopify_integration):
        await ingest_order(db, shopify_integration, _normalized(external_id="1001"))
        result = await ingest_order(db, shopify_integration, _normalized(external_id="1002"))
        await db.commit()
        assert result.customer.total_orders == 2
        assert await _count(db, Order) == 2
