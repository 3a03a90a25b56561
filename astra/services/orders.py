"""
Idempotent order ingestion.

An order is keyed by (integration, external order id). The first delivery
inserts it; every redelivery updates the same row in place and replaces its
line items. INSERT ... ON CONFLICT DO NOTHING decides which path a request
takes, so two simultaneous deliveries cannot both insert.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from astra.database import dialect_insert
from astra.models.customer import Customer
from astra.models.integration import Integration
from astra.models.order import Order, OrderItem
from astra.schemas.order_envelope import NormalizedOrder
from astra.services.customers import increment_order_count, upsert_customer_for_order

logger = logging.getLogger(__name__)

ORDER_KEY = ["integration_id", "external_order_id"]


@dataclass
class OrderIngestResult:
    order: Order
    customer: Optional[Customer]
    created: bool
    items_count: int


async def upsert_order(
    db: AsyncSession,
    integration: Integration,
    normalized: NormalizedOrder,
    customer_id: Optional[uuid.UUID] = None,
) -> tuple[Order, bool]:
    """Insert or update one order. Returns (order, created)."""
    now = datetime.now(timezone.utc)
    fields = {
        "status": normalized.status,
        "total_amount": normalized.total_amount,
        "currency": normalized.currency,
        "order_created_at": normalized.order_created_at,
        "raw_payload": normalized.raw_payload,
    }
    if customer_id is not None:
        fields["customer_id"] = customer_id

    stmt = (
        dialect_insert(db, Order)
        .values(
            id=uuid.uuid4(),
            integration_id=integration.id,
            external_order_id=normalized.external_order_id,
            created_at=now,
            updated_at=now,
            **fields,
        )
        .on_conflict_do_nothing(index_elements=ORDER_KEY)
        .returning(Order.id)
    )
    order_id = (await db.execute(stmt)).scalar_one_or_none()
    created = order_id is not None

    if not created:
        order_id = (
            await db.execute(
                select(Order.id).where(
                    Order.integration_id == integration.id,
                    Order.external_order_id == normalized.external_order_id,
                )
            )
        ).scalar_one()
        await db.execute(update(Order).where(Order.id == order_id).values(updated_at=now, **fields))
        await db.execute(delete(OrderItem).where(OrderItem.order_id == order_id))

    db.add_all([
        OrderItem(
            order_id=order_id,
            product_sku=item.product_sku,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_price=item.unit_price,
        )
        for item in normalized.items
    ])
    await db.flush()

    order = await db.get(Order, order_id, populate_existing=True)
    logger.info(
        "Order %s: %s/%s",
        "created" if created else "updated",
        normalized.platform, normalized.external_order_id,
        extra={"tenant_id": str(integration.tenant_id), "order_id": str(order_id)},
    )
    return order, created


async def ingest_order(
    db: AsyncSession,
    integration: Integration,
    normalized: NormalizedOrder,
) -> OrderIngestResult:
    """Upsert the customer, the order and its line items for one webhook."""
    customer = await upsert_customer_for_order(db, integration.tenant_id, normalized.customer)
    order, created = await upsert_order(
        db, integration, normalized, customer.id if customer else None,
    )
    if created and customer:
        await increment_order_count(db, customer.id)
        customer = await db.get(Customer, customer.id, populate_existing=True)

    return OrderIngestResult(
        order=order,
        customer=customer,
        created=created,
        items_count=len(normalized.items),
    )
