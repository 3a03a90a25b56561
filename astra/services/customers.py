"""
Customer creation and order-driven customer upsert.

Customers are unique per (tenant, email); the unique constraint is the
arbiter, so concurrent duplicates resolve to one row.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from astra.database import dialect_insert
from astra.errors import ConflictError
from astra.models.customer import Customer
from astra.schemas.order_envelope import NormalizedCustomer
from astra.schemas.webhook_payloads import CustomerWebhookPayload

logger = logging.getLogger(__name__)

CUSTOMER_KEY = ["tenant_id", "email"]


async def find_customer(db: AsyncSession, tenant_id: uuid.UUID, email: str) -> Optional[Customer]:
    result = await db.execute(
        select(Customer).where(
            Customer.tenant_id == tenant_id,
            Customer.email == email.strip().lower(),
        )
    )
    return result.scalar_one_or_none()


async def create_customer(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    payload: CustomerWebhookPayload,
) -> Customer:
    """
    Create a customer from the customer webhook.

    Raises ConflictError when (tenant, email) already exists, including
    when a concurrent request wins the insert.
    """
    email = payload.email.strip().lower()

    existing = await find_customer(db, tenant_id, email)
    if existing:
        raise ConflictError(
            "Customer already exists",
            details={"id": str(existing.id), "email": existing.email},
        )

    now = datetime.now(timezone.utc)
    stmt = (
        dialect_insert(db, Customer)
        .values(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            name=payload.name.strip(),
            email=email,
            phone=payload.phone.strip() if payload.phone else None,
            address=payload.address,
            source=payload.source or "webhook",
            order_ref=payload.order_id,
            total_orders=0,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=CUSTOMER_KEY)
        .returning(Customer.id)
    )
    customer_id = (await db.execute(stmt)).scalar_one_or_none()
    if customer_id is None:
        winner = await find_customer(db, tenant_id, email)
        raise ConflictError(
            "Customer already exists",
            details={"id": str(winner.id) if winner else None, "email": email},
        )

    logger.info("Customer created: %s", str(customer_id)[:8], extra={"tenant_id": str(tenant_id)})
    return await db.get(Customer, customer_id)


async def upsert_customer_for_order(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    customer: NormalizedCustomer,
) -> Optional[Customer]:
    """
    Insert or refresh the customer behind an order.

    Returns None when the platform sent no email, since email is the
    natural key.
    """
    if not customer.email:
        return None

    now = datetime.now(timezone.utc)
    stmt = (
        dialect_insert(db, Customer)
        .values(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            name=customer.name,
            email=customer.email,
            phone=customer.phone,
            address=customer.address,
            source="order",
            total_orders=0,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=CUSTOMER_KEY)
        .returning(Customer.id)
    )
    customer_id = (await db.execute(stmt)).scalar_one_or_none()

    if customer_id is None:
        existing = await find_customer(db, tenant_id, customer.email)
        customer_id = existing.id
        changes = {"name": customer.name, "address": customer.address, "updated_at": now}
        if customer.phone:
            changes["phone"] = customer.phone
        await db.execute(update(Customer).where(Customer.id == customer_id).values(**changes))

    return await db.get(Customer, customer_id, populate_existing=True)


async def increment_order_count(db: AsyncSession, customer_id: uuid.UUID) -> None:
    await db.execute(
        update(Customer)
        .where(Customer.id == customer_id)
        .values(total_orders=Customer.total_orders + 1)
    )
