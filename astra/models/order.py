"""
Order and OrderItem models - platform orders keyed by
(integration, external order id). Redeliveries update in place.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Float, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from astra.database import Base


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    integration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("integrations.id", ondelete="RESTRICT"), nullable=False
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id")
    )
    external_order_id: Mapped[str] = mapped_column(String(64), nullable=False)

    status: Mapped[Optional[str]] = mapped_column(String(50))
    total_amount: Mapped[float] = mapped_column(Float, default=0.0)
    currency: Mapped[Optional[str]] = mapped_column(String(8))
    order_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Shipment tracking (courier_slug is filled in by the reconciler)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100))
    courier_slug: Mapped[Optional[str]] = mapped_column(String(50))

    raw_payload: Mapped[Optional[dict]] = mapped_column(JSONB)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint(
            "integration_id", "external_order_id", name="uq_orders_integration_external"
        ),
        Index("ix_orders_customer", "customer_id"),
    )

    def __repr__(self) -> str:
        return f"<Order {self.external_order_id} ({self.status})>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    product_sku: Mapped[Optional[str]] = mapped_column(String(100))
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_price: Mapped[float] = mapped_column(Float, default=0.0)

    __table_args__ = (
        Index("ix_order_items_order", "order_id"),
    )
