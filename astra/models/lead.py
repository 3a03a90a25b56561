"""
CRM lead models.

A Lead carries three independent status axes (logistics, cash-on-delivery,
pipeline/KPI), free-form notes and a set of tags. LeadEvent is the lead's
append-only audit trail: rows are inserted, never updated or deleted.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import (
    Column, String, Text, DateTime, ForeignKey, Index, Table, UniqueConstraint, event,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from astra.database import Base

LOGISTIC_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
COD_STATUSES = ("pending", "confirmed", "rejected")
KPI_STATUSES = ("new", "contacted", "qualified", "proposal", "negotiation", "won", "lost")

DEFAULT_TAG_COLOR = "#14b8a6"


lead_tags = Table(
    "lead_tags",
    Base.metadata,
    Column("lead_id", UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", UUID(as_uuid=True), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )

    name: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    source: Mapped[str] = mapped_column(String(100), nullable=False)

    logistic_status: Mapped[Optional[str]] = mapped_column(String(20))
    cod_status: Mapped[Optional[str]] = mapped_column(String(20))
    kpi_status: Mapped[Optional[str]] = mapped_column(String(20))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_leads_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Lead {self.source} ({self.kpi_status})>"


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str] = mapped_column(String(16), default=DEFAULT_TAG_COLOR)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_tags_tenant_name"),
    )


class LeadEvent(Base):
    __tablename__ = "lead_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)  # created, lead_updated
    details: Mapped[Optional[dict]] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_lead_events_lead_created", "lead_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<LeadEvent {self.event_type}>"


@event.listens_for(LeadEvent, "before_update")
@event.listens_for(LeadEvent, "before_delete")
def _reject_lead_event_mutation(mapper, connection, target) -> None:
    raise RuntimeError("lead_events is append-only")
