"""Initial schema - tenants, storefront orders, CRM leads, notification queue.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Tenants
    op.create_table(
        "tenants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), unique=True),
        sa.Column("webhook_secret", sa.String(64), unique=True),
        sa.Column("telegram_chat_id", sa.String(64)),
        sa.Column("telegram_bot_token", sa.String(128)),
        sa.Column("notifications_enabled", sa.Boolean, server_default=sa.true()),
        sa.Column("is_admin", sa.Boolean, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        *_timestamps(),
    )

    # Storefront integrations
    op.create_table(
        "integrations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("access_token", sa.Text),
        sa.Column("webhook_secret", sa.String(64), unique=True),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("platform IN ('shopify', 'woocommerce')", name="ck_integrations_platform"),
    )
    op.create_index("ix_integrations_tenant", "integrations", ["tenant_id"])

    # Customers
    op.create_table(
        "customers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32)),
        sa.Column("address", postgresql.JSONB),
        sa.Column("source", sa.String(50)),
        sa.Column("order_ref", sa.Integer),
        sa.Column("total_orders", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "email", name="uq_customers_tenant_email"),
    )

    # Orders + line items
    op.create_table(
        "orders",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "integration_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("integrations.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("customers.id")),
        sa.Column("external_order_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(50)),
        sa.Column("total_amount", sa.Float, server_default="0"),
        sa.Column("currency", sa.String(8)),
        sa.Column("order_created_at", sa.DateTime(timezone=True)),
        sa.Column("tracking_number", sa.String(100)),
        sa.Column("courier_slug", sa.String(50)),
        sa.Column("raw_payload", postgresql.JSONB),
        *_timestamps(),
        sa.UniqueConstraint("integration_id", "external_order_id", name="uq_orders_integration_external"),
    )
    op.create_index("ix_orders_customer", "orders", ["customer_id"])

    op.create_table(
        "order_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "order_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("product_sku", sa.String(100)),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer, server_default="1"),
        sa.Column("unit_price", sa.Float, server_default="0"),
    )
    op.create_index("ix_order_items_order", "order_items", ["order_id"])

    # CRM leads, tags, append-only events
    op.create_table(
        "leads",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(32)),
        sa.Column("source", sa.String(100), nullable=False),
        sa.Column("logistic_status", sa.String(20)),
        sa.Column("cod_status", sa.String(20)),
        sa.Column("kpi_status", sa.String(20)),
        sa.Column("notes", sa.Text),
        *_timestamps(),
        sa.CheckConstraint(
            "logistic_status IN ('pending', 'processing', 'shipped', 'delivered', 'cancelled')",
            name="ck_leads_logistic_status",
        ),
        sa.CheckConstraint(
            "cod_status IN ('pending', 'confirmed', 'rejected')",
            name="ck_leads_cod_status",
        ),
        sa.CheckConstraint(
            "kpi_status IN ('new', 'contacted', 'qualified', 'proposal', 'negotiation', 'won', 'lost')",
            name="ck_leads_kpi_status",
        ),
    )
    op.create_index("ix_leads_tenant_created", "leads", ["tenant_id", "created_at"])

    op.create_table(
        "tags",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("color", sa.String(16), server_default="#14b8a6"),
        sa.UniqueConstraint("tenant_id", "name", name="uq_tags_tenant_name"),
    )

    op.create_table(
        "lead_tags",
        sa.Column(
            "lead_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("leads.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column(
            "tag_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True,
        ),
    )

    op.create_table(
        "lead_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "lead_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("leads.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("details", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_lead_events_lead_created", "lead_events", ["lead_id", "created_at"])

    # Notification queue
    op.create_table(
        "notification_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column(
            "order_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("orders.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "lead_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("leads.id", ondelete="SET NULL"),
        ),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("payload", postgresql.JSONB),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text),
        sa.Column("claimed_by", sa.String(64)),
        sa.Column("claimed_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_notification_jobs_status",
        ),
    )
    op.create_index(
        "ix_notification_jobs_status_created", "notification_jobs", ["status", "created_at"],
    )


def downgrade() -> None:
    op.drop_table("notification_jobs")
    op.drop_table("lead_events")
    op.drop_table("lead_tags")
    op.drop_table("tags")
    op.drop_table("leads")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("customers")
    op.drop_table("integrations")
    op.drop_table("tenants")
