"""
Database models - import all models here so Alembic can discover them.
"""
from astra.models.tenant import Tenant
from astra.models.integration import Integration
from astra.models.customer import Customer
from astra.models.order import Order, OrderItem
from astra.models.lead import Lead, Tag, LeadEvent, lead_tags
from astra.models.notification_job import NotificationJob

__all__ = [
    "Tenant",
    "Integration",
    "Customer",
    "Order",
    "OrderItem",
    "Lead",
    "Tag",
    "LeadEvent",
    "lead_tags",
    "NotificationJob",
]
