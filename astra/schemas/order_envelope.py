"""
Normalized order - the platform-independent input to the order upsert.
Every storefront webhook parser produces one of these.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class NormalizedOrderItem(BaseModel):
    product_sku: Optional[str] = None
    product_name: str
    quantity: int = 1
    unit_price: float = 0.0


class NormalizedCustomer(BaseModel):
    name: str
    email: Optional[str] = None  # None when the platform sent no email
    phone: Optional[str] = None
    address: Optional[dict] = None  # {"billing": {...}, "shipping": {...}}


class NormalizedOrder(BaseModel):
    platform: str = Field(..., description="shopify or woocommerce")
    external_order_id: str
    status: Optional[str] = None
    total_amount: float = 0.0
    currency: Optional[str] = None
    order_created_at: Optional[datetime] = None
    customer: NormalizedCustomer
    items: list[NormalizedOrderItem] = Field(default_factory=list)
    raw_payload: Optional[dict] = None
