"""
Webhook payload schemas - the per-endpoint contract for inbound JSON.

Lead and customer payloads are allow-listed (unknown keys are rejected) and
strictly typed. Storefront order payloads only declare the fields ingestion
reads; the platforms send far more, which is ignored.
"""
import json
import re
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[\d\s\-\+\(\)]{7,20}$")

LogisticStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
CodStatus = Literal["pending", "confirmed", "rejected"]
KpiStatus = Literal["new", "contacted", "qualified", "proposal", "negotiation", "won", "lost"]


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _check_email(value: Optional[str]) -> Optional[str]:
    if value is not None and not EMAIL_RE.match(value):
        raise ValueError("Invalid email format")
    return value


def _check_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not PHONE_RE.match(value):
        raise ValueError("Invalid phone format")
    return value


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("Field must be a non-empty string")
    return value


class StrictPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)


class LeadWebhookPayload(StrictPayload):
    """POST /api/webhook/lead"""
    source: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    logistic_status: Optional[LogisticStatus] = None
    cod_status: Optional[CodStatus] = None
    kpi_status: Optional[KpiStatus] = None
    notes: Optional[str] = None

    @field_validator("name", "email", "phone", "notes", mode="before")
    @classmethod
    def blank_optional_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("source")
    @classmethod
    def source_not_empty(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("email")
    @classmethod
    def email_format(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value)

    @field_validator("phone")
    @classmethod
    def phone_format(cls, value: Optional[str]) -> Optional[str]:
        return _check_phone(value)


class LeadCreatePayload(LeadWebhookPayload):
    """POST /api/v1/leads - webhook fields plus tag names."""
    tags: Optional[list[str]] = None


class LeadUpdatePayload(StrictPayload):
    """PATCH /api/v1/leads/{id} - every field optional, same formats."""
    source: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    logistic_status: Optional[LogisticStatus] = None
    cod_status: Optional[CodStatus] = None
    kpi_status: Optional[KpiStatus] = None
    notes: Optional[str] = None
    tags: Optional[list[str]] = None

    @field_validator("email")
    @classmethod
    def email_format(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value)

    @field_validator("phone")
    @classmethod
    def phone_format(cls, value: Optional[str]) -> Optional[str]:
        return _check_phone(value)


class CustomerWebhookPayload(StrictPayload):
    """POST /api/webhook/customer"""
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[dict[str, Any]] = None
    source: Optional[str] = None
    order_id: Optional[int] = None

    @field_validator("phone", "source", mode="before")
    @classmethod
    def blank_optional_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("name", "email")
    @classmethod
    def required_not_empty(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("phone")
    @classmethod
    def phone_format(cls, value: Optional[str]) -> Optional[str]:
        return _check_phone(value)

    @field_validator("email")
    @classmethod
    def email_format(cls, value: str) -> str:
        return _check_email(value.strip())

    @field_validator("address", mode="before")
    @classmethod
    def address_object(cls, value: Any) -> Any:
        """Address arrives as an object or as a JSON string encoding one."""
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                raise ValueError("Address must be a JSON object or JSON string")
        if value is not None and not isinstance(value, dict):
            raise ValueError("Address must be a JSON object or JSON string")
        return value


# === STOREFRONT ORDER PAYLOADS ===

class OrderPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PlatformAddress(OrderPayload):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    address_1: Optional[str] = None
    address_2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    postcode: Optional[str] = None
    country: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class PlatformLineItem(OrderPayload):
    sku: Optional[str] = None
    name: Optional[str] = None
    title: Optional[str] = None
    quantity: int = 1
    price: Union[float, str, None] = None


class ShopifyCustomer(OrderPayload):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class ShopifyOrderPayload(OrderPayload):
    """Shopify orders/create and orders/updated webhook body."""
    id: Union[int, str]
    email: Optional[str] = None
    financial_status: Optional[str] = None
    total_price: Union[float, str, None] = None
    currency: Optional[str] = None
    created_at: Optional[str] = None
    customer: Optional[ShopifyCustomer] = None
    billing_address: Optional[PlatformAddress] = None
    shipping_address: Optional[PlatformAddress] = None
    line_items: list[PlatformLineItem] = Field(default_factory=list)


class WooCommerceOrderPayload(OrderPayload):
    """WooCommerce order.created / order.updated webhook body."""
    id: Union[int, str]
    status: Optional[str] = None
    total: Union[float, str, None] = None
    currency: Optional[str] = None
    date_created: Optional[str] = None
    billing: Optional[PlatformAddress] = None
    shipping: Optional[PlatformAddress] = None
    line_items: list[PlatformLineItem] = Field(default_factory=list)
