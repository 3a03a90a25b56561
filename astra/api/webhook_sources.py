"""
Storefront-specific order payload parsers.
Each function normalizes a raw platform payload into a NormalizedOrder for
the order upsert.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from astra.schemas.order_envelope import NormalizedCustomer, NormalizedOrder, NormalizedOrderItem
from astra.schemas.webhook_payloads import (
    PlatformAddress,
    PlatformLineItem,
    ShopifyOrderPayload,
    WooCommerceOrderPayload,
)

logger = logging.getLogger(__name__)


def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Non-numeric amount in order payload: %r", value)
        return 0.0


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Platform timestamps are ISO 8601; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable order timestamp: %s", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _full_name(first: Optional[str], last: Optional[str]) -> str:
    return " ".join(part.strip() for part in (first, last) if part and part.strip())


def _address_dict(address: Optional[PlatformAddress]) -> Optional[dict]:
    if address is None:
        return None
    return address.model_dump(exclude_none=True)


def _items(line_items: list[PlatformLineItem]) -> list[NormalizedOrderItem]:
    return [
        NormalizedOrderItem(
            product_sku=item.sku or None,
            product_name=item.name or item.title or "Unnamed product",
            quantity=item.quantity,
            unit_price=_to_float(item.price),
        )
        for item in line_items
    ]


def _normalize_email(email: Optional[str]) -> Optional[str]:
    if not email or not email.strip():
        return None
    return email.strip().lower()


def parse_shopify_order(payload: ShopifyOrderPayload, raw: Optional[dict] = None) -> NormalizedOrder:
    """
    Parse a Shopify order webhook into a NormalizedOrder.
    *raw* is the decoded request body, stored as delivered.
    """
    customer = payload.customer
    billing = payload.billing_address
    shipping = payload.shipping_address

    name = _full_name(
        customer.first_name if customer else None,
        customer.last_name if customer else None,
    )
    if not name and billing:
        name = _full_name(billing.first_name, billing.last_name)

    email = _normalize_email((customer.email if customer else None) or payload.email)
    phone = (
        (customer.phone if customer else None)
        or (billing.phone if billing else None)
        or (shipping.phone if shipping else None)
    )

    return NormalizedOrder(
        platform="shopify",
        external_order_id=str(payload.id),
        status=payload.financial_status,
        total_amount=_to_float(payload.total_price),
        currency=payload.currency,
        order_created_at=_parse_timestamp(payload.created_at),
        customer=NormalizedCustomer(
            name=name or email or "Unknown customer",
            email=email,
            phone=phone,
            address={"billing": _address_dict(billing), "shipping": _address_dict(shipping)},
        ),
        items=_items(payload.line_items),
        raw_payload=raw if raw is not None else payload.model_dump(mode="json"),
    )


def parse_woocommerce_order(payload: WooCommerceOrderPayload, raw: Optional[dict] = None) -> NormalizedOrder:
    """Parse a WooCommerce order webhook into a NormalizedOrder (see parse_shopify_order)."""
    billing = payload.billing
    shipping = payload.shipping

    name = _full_name(
        billing.first_name if billing else None,
        billing.last_name if billing else None,
    )
    email = _normalize_email(billing.email if billing else None)

    return NormalizedOrder(
        platform="woocommerce",
        external_order_id=str(payload.id),
        status=payload.status,
        total_amount=_to_float(payload.total),
        currency=payload.currency,
        order_created_at=_parse_timestamp(payload.date_created),
        customer=NormalizedCustomer(
            name=name or email or "Unknown customer",
            email=email,
            phone=billing.phone if billing else None,
            address={"billing": _address_dict(billing), "shipping": _address_dict(shipping)},
        ),
        items=_items(payload.line_items),
        raw_payload=raw if raw is not None else payload.model_dump(mode="json"),
    )
