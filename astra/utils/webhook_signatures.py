"""
Webhook signature validation for storefront order deliveries.

Shopify (X-Shopify-Hmac-Sha256) and WooCommerce (X-WC-Webhook-Signature)
both sign the raw request body with HMAC-SHA256 and send the digest
base64-encoded. The key is the integration's webhook secret.
"""
import base64
import hashlib
import hmac
import logging
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = {
    "shopify": "x-shopify-hmac-sha256",
    "woocommerce": "x-wc-webhook-signature",
}

# Headers the platforms send alongside the signature naming the store
DOMAIN_HEADERS = {
    "shopify": "x-shopify-shop-domain",
    "woocommerce": "x-wc-webhook-source",
}


def compute_hmac_sha256_base64(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_hmac_sha256_base64(secret: Optional[str], signature: Optional[str], body: bytes) -> bool:
    """
    Validate a base64 HMAC-SHA256 signature of the raw body.
    Returns True if valid, False if invalid or either value is missing.
    """
    if not secret or not signature:
        return False
    expected = compute_hmac_sha256_base64(secret, body)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8", errors="replace"))


def normalize_store_domain(value: Optional[str]) -> Optional[str]:
    """Reduce a header or query value ("https://Shop.Example/", "shop.example") to a bare host."""
    if not value:
        return None
    value = value.strip()
    host = urlparse(value).hostname if "://" in value else value.split("/")[0]
    return host.lower() if host else None
