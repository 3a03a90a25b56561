"""
Central redaction policy for anything written to diagnostic logs.

A value is redacted when its key (case-insensitive) appears in
SENSITIVE_FIELDS. The mapped number is how many leading characters survive.
New sensitive fields are added here, not at call sites.
"""
from typing import Any

SENSITIVE_FIELDS: dict[str, int] = {
    "x-webhook-secret": 8,
    "webhook-secret": 8,
    "webhook_secret": 8,
    "webhooksecret": 8,
    "x-wc-webhook-signature": 16,
    "x-shopify-hmac-sha256": 16,
    "authorization": 8,
    "access_token": 4,
    "telegram_bot_token": 4,
}


def redact_value(value: Any, keep: int) -> str:
    """Truncate to a short prefix plus a length annotation."""
    text = str(value)
    return f"{text[:keep]}... (length: {len(text)})"


def redact(data: Any) -> Any:
    """Return a copy of *data* with sensitive keys redacted, recursively."""
    if isinstance(data, dict):
        cleaned = {}
        for key, value in data.items():
            keep = SENSITIVE_FIELDS.get(str(key).lower())
            if keep is not None and value is not None and not isinstance(value, (dict, list)):
                cleaned[key] = redact_value(value, keep)
            else:
                cleaned[key] = redact(value)
        return cleaned
    if isinstance(data, list):
        return [redact(item) for item in data]
    return data
