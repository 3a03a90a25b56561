"""
Webhook request validation: content type, JSON body, and per-endpoint schema.

Every failure raises WebhookValidationError carrying the offending field
names, which the app renders as a 400. Nothing here is tolerant: a body that
does not declare JSON is rejected without an attempt to parse it.
"""
import json
import logging
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from astra.errors import WebhookValidationError

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_ERROR_MESSAGES = {
    "missing": "Field is required",
    "extra_forbidden": "Field is not allowed",
    "literal_error": "Value is not one of the allowed values",
    "string_type": "Must be a string",
    "int_type": "Must be a number",
}


def require_json_content_type(content_type: Optional[str]) -> None:
    if not content_type or "application/json" not in content_type.lower():
        raise WebhookValidationError(
            "Invalid content type",
            fields=[{"field": "content-type", "message": "Content-Type must be application/json"}],
        )


def parse_json_body(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        raise WebhookValidationError(
            "Invalid JSON payload",
            fields=[{"field": "body", "message": "Body is not valid JSON"}],
        )


def _field_errors(exc: ValidationError) -> list[dict[str, str]]:
    fields = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "body"
        message = _ERROR_MESSAGES.get(err["type"], err["msg"])
        if err["type"] == "value_error":
            # pydantic prefixes custom ValueError text with "Value error, "
            message = str(err.get("ctx", {}).get("error", err["msg"]))
        fields.append({"field": loc, "message": message})
    return fields


def validate_payload(payload: Any, schema: type[SchemaT]) -> SchemaT:
    """
    Validate a decoded JSON payload against an endpoint schema.

    Returns the schema instance, or raises WebhookValidationError listing
    every offending field.
    """
    if not isinstance(payload, dict):
        raise WebhookValidationError(
            "Validation failed",
            fields=[{"field": "body", "message": "Body must be a JSON object"}],
        )
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        fields = _field_errors(e)
        logger.info(
            "Webhook payload rejected by %s: %s",
            schema.__name__, ", ".join(f["field"] for f in fields),
        )
        raise WebhookValidationError(
            "Validation failed: " + ", ".join(f["field"] for f in fields),
            fields=fields,
        )
