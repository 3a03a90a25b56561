"""
Error taxonomy for webhook ingestion and tracking.

Webhook callers receive {"error", "message"} JSON (plus "fields" or "details"
where relevant). The handler registered in create_app() renders any AstraError;
anything else becomes a logged 500 with a generic message.
"""
from typing import Any, Optional


class AstraError(Exception):
    status_code = 500
    error = "internal_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class AuthenticationError(AstraError):
    """Missing or unknown webhook secret."""
    status_code = 401
    error = "unauthorized"


class WebhookValidationError(AstraError):
    """Payload violates the endpoint schema. Carries the offending field names."""
    status_code = 400
    error = "validation_error"

    def __init__(self, message: str, fields: Optional[list[dict[str, str]]] = None):
        super().__init__(message)
        self.fields = fields or []

    @property
    def field_names(self) -> list[str]:
        return [f["field"] for f in self.fields]

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["fields"] = self.fields
        return body


class ConflictError(AstraError):
    """Natural key already taken (e.g. tenant + customer email)."""
    status_code = 409
    error = "conflict"


class UpstreamError(AstraError):
    """Courier API or notification transport failure."""
    status_code = 502
    error = "upstream_error"


class InternalError(AstraError):
    status_code = 500
    error = "internal_error"

    def __init__(self, message: str = "Internal processing error"):
        super().__init__(message)


class SecretGenerationError(RuntimeError):
    pass


class NotificationDeliveryError(UpstreamError):
    """The notification transport did not accept a message."""


class CourierAPIError(UpstreamError):
    """Error response from the tracking provider."""

    def __init__(self, message: str, code: Optional[int] = None, http_status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.http_status = http_status
