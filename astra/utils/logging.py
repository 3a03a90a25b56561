"""
JSON log lines for the API process and the notification worker.

Each line carries the record's own fields plus whatever is bound to the
current context: the HTTP correlation id, and while a webhook is being
handled its diagnostic request id and resolved tenant. Extras that name a
sensitive field are redacted with the same table as the diagnostic log.
"""
import json
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from astra.utils.redaction import SENSITIVE_FIELDS, redact, redact_value

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
log_context_ctx: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

# LogRecord attributes promoted into the JSON line
EXTRA_FIELDS = (
    "tenant_id", "integration_id", "order_id", "lead_id", "job_id",
    "request_id", "courier", "platform", "error_code",
)


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: str) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


@contextmanager
def bound_log_context(**fields: Any) -> Iterator[dict[str, Any]]:
    """
    Attach fields to every log line emitted inside the block.

    Nested blocks see the outer fields too. None values are dropped so a
    handler can bind a tenant id before it is known.
    """
    merged = {**log_context_ctx.get(), **{k: str(v) for k, v in fields.items() if v is not None}}
    token = log_context_ctx.set(merged)
    try:
        yield merged
    finally:
        log_context_ctx.reset(token)


def bind_log_fields(**fields: Any) -> None:
    """Add fields to the innermost bound context (e.g. once the tenant is resolved)."""
    current = log_context_ctx.get()
    if not current:
        return
    current.update({k: str(v) for k, v in fields.items() if v is not None})


def _clean(key: str, value: Any) -> Any:
    keep = SENSITIVE_FIELDS.get(key.lower())
    if keep is not None and not isinstance(value, (dict, list)):
        return redact_value(value, keep)
    return redact(value)


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per record; timestamp is the record's creation time."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "correlation_id": get_correlation_id(),
            "module": record.name,
            "message": record.getMessage(),
        }
        entry.update(log_context_ctx.get())

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        details = getattr(record, "details", None)
        if isinstance(details, dict):
            entry["details"] = {k: _clean(str(k), v) for k, v in details.items()}

        return json.dumps(entry, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """Install a single JSON stream handler on the root logger. Call once at startup."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(StructuredJsonFormatter())
    root_logger.addHandler(stream_handler)

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    # The diagnostic logger keeps its own level so debug endpoints stay useful
    logging.getLogger("astra.webhooks").setLevel(logging.INFO)
