"""
Webhook diagnostic logger.

Each inbound webhook gets a request id at entry; every later entry for that
request carries it. Entries are redacted, kept in a bounded in-memory buffer,
mirrored to the "astra.webhooks" logger and appended as JSON lines to a file
sink. File writes go through a QueueHandler so the request path only enqueues;
a QueueListener thread owns the FileHandler. If the file sink cannot be
opened or written (read-only filesystem) it is disabled and logging continues
on the console. No method raises.
"""
import json
import logging
import os
import queue
import random
import string
import threading
import time
from collections import deque
from datetime import datetime, timezone
from functools import lru_cache
from logging.handlers import QueueHandler, QueueListener
from typing import Any, Optional

from astra.utils.redaction import redact

logger = logging.getLogger(__name__)
console = logging.getLogger("astra.webhooks")

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_request_id() -> str:
    """req_<epoch ms>_<9 random base36 chars>"""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"req_{int(time.time() * 1000)}_{suffix}"


class _SinkFileHandler(logging.FileHandler):
    """FileHandler that reports write failures instead of printing them."""

    def __init__(self, path: str, on_error):
        super().__init__(path, mode="a", encoding="utf-8")
        self.setFormatter(logging.Formatter("%(message)s"))
        self._on_error = on_error

    def handleError(self, record: logging.LogRecord) -> None:
        self._on_error()


class WebhookDiagnosticLogger:

    def __init__(self, log_path: Optional[str], buffer_size: int = 1000):
        self.log_path = log_path
        self._buffer: deque[dict] = deque(maxlen=buffer_size)
        self._lock = threading.Lock()
        self._file_enabled = False
        self._sink: Optional[logging.Logger] = None
        self._listener: Optional[QueueListener] = None
        if log_path:
            self._open_file_sink(log_path)

    def _open_file_sink(self, log_path: str) -> None:
        try:
            directory = os.path.dirname(log_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            handler = _SinkFileHandler(log_path, self._file_failed)
        except OSError as e:
            logger.warning("Webhook log file %s unavailable, console only: %s", log_path, str(e))
            return

        records: queue.SimpleQueue = queue.SimpleQueue()
        sink = logging.getLogger(f"astra.webhooks.file.{id(self):x}")
        sink.propagate = False
        sink.setLevel(logging.INFO)
        for old in sink.handlers[:]:
            sink.removeHandler(old)
        sink.addHandler(QueueHandler(records))

        self._listener = QueueListener(records, handler)
        self._listener.start()
        self._sink = sink
        self._file_enabled = True

    def _file_failed(self) -> None:
        # Runs on the listener thread
        if self._file_enabled:
            self._file_enabled = False
            logger.warning("Webhook log file %s unwritable, console only from now on", self.log_path)

    @property
    def file_enabled(self) -> bool:
        return self._file_enabled

    def _write(self, entry: dict) -> None:
        try:
            line = json.dumps(entry, default=str)
        except (TypeError, ValueError) as e:
            line = json.dumps({"request_id": entry.get("request_id"), "type": entry.get("type"),
                               "serialization_error": str(e)})

        mirrored = json.loads(line)
        with self._lock:
            self._buffer.append(mirrored)
        if self._file_enabled and self._sink is not None:
            self._sink.info(line)

        console.info(
            "webhook %s %s", mirrored.get("type"), mirrored.get("request_id"),
            extra={"request_id": mirrored.get("request_id"), "details": mirrored},
        )

    def _entry(self, request_id: str, entry_type: str, **fields: Any) -> dict:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": request_id,
            "type": entry_type,
        }
        entry.update(redact(fields))
        return entry

    def log_request(
        self,
        method: str,
        url: str,
        headers: dict,
        body: Any = None,
        query: Optional[dict] = None,
    ) -> str:
        request_id = new_request_id()
        self._safe(lambda: self._write(self._entry(
            request_id, "request",
            method=method, url=url, headers=dict(headers), query=query or {}, body=body,
        )))
        return request_id

    def log_processing_step(self, request_id: str, step: str, data: Optional[dict] = None) -> None:
        self._safe(lambda: self._write(self._entry(
            request_id, "processing", step=step, data=data or {},
        )))

    def log_response(
        self,
        request_id: str,
        status_code: int,
        message: str,
        data: Any = None,
        processing_time_ms: Optional[int] = None,
    ) -> None:
        self._safe(lambda: self._write(self._entry(
            request_id, "response",
            status_code=status_code, message=message, data=data,
            processing_time_ms=processing_time_ms,
        )))

    def log_error(self, request_id: str, error: BaseException, context: Optional[dict] = None) -> None:
        self._safe(lambda: self._write(self._entry(
            request_id, "error",
            error=str(error), error_type=error.__class__.__name__, context=context or {},
        )))

    def _safe(self, fn) -> None:
        try:
            fn()
        except Exception as e:
            # Diagnostics never fail the request being logged
            logger.warning("Webhook diagnostic logging failed: %s", str(e))

    def get_recent_logs(self, lines: int = 200) -> list[dict]:
        """Most recent entries from the in-memory buffer, oldest first."""
        lines = max(1, lines)
        with self._lock:
            return list(self._buffer)[-lines:]

    def flush(self) -> None:
        """Block until queued entries are on disk. Call from a worker thread."""
        if self._listener is not None:
            self._listener.stop()
            self._listener.start()

    def clear_logs(self) -> None:
        """Empty the buffer and truncate the file. Blocking; call from a worker thread."""
        with self._lock:
            self._buffer.clear()
        if self._listener is not None and self._file_enabled:
            self._listener.stop()
            try:
                with open(self.log_path, "w", encoding="utf-8"):
                    pass
            except OSError as e:
                logger.warning("Could not clear webhook log file: %s", str(e))
            finally:
                self._listener.start()
        logger.info("Webhook diagnostic logs cleared")

    def close(self) -> None:
        """Drain the queue and close the file. Later entries stay in memory only."""
        self._file_enabled = False
        if self._listener is not None:
            self._listener.stop()
            for handler in self._listener.handlers:
                try:
                    handler.close()
                except (OSError, ValueError) as e:
                    logger.warning("Could not close webhook log file: %s", str(e))
            self._listener = None

    @staticmethod
    def render_text(entries: list[dict]) -> str:
        """One human-readable line per entry."""
        lines = []
        for entry in entries:
            head = f"[{entry.get('timestamp', '?')}] {entry.get('request_id', '-')} {entry.get('type', '-')}"
            rest = {k: v for k, v in entry.items() if k not in ("timestamp", "request_id", "type")}
            lines.append(f"{head} {json.dumps(rest, default=str)}")
        return "\n".join(lines)


@lru_cache()
def get_webhook_logger() -> WebhookDiagnosticLogger:
    from astra.config import get_settings
    settings = get_settings()
    return WebhookDiagnosticLogger(settings.webhook_log_path, settings.webhook_log_buffer_size)
