"""
Operator access to the webhook diagnostic log. Admin only.
"""
import asyncio
import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from astra.api.deps import get_current_admin
from astra.models.tenant import Tenant
from astra.services.webhook_logger import WebhookDiagnosticLogger, get_webhook_logger

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhook-debug", tags=["webhook-debug"])


@router.get("/logs")
async def get_logs(
    lines: int = Query(200, ge=1, le=5000),
    format: Literal["json", "text"] = Query("json"),
    admin: Tenant = Depends(get_current_admin),
    wlog: WebhookDiagnosticLogger = Depends(get_webhook_logger),
):
    entries = wlog.get_recent_logs(lines)
    if format == "text":
        return PlainTextResponse(wlog.render_text(entries))
    return {
        "success": True,
        "data": {
            "entries": entries,
            "count": len(entries),
            "file_sink": wlog.file_enabled,
        },
    }


@router.delete("/logs")
async def clear_logs(
    admin: Tenant = Depends(get_current_admin),
    wlog: WebhookDiagnosticLogger = Depends(get_webhook_logger),
):
    # Truncating the file waits on the writer thread
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, wlog.clear_logs)
    logger.info("Webhook logs cleared by admin %s", str(admin.id)[:8])
    return {"success": True, "message": "Logs cleared"}
