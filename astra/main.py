"""
Astra CRM - webhook ingestion, notifications and shipment tracking.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from astra.config import get_settings
from astra.api.router import api_router
from astra.errors import AstraError
from astra.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)
from astra.utils.redaction import redact

logger = logging.getLogger("astra")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


def scrub_sentry_event(event: dict, hint: dict) -> dict:
    """Redact webhook secrets and signatures from request data sent to Sentry."""
    request = event.get("request")
    if isinstance(request, dict):
        for key in ("headers", "data", "query_string"):
            if isinstance(request.get(key), (dict, list)):
                request[key] = redact(request[key])
    return event


async def astra_error_handler(request: Request, exc: AstraError) -> JSONResponse:
    """Render domain errors as {"error", "message", ...} JSON."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("Astra starting up (env=%s)", settings.app_env)

    if not settings.dashboard_jwt_secret:
        logger.warning(
            "DASHBOARD_JWT_SECRET not set - falling back to APP_SECRET_KEY. "
            "Set a dedicated JWT secret for production."
        )
    if not settings.telegram_bot_token:
        logger.warning("TELEGRAM_BOT_TOKEN not set - only tenants with their own bot token get notifications")
    if not settings.aftership_api_key:
        logger.warning("AFTERSHIP_API_KEY not set - tracking reconciliation disabled")

    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
                send_default_pii=False,
                before_send=scrub_sentry_event,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    from astra.database import get_session_factory
    from astra.services.notification_queue import build_notification_worker
    from astra.workers.notification_dispatch import run_notification_worker

    worker = build_notification_worker(get_session_factory())
    app.state.notification_worker = worker

    worker_tasks: list[asyncio.Task] = []
    if settings.notification_worker_enabled:
        worker_tasks.append(asyncio.create_task(
            run_notification_worker(worker, settings.notification_poll_interval_seconds)
        ))
        logger.info("Notification worker started (%s)", worker.worker_id)
    else:
        logger.info("Notification worker loop disabled (NOTIFICATION_WORKER_ENABLED=false)")

    yield

    logger.info("Astra shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        done, pending = await asyncio.wait(worker_tasks, timeout=10.0)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
    from astra.database import dispose_engine
    await dispose_engine()
    from astra.services.webhook_logger import get_webhook_logger
    await asyncio.get_running_loop().run_in_executor(None, get_webhook_logger().close)
    get_webhook_logger.cache_clear()
    logger.info("Astra shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Astra CRM",
        description="Webhook ingestion, notifications and shipment tracking",
        version="1.0.0",
        lifespan=lifespan,
    )

    origins = ["http://localhost:3000", "http://localhost:5173", settings.app_base_url]
    origins.extend(o.strip() for o in settings.allowed_origins.split(",") if o.strip())
    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization", "Content-Type", "X-Correlation-ID",
            "Accept", "Origin", "X-Requested-With",
        ],
    )

    application.add_middleware(CorrelationIdMiddleware)
    application.add_exception_handler(AstraError, astra_error_handler)
    application.include_router(api_router)

    return application


app = create_app()
