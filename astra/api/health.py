"""
Health check endpoints - used by load balancers and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + Redis)
- GET /health/deep  - DB, Redis, notification worker heartbeat, queue backlog
                      and outbound provider configuration
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from astra.config import get_settings
from astra.database import get_db
from astra.services.notification_queue import NotificationWorker, queue_stats
from astra.workers.notification_dispatch import HEARTBEAT_TTL, heartbeat_key

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

APP_VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": APP_VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Readiness check - verifies database and Redis connectivity.
    Redis only carries wake-ups, so its loss degrades but does not fail readiness.
    """
    checks = {
        "database": (await _check_database(db))["healthy"],
        "redis": (await _check_redis())["healthy"],
    }
    worker = _worker(request)

    if all(checks.values()):
        status = "ready"
    elif checks["database"]:
        status = "degraded"
    else:
        status = "unavailable"

    return {
        "status": status,
        "checks": checks,
        "notification_worker": worker.worker_id if worker else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/deep")
async def deep_health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Deep health check for external monitoring.

    Only the database is critical; everything else degrades the status.
    """
    settings = get_settings()
    checks = {
        "database": await _check_database(db),
        "redis": await _check_redis(),
        "notification_worker": await _check_worker(_worker(request), settings.notification_worker_enabled),
        "notification_queue": await _check_queue(db),
        "telegram": {"healthy": bool(settings.telegram_bot_token)},
        "aftership": {"healthy": bool(settings.aftership_api_key)},
    }

    if all(c["healthy"] for c in checks.values()):
        status = "healthy"
    elif checks["database"]["healthy"]:
        status = "degraded"
    else:
        status = "unhealthy"

    return {
        "status": status,
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": APP_VERSION,
    }


def _worker(request: Request) -> Optional[NotificationWorker]:
    return getattr(request.app.state, "notification_worker", None)


async def _check_database(db: AsyncSession) -> dict:
    try:
        await db.execute(text("SELECT 1"))
        return {"healthy": True}
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_redis() -> dict:
    try:
        from astra.utils.redis_conn import get_redis
        redis = await get_redis()
        await redis.ping()
        return {"healthy": True}
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_worker(worker: Optional[NotificationWorker], loop_enabled: bool) -> dict:
    """Heartbeat freshness of this process's notification worker loop."""
    if worker is None:
        return {"healthy": False, "error": "Notification worker not initialized"}
    if not loop_enabled:
        # Sweeps only run on demand (admin endpoint, webhook background tasks)
        return {"healthy": True, "worker_id": worker.worker_id, "loop": "disabled"}

    try:
        from astra.utils.redis_conn import get_redis
        redis = await get_redis()
        last = await redis.get(heartbeat_key(worker.worker_id))
    except Exception as e:
        return {"healthy": False, "worker_id": worker.worker_id, "error": str(e)}

    if not last:
        return {"healthy": False, "worker_id": worker.worker_id, "error": "No heartbeat"}
    age = (datetime.now(timezone.utc) - datetime.fromisoformat(last)).total_seconds()
    return {
        "healthy": age < HEARTBEAT_TTL,
        "worker_id": worker.worker_id,
        "last_heartbeat": last,
        "age_seconds": int(age),
    }


async def _check_queue(db: AsyncSession) -> dict:
    try:
        counts = await queue_stats(db)
    except Exception as e:
        logger.warning("Notification queue health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}
    return {"healthy": True, **counts}
