"""
Notification dispatch worker - sweeps the notification_jobs table.

Uses BRPOP on a Redis notification key for near-instant wake on new jobs,
with a timeout falling back to a DB poll as safety net.
"""
import asyncio
import logging
from datetime import datetime, timezone

from astra.services.notification_queue import QUEUE_NOTIFY_KEY, NotificationWorker

logger = logging.getLogger(__name__)

BRPOP_TIMEOUT = 30  # seconds to wait for a Redis notification
HEARTBEAT_TTL = 120


def heartbeat_key(worker_id: str) -> str:
    return f"astra:worker_health:notification_dispatch:{worker_id}"


async def _heartbeat(worker: NotificationWorker) -> None:
    """Store heartbeat timestamp in Redis."""
    try:
        from astra.utils.redis_conn import get_redis
        redis = await get_redis()
        await redis.set(
            heartbeat_key(worker.worker_id),
            datetime.now(timezone.utc).isoformat(),
            ex=HEARTBEAT_TTL,
        )
    except Exception as e:
        logger.debug("Heartbeat write failed: %s", str(e))


async def _wait_for_work(poll_interval: int) -> None:
    try:
        from astra.utils.redis_conn import get_redis
        redis = await get_redis()
        result = await redis.brpop(QUEUE_NOTIFY_KEY, timeout=BRPOP_TIMEOUT)
        if result:
            # Drain additional notifications to avoid stacking
            while await redis.rpop(QUEUE_NOTIFY_KEY):
                pass
    except Exception as e:
        logger.debug("Redis BRPOP unavailable, falling back to sleep: %s", str(e))
        await asyncio.sleep(poll_interval)


async def run_notification_worker(worker: NotificationWorker, poll_interval: int = 30) -> None:
    """Main loop - sweep, then wait for a notification or the poll interval."""
    logger.info("Notification worker %s started (BRPOP %ds timeout)", worker.worker_id, BRPOP_TIMEOUT)

    while True:
        full_batch = False
        try:
            result = await worker.sweep()
            full_batch = result.claimed >= worker.batch_size
        except Exception as e:
            logger.error("Notification sweep error: %s", str(e), exc_info=True)

        await _heartbeat(worker)

        # A full batch means more work is probably waiting
        if not full_batch:
            await _wait_for_work(poll_interval)
