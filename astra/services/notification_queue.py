"""
Notification dispatch queue.

Jobs are rows in notification_jobs. Enqueueing is a single insert; delivery
happens later in NotificationWorker.sweep(), triggered in the background
after a webhook response and by the long-running worker loop.

Ownership: a sweep claims a job with a conditional UPDATE
(pending -> processing, claimed_by = worker id). Only the claiming worker
may complete, retry or fail it. Jobs left in processing longer than the
processing timeout (a crashed worker) are reclaimed and the interrupted
run counts as one attempt.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from astra.errors import NotificationDeliveryError
from astra.models.notification_job import JOB_STATUSES, NotificationJob
from astra.models.tenant import Tenant
from astra.services.telegram import NotificationDestination, format_message

logger = logging.getLogger(__name__)

QUEUE_NOTIFY_KEY = "astra:notification_notify"
MAX_ERROR_LENGTH = 2000


class NotificationTransport(Protocol):
    async def deliver(self, destination: NotificationDestination, message: str) -> None:
        ...


@dataclass
class SweepResult:
    claimed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    reclaimed: int = 0
    skipped: bool = False


async def enqueue_notification(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    kind: str,
    payload: dict,
    order_id: Optional[uuid.UUID] = None,
    lead_id: Optional[uuid.UUID] = None,
    max_attempts: int = 3,
) -> NotificationJob:
    """Insert a pending job. Caller commits."""
    job = NotificationJob(
        tenant_id=tenant_id,
        order_id=order_id,
        lead_id=lead_id,
        kind=kind,
        payload=payload,
        status="pending",
        attempts=0,
        max_attempts=max_attempts,
    )
    db.add(job)
    await db.flush()
    logger.info(
        "Notification enqueued: kind=%s id=%s", kind, str(job.id)[:8],
        extra={"tenant_id": str(tenant_id), "job_id": str(job.id)},
    )
    return job


async def notify_workers() -> None:
    """Wake idle worker loops on any instance. Best effort."""
    try:
        from astra.utils.redis_conn import get_redis
        redis = await get_redis()
        await redis.lpush(QUEUE_NOTIFY_KEY, "1")
    except Exception as e:
        logger.debug("Worker wake-up signal failed: %s", str(e))


async def queue_stats(db: AsyncSession) -> dict[str, int]:
    """Job counts per status, zero-filled."""
    result = await db.execute(
        select(NotificationJob.status, func.count()).group_by(NotificationJob.status)
    )
    counts = {status: 0 for status in JOB_STATUSES}
    for status, count in result.all():
        counts[status] = count
    counts["total"] = sum(counts[s] for s in JOB_STATUSES)
    return counts


class NotificationWorker:
    """
    Queue consumer with an injected session factory and transport.

    Any number of workers (in one process or many) may sweep the same table;
    row claims keep them from processing a job twice. Within one worker,
    overlapping sweep() calls are no-ops.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        transport: NotificationTransport,
        batch_size: int = 10,
        processing_timeout_seconds: int = 300,
        default_bot_token: str = "",
    ):
        self.worker_id = f"worker-{uuid.uuid4().hex[:12]}"
        self._session_factory = session_factory
        self._transport = transport
        self.batch_size = batch_size
        self.processing_timeout = timedelta(seconds=processing_timeout_seconds)
        self._default_bot_token = default_bot_token
        self._sweep_lock = asyncio.Lock()

    @property
    def is_sweeping(self) -> bool:
        return self._sweep_lock.locked()

    async def sweep(self) -> SweepResult:
        """Reclaim stale jobs, then claim and process one batch of pending jobs."""
        if self._sweep_lock.locked():
            logger.debug("Sweep already running on %s, skipping", self.worker_id)
            return SweepResult(skipped=True)

        async with self._sweep_lock:
            result = SweepResult()
            result.reclaimed = await self.reclaim_stale_jobs()

            job_ids = await self._claim_batch()
            result.claimed = len(job_ids)

            for job_id in job_ids:
                outcome = await self.process_job(job_id)
                if outcome == "completed":
                    result.completed += 1
                elif outcome == "pending":
                    result.retried += 1
                elif outcome == "failed":
                    result.failed += 1

            if result.claimed:
                logger.info(
                    "Notification sweep: claimed=%d completed=%d retried=%d failed=%d",
                    result.claimed, result.completed, result.retried, result.failed,
                )
            return result

    async def _claim_batch(self) -> list[uuid.UUID]:
        now = datetime.now(timezone.utc)
        claimed: list[uuid.UUID] = []
        async with self._session_factory() as db:
            candidates = (
                await db.execute(
                    select(NotificationJob.id)
                    .where(NotificationJob.status == "pending")
                    .order_by(NotificationJob.created_at)
                    .limit(self.batch_size)
                )
            ).scalars().all()

            for job_id in candidates:
                res = await db.execute(
                    update(NotificationJob)
                    .where(NotificationJob.id == job_id, NotificationJob.status == "pending")
                    .values(
                        status="processing",
                        claimed_by=self.worker_id,
                        claimed_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount == 1:
                    claimed.append(job_id)
            await db.commit()
        return claimed

    async def _resolve_destination(self, db: AsyncSession, job: NotificationJob) -> NotificationDestination:
        tenant = await db.get(Tenant, job.tenant_id)
        if tenant is None or not tenant.telegram_chat_id:
            raise NotificationDeliveryError("Tenant has no Telegram chat configured")
        bot_token = tenant.telegram_bot_token or self._default_bot_token
        if not bot_token:
            raise NotificationDeliveryError("No Telegram bot token configured")
        return NotificationDestination(chat_id=tenant.telegram_chat_id, bot_token=bot_token)

    async def process_job(self, job_id: uuid.UUID) -> str:
        """
        Deliver one claimed job and record the outcome.

        The job is read in one session and the outcome written in another;
        no connection is held while the transport call is in flight. Returns
        the job's new status, or "lost" if this worker no longer owns the claim.
        """
        error: Optional[str] = None
        async with self._session_factory() as db:
            job = await db.get(NotificationJob, job_id)
            if job is None or job.status != "processing" or job.claimed_by != self.worker_id:
                return "lost"
            tenant_id, attempts, max_attempts = job.tenant_id, job.attempts, job.max_attempts
            try:
                destination = await self._resolve_destination(db, job)
                message = format_message(job.kind, job.payload)
            except Exception as e:
                error = str(e) or e.__class__.__name__

        if error is None:
            try:
                await self._transport.deliver(destination, message)
            except Exception as e:
                error = str(e) or e.__class__.__name__

        log_extra = {"job_id": str(job_id), "tenant_id": str(tenant_id)}
        now = datetime.now(timezone.utc)
        if error is None:
            new_status = "completed"
            values = {"status": new_status, "last_error": None, "completed_at": now}
        else:
            attempts += 1
            new_status = "failed" if attempts >= max_attempts else "pending"
            values = {
                "status": new_status,
                "attempts": attempts,
                "last_error": error[:MAX_ERROR_LENGTH],
                "claimed_by": None,
                "claimed_at": None,
                "completed_at": now if new_status == "failed" else None,
            }

        async with self._session_factory() as db:
            res = await db.execute(
                update(NotificationJob)
                .where(
                    NotificationJob.id == job_id,
                    NotificationJob.status == "processing",
                    NotificationJob.claimed_by == self.worker_id,
                )
                .values(updated_at=now, **values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        if res.rowcount != 1:
            logger.warning("Lost claim on notification job %s", str(job_id)[:8], extra=log_extra)
            return "lost"
        if new_status == "completed":
            logger.info("Notification delivered: %s", str(job_id)[:8], extra=log_extra)
        elif new_status == "failed":
            logger.error(
                "Notification failed permanently after %d attempts: %s",
                values["attempts"], error, extra=log_extra,
            )
        else:
            logger.warning(
                "Notification attempt %d/%d failed: %s",
                values["attempts"], max_attempts, error, extra=log_extra,
            )
        return new_status

    async def reclaim_stale_jobs(self) -> int:
        """Return jobs stuck in processing past the timeout to pending (or failed)."""
        now = datetime.now(timezone.utc)
        cutoff = now - self.processing_timeout
        reclaimed = 0
        async with self._session_factory() as db:
            stale = (
                await db.execute(
                    select(NotificationJob).where(
                        NotificationJob.status == "processing",
                        NotificationJob.claimed_at < cutoff,
                    )
                )
            ).scalars().all()

            for job in stale:
                attempts = job.attempts + 1
                terminal = attempts >= job.max_attempts
                res = await db.execute(
                    update(NotificationJob)
                    .where(
                        NotificationJob.id == job.id,
                        NotificationJob.status == "processing",
                        NotificationJob.claimed_by == job.claimed_by,
                    )
                    .values(
                        status="failed" if terminal else "pending",
                        attempts=attempts,
                        last_error=f"Processing timed out (claimed by {job.claimed_by})",
                        claimed_by=None,
                        claimed_at=None,
                        completed_at=now if terminal else None,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                reclaimed += res.rowcount
            await db.commit()

        if reclaimed:
            logger.warning("Reclaimed %d stale notification jobs", reclaimed)
        return reclaimed

    async def stats(self) -> dict[str, int]:
        async with self._session_factory() as db:
            return await queue_stats(db)


def build_notification_worker(session_factory: async_sessionmaker[AsyncSession]) -> NotificationWorker:
    """Worker wired from settings with the Telegram transport."""
    from astra.config import get_settings
    from astra.services.telegram import TelegramTransport

    settings = get_settings()
    return NotificationWorker(
        session_factory=session_factory,
        transport=TelegramTransport(
            api_base=settings.telegram_api_base,
            timeout=settings.telegram_timeout_seconds,
        ),
        batch_size=settings.notification_batch_size,
        processing_timeout_seconds=settings.notification_processing_timeout_seconds,
        default_bot_token=settings.telegram_bot_token,
    )


async def trigger_dispatch(worker: Optional[NotificationWorker]) -> None:
    """Background-task entry point after a webhook enqueues a job."""
    await notify_workers()
    if worker is None:
        return
    try:
        await worker.sweep()
    except Exception as e:
        logger.error("Background notification sweep failed: %s", str(e), exc_info=True)
