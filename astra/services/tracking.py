"""
Shipment tracking reconciliation.

An order with a bare tracking number is tried against a fixed, ranked list
of couriers. The first courier that accepts the number (or already knows
it) wins; its slug is stored on the order so later lookups go straight to
that courier.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from astra.errors import AstraError, UpstreamError
from astra.integrations.tracking_base import TrackingProvider
from astra.models.order import Order

logger = logging.getLogger(__name__)

# Tried in this order; the first courier that accepts the number wins
COURIER_CANDIDATES = ("bartolini", "gls-italy", "sda-italy", "tnt-italy", "tnt", "gls")

STATUS_LABELS = {
    "Pending": "Pending",
    "InfoReceived": "Info Received",
    "InTransit": "In Transit",
    "OutForDelivery": "Out for Delivery",
    "AttemptFail": "Delivery Attempt Failed",
    "Delivered": "Delivered",
    "AvailableForPickup": "Available for Pickup",
    "Exception": "Exception",
    "Expired": "Tracking Expired",
}


class TrackingNotFoundError(AstraError):
    status_code = 404
    error = "not_found"


@dataclass
class CourierAttempt:
    slug: str
    tracking: Optional[dict] = None
    error: Optional[str] = None
    action: str = "create"  # create, get

    @property
    def ok(self) -> bool:
        return self.tracking is not None


class TrackingReconciliationError(UpstreamError):
    """Every candidate courier failed."""

    def __init__(self, attempts: list[CourierAttempt]):
        last = attempts[-1] if attempts else None
        if last:
            message = (
                f"Failed to create tracking with any courier. "
                f"Last error ({last.slug}): {last.error}"
            )
        else:
            message = "Failed to create tracking with any courier"
        super().__init__(
            message,
            details={
                "attempts": [
                    {"courier": a.slug, "action": a.action, "error": a.error} for a in attempts
                ],
            },
        )
        self.attempts = attempts


@dataclass
class ReconcileResult:
    order_id: str
    tracking_number: str
    slug: str
    detected: bool
    tracking: dict
    attempts: list[CourierAttempt] = field(default_factory=list)


async def attempt_courier(provider: TrackingProvider, order: Order, slug: str) -> CourierAttempt:
    """
    Try one courier: register the tracking, or read it if the courier
    already has it. Never raises.
    """
    try:
        tracking = await provider.create_tracking(
            slug,
            order.tracking_number,
            title=f"Order #{order.external_order_id}",
            order_id=order.external_order_id,
        )
        return CourierAttempt(slug=slug, tracking=tracking)
    except Exception as e:
        if not provider.is_already_exists(e):
            return CourierAttempt(slug=slug, error=str(e))

    try:
        tracking = await provider.get_tracking(slug, order.tracking_number)
        return CourierAttempt(slug=slug, tracking=tracking, action="get")
    except Exception as e:
        return CourierAttempt(slug=slug, error=str(e), action="get")


async def reconcile(
    db: AsyncSession,
    order: Order,
    provider: TrackingProvider,
    candidates: tuple[str, ...] = COURIER_CANDIDATES,
) -> ReconcileResult:
    """
    Resolve an order's tracking status, detecting the courier when unknown.

    Raises TrackingNotFoundError without a tracking number,
    CourierAPIError when a known courier read fails, and
    TrackingReconciliationError when no candidate accepts the number.
    """
    if not order.tracking_number:
        raise TrackingNotFoundError("No tracking number found for this order")

    if order.courier_slug:
        tracking = await provider.get_tracking(order.courier_slug, order.tracking_number)
        return ReconcileResult(
            order_id=str(order.id),
            tracking_number=order.tracking_number,
            slug=order.courier_slug,
            detected=False,
            tracking=tracking,
        )

    attempts: list[CourierAttempt] = []
    for slug in candidates:
        attempt = await attempt_courier(provider, order, slug)
        attempts.append(attempt)
        if attempt.ok:
            order.courier_slug = slug
            await db.flush()
            logger.info(
                "Courier detected for order %s after %d attempt(s)",
                order.external_order_id, len(attempts),
                extra={"order_id": str(order.id), "courier": slug},
            )
            return ReconcileResult(
                order_id=str(order.id),
                tracking_number=order.tracking_number,
                slug=slug,
                detected=True,
                tracking=attempt.tracking,
                attempts=attempts,
            )
        logger.info(
            "Courier %s rejected tracking: %s", slug, attempt.error,
            extra={"order_id": str(order.id), "courier": slug},
        )

    raise TrackingReconciliationError(attempts)


def format_tracking_status(tracking: dict) -> dict:
    """Display-ready summary of a tracking object."""
    tag = tracking.get("tag") or "Pending"
    checkpoints = tracking.get("checkpoints") or []
    last = checkpoints[-1] if checkpoints else {}
    location = ", ".join(
        part for part in (last.get("city"), last.get("state"), last.get("country_name")) if part
    )
    return {
        "status": tag,
        "status_label": STATUS_LABELS.get(tag, tag),
        "last_checkpoint": last.get("message"),
        "last_location": location or None,
        "last_time": last.get("checkpoint_time"),
        "estimated_delivery": tracking.get("expected_delivery"),
    }


def tracking_response(result: ReconcileResult) -> dict:
    tracking = result.tracking
    return {
        "tracking_number": tracking.get("tracking_number") or result.tracking_number,
        "slug": tracking.get("slug") or result.slug,
        "tag": tracking.get("tag"),
        "subtag": tracking.get("subtag"),
        "formatted": format_tracking_status(tracking),
        "checkpoints": tracking.get("checkpoints") or [],
        "created_at": tracking.get("created_at"),
        "updated_at": tracking.get("updated_at"),
        "courier_detected": result.detected,
    }
