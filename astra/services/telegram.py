"""
Telegram notification transport and message formatting.

The transport knows nothing about the queue: it sends one message to one
destination and raises NotificationDeliveryError when Telegram does not
accept it.
"""
import html
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from astra.errors import NotificationDeliveryError

logger = logging.getLogger(__name__)


@dataclass
class NotificationDestination:
    chat_id: str
    bot_token: str


class TelegramTransport:
    """Sends HTML messages through the Bot API sendMessage method."""

    def __init__(self, api_base: str = "https://api.telegram.org", timeout: float = 10.0):
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    async def deliver(self, destination: NotificationDestination, message: str) -> None:
        url = f"{self.api_base}/bot{destination.bot_token}/sendMessage"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    json={
                        "chat_id": destination.chat_id,
                        "text": message,
                        "parse_mode": "HTML",
                    },
                )
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(f"Telegram request failed: {e.__class__.__name__}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400 or not data.get("ok"):
            description = data.get("description") or f"HTTP {response.status_code}"
            raise NotificationDeliveryError(f"Telegram rejected message: {description}")

        logger.debug("Telegram message sent to chat %s", destination.chat_id)


def _esc(value: Any) -> str:
    return html.escape(str(value)) if value not in (None, "") else "-"


def _money(amount: Any, currency: Optional[str]) -> str:
    try:
        text = f"{float(amount):.2f}"
    except (TypeError, ValueError):
        text = str(amount)
    return f"{text} {currency}" if currency else text


def format_order_message(payload: dict) -> str:
    lines = [
        "<b>New order received</b>",
        "",
        f"<b>Order:</b> #{_esc(payload.get('external_order_id'))}",
        f"<b>Store:</b> {_esc(payload.get('store'))} ({_esc(payload.get('platform'))})",
        f"<b>Status:</b> {_esc(payload.get('status'))}",
        f"<b>Total:</b> {_esc(_money(payload.get('total_amount'), payload.get('currency')))}",
        "",
        f"<b>Customer:</b> {_esc(payload.get('customer_name'))}",
        f"<b>Email:</b> {_esc(payload.get('customer_email'))}",
        f"<b>Phone:</b> {_esc(payload.get('customer_phone'))}",
    ]
    items = payload.get("items") or []
    if items:
        lines.append("")
        lines.append("<b>Items:</b>")
        for item in items:
            lines.append(
                f"- {_esc(item.get('name'))} x{_esc(item.get('quantity'))} "
                f"({_esc(_money(item.get('unit_price'), payload.get('currency')))})"
            )
    return "\n".join(lines)


def format_lead_message(payload: dict) -> str:
    lines = [
        "<b>New lead received</b>",
        "",
        f"<b>Name:</b> {_esc(payload.get('name'))}",
        f"<b>Email:</b> {_esc(payload.get('email'))}",
        f"<b>Phone:</b> {_esc(payload.get('phone'))}",
        f"<b>Source:</b> {_esc(payload.get('source'))}",
    ]
    if payload.get("notes"):
        lines.append(f"<b>Notes:</b> {_esc(payload['notes'])}")
    return "\n".join(lines)


MESSAGE_FORMATTERS = {
    "new_order": format_order_message,
    "new_lead": format_lead_message,
}


def format_message(kind: str, payload: Optional[dict]) -> str:
    formatter = MESSAGE_FORMATTERS.get(kind)
    if formatter is None:
        raise NotificationDeliveryError(f"No message format for notification kind '{kind}'")
    return formatter(payload or {})
