"""Notification rendering and delivery channels (Telegram, log)."""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from tourwatch.config import settings
from tourwatch.services.offers import Change

logger = logging.getLogger(__name__)

CONTROL_PREFIX = "monitor"
CONTROL_ACTIONS = ("pause", "stop")


@dataclass
class DeliveryResult:
    status: str  # "sent" | "failed"
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "sent"


class NotificationChannel(Protocol):
    async def deliver(self, event: Any) -> DeliveryResult:
        ...


# ---------- Rendering ----------

def _format_money(value: float) -> str:
    return f"{value:,.0f}".replace(",", " ")


def build_message(change: Change) -> tuple[str, str]:
    """Title and body text for one change."""
    candidate = change.ranked.candidate
    currency = "₽" if candidate.currency == "RUB" else candidate.currency

    if change.reason == "price_drop":
        title = f"💰 Price dropped by {_format_money(change.price_delta)} {currency}!"
        intro = "The price of a tour you are watching went down:"
    elif change.reason == "availability_change":
        title = "✅ Tour is available again!"
        intro = "A tour you were looking for is bookable again:"
    else:
        title = "🆕 New tour found!"
        intro = "We found a new tour that matches your search:"

    lines = [intro, ""]
    stars = candidate.attributes.get("stars")
    hotel = candidate.hotel or "Hotel"
    lines.append(f"🏨 {hotel} {stars}⭐" if stars else f"🏨 {hotel}")
    if candidate.destination:
        lines.append(f"📍 {candidate.destination}")
    lines.append(f"💵 {_format_money(candidate.price)} {currency}")
    if candidate.start_date and candidate.end_date:
        lines.append(f"📅 {candidate.start_date:%d.%m.%Y} - {candidate.end_date:%d.%m.%Y}")
    meal = candidate.attributes.get("meal_type")
    if meal:
        lines.append(f"🍴 {meal}")
    lines.append("")
    lines.append(f"🎯 Match: {change.ranked.score}%")
    return title, "\n".join(lines)


def control_callback(action: str, search_id: Any) -> str:
    return f"{CONTROL_PREFIX}:{action}:{search_id}"


def parse_control_callback(data: str) -> tuple[str, str] | None:
    """``monitor:pause:<id>`` -> ("pause", "<id>"). None if not a control callback."""
    parts = (data or "").split(":", 2)
    if len(parts) != 3 or parts[0] != CONTROL_PREFIX:
        return None
    action, search_id = parts[1], parts[2]
    if action not in CONTROL_ACTIONS or not search_id:
        return None
    return action, search_id


def build_payload(change: Change, search_id: Any) -> dict:
    """Rendered notification stored on the event and read back by channels."""
    title, text = build_message(change)
    return {
        "title": title,
        "text": text,
        "action_url": change.ranked.candidate.link,
        "controls": [
            {"label": "⏸ Pause", "callback_data": control_callback("pause", search_id)},
            {"label": "⏹ Stop", "callback_data": control_callback("stop", search_id)},
        ],
    }


# ---------- Channels ----------

class TelegramChannel:
    """Delivers events as Telegram bot messages with inline controls."""

    def __init__(
        self,
        bot_token: str,
        api_base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._bot_token = bot_token
        self._api_base_url = (api_base_url or settings.telegram_api_base_url).rstrip("/")
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=15.0)
        return self._client

    def _reply_markup(self, payload: dict) -> dict | None:
        rows = []
        if payload.get("action_url"):
            rows.append([{"text": "🔗 View tour", "url": payload["action_url"]}])
        controls = [
            {"text": c["label"], "callback_data": c["callback_data"]}
            for c in payload.get("controls") or []
        ]
        if controls:
            rows.append(controls)
        return {"inline_keyboard": rows} if rows else None

    async def deliver(self, event: Any) -> DeliveryResult:
        payload = event.payload or {}
        body = {
            "chat_id": event.owner_id,
            "text": f"{payload.get('title', '')}\n\n{payload.get('text', '')}".strip(),
            "disable_web_page_preview": True,
        }
        markup = self._reply_markup(payload)
        if markup:
            body["reply_markup"] = markup

        try:
            client = await self._get_client()
            resp = await client.post(f"{self._api_base_url}/bot{self._bot_token}/sendMessage", json=body)
            data = resp.json()
            if resp.status_code != 200 or not data.get("ok"):
                error = data.get("description") or f"HTTP {resp.status_code}"
                logger.warning(f"Telegram delivery failed for {event.owner_id}: {error}")
                return DeliveryResult(status="failed", error=error)
            return DeliveryResult(status="sent")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Telegram delivery error for {event.owner_id}: {e}")
            return DeliveryResult(status="failed", error=str(e) or type(e).__name__)

    async def close(self):
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None


class LogChannel:
    """Writes notifications to the log; used when no bot token is configured."""

    async def deliver(self, event: Any) -> DeliveryResult:
        payload = event.payload or {}
        logger.info(f"Notification for {event.owner_id} [{event.reason}]: {payload.get('title', '')}")
        return DeliveryResult(status="sent")


def build_channel_from_settings() -> NotificationChannel:
    if settings.telegram_bot_token:
        return TelegramChannel(settings.telegram_bot_token)
    logger.info("No Telegram bot token configured, notifications go to the log")
    return LogChannel()
