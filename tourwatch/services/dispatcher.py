"""Hands committed notification events to a delivery channel."""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from tourwatch.config import settings
from tourwatch.models.monitoring import NotificationEvent
from tourwatch.services.monitor_store import MonitorStore
from tourwatch.services.notification_channel import (
    DeliveryResult,
    NotificationChannel,
    build_channel_from_settings,
)
from tourwatch.utils.dates import utcnow

logger = logging.getLogger(__name__)


class Dispatcher:
    """Delivers events one by one and records the outcome on each event.

    Delivery never touches search counters: a failed send leaves the
    decision (and its counters) intact.
    """

    def __init__(self, channel: NotificationChannel | None = None, delivery_timeout: float | None = None):
        self._channel = channel
        self._delivery_timeout = delivery_timeout or settings.notification_delivery_timeout_seconds

    @property
    def channel(self) -> NotificationChannel:
        if self._channel is None:
            self._channel = build_channel_from_settings()
        return self._channel

    async def dispatch(self, db: AsyncSession, events: list[NotificationEvent]) -> dict[str, int]:
        store = MonitorStore(db)
        stats = {"sent": 0, "failed": 0}
        for event in events:
            try:
                result = await asyncio.wait_for(self.channel.deliver(event), timeout=self._delivery_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Delivery of event {event.id} timed out after {self._delivery_timeout}s")
                result = DeliveryResult(status="failed", error="delivery timeout")
            except Exception as e:
                logger.warning(f"Delivery of event {event.id} raised: {e}")
                result = DeliveryResult(status="failed", error=str(e) or type(e).__name__)

            await store.update_event_delivery(
                event,
                status=result.status,
                error=result.error,
                sent_at=utcnow() if result.ok else None,
            )
            stats["sent" if result.ok else "failed"] += 1

        if events:
            await db.commit()
            logger.info(f"Dispatched {len(events)} notifications: {stats['sent']} sent, {stats['failed']} failed")
        return stats


dispatcher = Dispatcher()
