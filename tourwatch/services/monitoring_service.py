"""Monitored search lifecycle: create, pause, resume, stop, list."""

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from tourwatch.config import settings
from tourwatch.models.monitoring import MonitoredSearch, SavedSearchQuery
from tourwatch.schemas.monitoring import NotifyConditions, SavedQueryIn
from tourwatch.services.errors import MonitoringError, SearchNotFoundError, SearchStoppedError
from tourwatch.services.monitor_store import MonitorStore
from tourwatch.services.notification_channel import parse_control_callback
from tourwatch.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)


class MonitoringService:
    """Owner-scoped lifecycle operations. ``active <-> paused``; stop is terminal."""

    async def save_query(self, db: AsyncSession, owner_id: str, data: SavedQueryIn) -> SavedSearchQuery:
        query = SavedSearchQuery(
            owner_id=owner_id,
            raw_text=data.raw_text,
            destinations=data.destinations,
            departure_city=data.departure_city,
            start_date=data.start_date,
            end_date=data.end_date,
            flexible_month=data.flexible_month,
            duration_nights=data.duration_nights,
            adults=data.adults,
            children=data.children,
            children_ages=data.children_ages,
            budget=Decimal(str(data.budget)) if data.budget else None,
            budget_type=data.budget_type,
            currency=data.currency,
            travel_styles=data.travel_styles,
            requirements=data.requirements,
            priorities=data.priorities,
        )
        db.add(query)
        await db.flush()
        return query

    async def create_monitored_search(
        self,
        db: AsyncSession,
        owner_id: str,
        saved_query_id: uuid.UUID,
        conditions: NotifyConditions | None = None,
        monitor_until: datetime | None = None,
        monitor_days: int | None = None,
        now: datetime | None = None,
    ) -> MonitoredSearch:
        """Start monitoring a saved query.

        Conditions are validated and stored with every default filled in. An
        active search for the same query is extended instead of duplicated.
        """
        now = now or utcnow()
        if monitor_until is None:
            monitor_until = now + timedelta(days=monitor_days or settings.monitor_default_days)
        elif monitor_until.tzinfo is None:
            raise MonitoringError("monitor_until must be timezone-aware")
        monitor_until = as_utc(monitor_until)
        if monitor_until <= now:
            raise MonitoringError("monitor_until must be in the future")

        stored_conditions = (conditions or NotifyConditions()).to_storage()
        store = MonitorStore(db)

        query = await db.get(SavedSearchQuery, saved_query_id)
        if query is None or query.owner_id != owner_id:
            raise SearchNotFoundError(f"saved query {saved_query_id} not found")

        existing = await store.find_active_for_query(owner_id, saved_query_id)
        if existing is not None:
            existing.monitor_until = monitor_until
            existing.notify_conditions = stored_conditions
            existing.is_paused = False
            existing.updated_at = now
            await db.commit()
            logger.info(f"Extended monitored search {existing.id} until {monitor_until.isoformat()}")
            return existing

        search = MonitoredSearch(
            owner_id=owner_id,
            saved_query_id=saved_query_id,
            monitor_until=monitor_until,
            is_active=True,
            is_paused=False,
            notify_conditions=stored_conditions,
            checks_count=0,
            notifications_count=0,
        )
        db.add(search)
        await db.commit()
        search = await store.get_search(search.id)
        logger.info(f"Created monitored search {search.id} for owner {owner_id}")
        return search

    async def _get_owned(self, db: AsyncSession, search_id: uuid.UUID, owner_id: str) -> MonitoredSearch:
        search = await MonitorStore(db).get_search(search_id, owner_id=owner_id)
        if search is None:
            raise SearchNotFoundError(f"monitored search {search_id} not found")
        return search

    async def pause(self, db: AsyncSession, search_id: uuid.UUID, owner_id: str) -> MonitoredSearch:
        search = await self._get_owned(db, search_id, owner_id)
        if not search.is_active:
            raise SearchStoppedError(f"monitored search {search_id} is stopped")
        search.is_paused = True
        search.updated_at = utcnow()
        await db.commit()
        logger.info(f"Paused monitored search {search_id}")
        return search

    async def resume(self, db: AsyncSession, search_id: uuid.UUID, owner_id: str) -> MonitoredSearch:
        search = await self._get_owned(db, search_id, owner_id)
        if not search.is_active:
            raise SearchStoppedError(f"monitored search {search_id} is stopped")
        search.is_paused = False
        search.updated_at = utcnow()
        await db.commit()
        logger.info(f"Resumed monitored search {search_id}")
        return search

    async def stop(self, db: AsyncSession, search_id: uuid.UUID, owner_id: str) -> MonitoredSearch:
        """Terminal. Stopping an already stopped search is a no-op."""
        search = await self._get_owned(db, search_id, owner_id)
        if search.is_active:
            search.is_active = False
            search.is_paused = False
            search.updated_at = utcnow()
            await db.commit()
            logger.info(f"Stopped monitored search {search_id}")
        return search

    async def list_active(self, db: AsyncSession, owner_id: str) -> list[MonitoredSearch]:
        return await MonitorStore(db).list_for_owner(owner_id)

    async def apply_control_action(self, db: AsyncSession, callback_data: str, owner_id: str) -> MonitoredSearch:
        """Handle an inline control (``monitor:pause:<id>`` / ``monitor:stop:<id>``)."""
        parsed = parse_control_callback(callback_data)
        if parsed is None:
            raise MonitoringError(f"unknown control action {callback_data!r}")
        action, raw_id = parsed
        try:
            search_id = uuid.UUID(raw_id)
        except ValueError:
            raise SearchNotFoundError(f"monitored search {raw_id} not found")

        if action == "pause":
            return await self.pause(db, search_id, owner_id)
        return await self.stop(db, search_id, owner_id)


def search_to_dict(search: MonitoredSearch) -> dict:
    query = search.saved_query
    return {
        "id": str(search.id),
        "saved_query_id": str(search.saved_query_id),
        "raw_text": query.raw_text if query else None,
        "destinations": query.destinations if query else [],
        "status": "stopped" if not search.is_active else ("paused" if search.is_paused else "active"),
        "monitor_until": as_utc(search.monitor_until).isoformat() if search.monitor_until else None,
        "notify_conditions": search.notify_conditions,
        "checks_count": search.checks_count,
        "notifications_count": search.notifications_count,
        "last_checked_at": as_utc(search.last_checked_at).isoformat() if search.last_checked_at else None,
        "last_notification_at": (
            as_utc(search.last_notification_at).isoformat() if search.last_notification_at else None
        ),
    }


monitoring_service = MonitoringService()
