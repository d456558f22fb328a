"""Persistence for monitored searches, snapshots and notification events."""

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tourwatch.models.monitoring import MonitoredSearch, NotificationEvent, ResultSnapshot
from tourwatch.services.offers import Change, RankedCandidate

logger = logging.getLogger(__name__)


def _money(value: float | None) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(round(value, 2)))


class MonitorStore:
    """Queries and writes used by the runner, scheduler and lifecycle service.

    Writes are flushed, never committed, except for lease changes: the caller
    owns the transaction boundary of a cycle.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ---------- Monitored searches ----------

    async def list_eligible_ids(self, now: datetime) -> list[uuid.UUID]:
        """Active, unpaused, unexpired searches; least recently checked first."""
        result = await self.db.execute(
            select(MonitoredSearch.id).where(
                MonitoredSearch.is_active == True,
                MonitoredSearch.is_paused == False,
                MonitoredSearch.monitor_until >= now,
            ).order_by(
                MonitoredSearch.last_checked_at.is_not(None),
                MonitoredSearch.last_checked_at,
                MonitoredSearch.created_at,
            )
        )
        return list(result.scalars().all())

    async def get_search(self, search_id: uuid.UUID, owner_id: str | None = None) -> MonitoredSearch | None:
        stmt = select(MonitoredSearch).where(MonitoredSearch.id == search_id)
        if owner_id is not None:
            stmt = stmt.where(MonitoredSearch.owner_id == owner_id)
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return result.unique().scalar_one_or_none()

    async def find_active_for_query(self, owner_id: str, saved_query_id: uuid.UUID) -> MonitoredSearch | None:
        result = await self.db.execute(
            select(MonitoredSearch).where(
                MonitoredSearch.owner_id == owner_id,
                MonitoredSearch.saved_query_id == saved_query_id,
                MonitoredSearch.is_active == True,
            ).order_by(MonitoredSearch.created_at.desc())
        )
        return result.unique().scalars().first()

    async def list_for_owner(self, owner_id: str, include_inactive: bool = False) -> list[MonitoredSearch]:
        stmt = select(MonitoredSearch).where(MonitoredSearch.owner_id == owner_id)
        if not include_inactive:
            stmt = stmt.where(MonitoredSearch.is_active == True)
        result = await self.db.execute(stmt.order_by(MonitoredSearch.created_at.desc()))
        return list(result.unique().scalars().all())

    async def increment_counters(
        self,
        search_id: uuid.UUID,
        now: datetime,
        notifications: int,
    ) -> None:
        """Counter bump for one successful check, applied in SQL."""
        values = {
            "checks_count": MonitoredSearch.checks_count + 1,
            "notifications_count": MonitoredSearch.notifications_count + notifications,
            "last_checked_at": now,
            "updated_at": now,
        }
        if notifications:
            values["last_notification_at"] = now
        await self.db.execute(
            update(MonitoredSearch)
            .where(MonitoredSearch.id == search_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    # ---------- Leases ----------

    async def acquire_lease(self, search_id: uuid.UUID, token: str, now: datetime, ttl_seconds: int) -> bool:
        """Claim a search for one cycle. False when another worker holds a live lease."""
        result = await self.db.execute(
            update(MonitoredSearch)
            .where(
                MonitoredSearch.id == search_id,
                MonitoredSearch.is_active == True,
                or_(
                    MonitoredSearch.lease_token.is_(None),
                    MonitoredSearch.lease_expires_at.is_(None),
                    MonitoredSearch.lease_expires_at < now,
                ),
            )
            .values(lease_token=token, lease_expires_at=now + timedelta(seconds=ttl_seconds))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def release_lease(self, search_id: uuid.UUID, token: str) -> None:
        await self.db.execute(
            update(MonitoredSearch)
            .where(MonitoredSearch.id == search_id, MonitoredSearch.lease_token == token)
            .values(lease_token=None, lease_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    # ---------- Snapshots ----------

    async def latest_snapshots(self, search_id: uuid.UUID) -> dict[str, ResultSnapshot]:
        result = await self.db.execute(
            select(ResultSnapshot).where(ResultSnapshot.monitored_search_id == search_id)
        )
        return {s.candidate_id: s for s in result.scalars().all()}

    async def upsert_snapshot(
        self,
        search_id: uuid.UUID,
        ranked: RankedCandidate,
        now: datetime,
        notified: bool = False,
        existing: ResultSnapshot | None = None,
    ) -> ResultSnapshot:
        """Write the latest state of one offer; ``is_notified`` only ever turns on."""
        candidate = ranked.candidate
        snapshot = existing
        if snapshot is None:
            snapshot = ResultSnapshot(
                monitored_search_id=search_id,
                candidate_id=ranked.candidate_id,
                is_notified=False,
            )
            self.db.add(snapshot)

        snapshot.price = _money(candidate.price)
        snapshot.currency = candidate.currency
        snapshot.availability = candidate.availability
        snapshot.score = ranked.score
        snapshot.found_at = now
        if notified:
            snapshot.is_notified = True
            snapshot.notified_at = now

        await self.db.flush()
        return snapshot

    # ---------- Notification events ----------

    async def add_event(
        self,
        search: MonitoredSearch,
        change: Change,
        payload: dict,
        now: datetime,
    ) -> NotificationEvent:
        event = NotificationEvent(
            monitored_search_id=search.id,
            owner_id=search.owner_id,
            candidate_id=change.ranked.candidate_id,
            reason=change.reason,
            score=change.ranked.score,
            price=_money(change.ranked.price),
            price_delta=_money(change.price_delta),
            payload=payload,
            delivery_status="pending",
            created_at=now,
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def count_events_since(self, search_id: uuid.UUID, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count(NotificationEvent.id)).where(
                and_(
                    NotificationEvent.monitored_search_id == search_id,
                    NotificationEvent.created_at >= since,
                )
            )
        )
        return result.scalar_one()

    async def update_event_delivery(
        self,
        event: NotificationEvent,
        status: str,
        error: str | None = None,
        sent_at: datetime | None = None,
    ) -> None:
        event.delivery_status = status
        event.delivery_error = error
        event.sent_at = sent_at
        await self.db.flush()
