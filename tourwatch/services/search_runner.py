"""One monitoring cycle for one monitored search."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tourwatch.models.monitoring import MonitoredSearch, NotificationEvent
from tourwatch.schemas.monitoring import resolve_conditions
from tourwatch.services.change_detector import classify
from tourwatch.services.dispatcher import Dispatcher, dispatcher as default_dispatcher
from tourwatch.services.errors import InvalidPrioritiesError, MonitoringInvariantError, ProviderError
from tourwatch.services.monitor_store import MonitorStore
from tourwatch.services.notification_channel import build_payload
from tourwatch.services.notification_policy import (
    NotificationPolicy,
    local_midnight,
    notification_policy,
)
from tourwatch.services.provider_client import ProviderClient, provider_client
from tourwatch.services.ranking_engine import RankingEngine, ranking_engine
from tourwatch.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    search_id: uuid.UUID | None
    checked: bool
    notifications_sent: int = 0
    skipped_reason: str | None = None
    events: list[NotificationEvent] = field(default_factory=list)


class SearchRunner:
    """Fetch, rank, diff, select and persist, then dispatch.

    Everything up to the commit is one transaction: a cycle either records
    its snapshots, events and counters together or records nothing.
    """

    def __init__(
        self,
        provider: ProviderClient | None = None,
        engine: RankingEngine | None = None,
        policy: NotificationPolicy | None = None,
        dispatcher: Dispatcher | None = None,
    ):
        self.provider = provider or provider_client
        self.engine = engine or ranking_engine
        self.policy = policy or notification_policy
        self.dispatcher = dispatcher or default_dispatcher

    def _skip_reason(self, search: MonitoredSearch, now: datetime) -> str | None:
        if not search.is_active:
            return "inactive"
        if search.is_paused:
            return "paused"
        if search.monitor_until is None:
            raise MonitoringInvariantError(f"search {search.id} has no monitor_until")
        if as_utc(search.monitor_until) < now:
            return "expired"
        return None

    async def run_cycle(
        self,
        db: AsyncSession,
        search: MonitoredSearch,
        now: datetime | None = None,
    ) -> CycleResult:
        result = await self.check(db, search, now)
        await self.deliver(db, result)
        return result

    async def check(
        self,
        db: AsyncSession,
        search: MonitoredSearch,
        now: datetime | None = None,
    ) -> CycleResult:
        """Everything up to and including the commit, without delivery."""
        now = as_utc(now) if now else utcnow()

        reason = self._skip_reason(search, now)
        if reason:
            logger.debug(f"Search {search.id} skipped: {reason}")
            return CycleResult(search_id=search.id, checked=False, skipped_reason=reason)

        conditions = resolve_conditions(search.notify_conditions)
        if self.policy.should_skip(conditions, now):
            logger.info(f"Search {search.id} skipped: quiet hours")
            return CycleResult(search_id=search.id, checked=False, skipped_reason="quiet_hours")

        query = search.saved_query
        if query is None:
            raise MonitoringInvariantError(f"search {search.id} has no saved query")
        try:
            self.engine.criterion_weights(query)
        except InvalidPrioritiesError as e:
            raise MonitoringInvariantError(f"search {search.id}: {e}") from e

        try:
            candidates = await self.provider.search(query)
        except ProviderError as e:
            logger.warning(f"Provider failed for search {search.id}, retrying next tick: {e}")
            return CycleResult(search_id=search.id, checked=False, skipped_reason="provider_error")

        store = MonitorStore(db)
        ranked = self.engine.rank(candidates, query)
        snapshots = await store.latest_snapshots(search.id)
        changes = classify(ranked, snapshots, conditions)

        sent_today = 0
        if conditions.max_notifications_per_day is not None:
            sent_today = await store.count_events_since(search.id, local_midnight(now, conditions))
        selected = self.policy.select(changes, conditions, now, sent_today=sent_today)

        events: list[NotificationEvent] = []
        handled: set[str] = set()
        for change in selected:
            candidate_id = change.ranked.candidate_id
            handled.add(candidate_id)
            try:
                async with db.begin_nested():
                    await store.upsert_snapshot(
                        search.id, change.ranked, now, notified=True, existing=snapshots.get(candidate_id)
                    )
                    event = await store.add_event(search, change, build_payload(change, search.id), now)
            except SQLAlchemyError as e:
                logger.error(f"Failed to record {change.reason} for {candidate_id} on search {search.id}: {e}")
                continue
            events.append(event)

        for item in ranked:
            if item.candidate_id in handled:
                continue
            try:
                async with db.begin_nested():
                    await store.upsert_snapshot(search.id, item, now, existing=snapshots.get(item.candidate_id))
            except SQLAlchemyError as e:
                logger.error(f"Failed to snapshot {item.candidate_id} on search {search.id}: {e}")
                continue

        await store.increment_counters(search.id, now, len(events))
        await db.commit()

        logger.info(
            f"Search {search.id}: {len(candidates)} offers, {len(changes)} changes, "
            f"{len(events)} notifications"
        )

        return CycleResult(
            search_id=search.id,
            checked=True,
            notifications_sent=len(events),
            events=events,
        )

    async def deliver(self, db: AsyncSession, result: CycleResult) -> dict[str, int]:
        if not result.events:
            return {"sent": 0, "failed": 0}
        return await self.dispatcher.dispatch(db, result.events)


search_runner = SearchRunner()
