"""Scheduler tick: run every eligible monitored search under bounded concurrency."""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tourwatch.config import settings
from tourwatch.database import async_session_factory
from tourwatch.services.errors import MonitoringInvariantError
from tourwatch.services.monitor_store import MonitorStore
from tourwatch.services.search_runner import SearchRunner, search_runner
from tourwatch.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class TickSummary:
    eligible: int = 0
    checked: int = 0
    notifications: int = 0
    skipped: int = 0
    leased: int = 0
    failed: int = 0
    timed_out: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "eligible": self.eligible,
            "checked": self.checked,
            "notifications": self.notifications,
            "skipped": self.skipped,
            "leased": self.leased,
            "failed": self.failed,
            "timed_out": self.timed_out,
        }


class MonitorScheduler:
    """Runs one tick across all eligible searches.

    Each search gets its own session, a lease and a timeout on its check.
    Delivery runs after the commit, outside that timeout. A failure in one
    search never reaches the others.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        runner: SearchRunner | None = None,
        max_concurrency: int | None = None,
        search_timeout: float | None = None,
        lease_ttl: int | None = None,
    ):
        self._session_factory = session_factory or async_session_factory
        self._runner = runner or search_runner
        self._max_concurrency = max_concurrency or settings.monitor_max_concurrency
        self._search_timeout = search_timeout or settings.monitor_search_timeout_seconds
        self._lease_ttl = lease_ttl or settings.monitor_lease_ttl_seconds

    async def tick(self, now: datetime | None = None) -> TickSummary:
        now = as_utc(now) if now else utcnow()
        summary = TickSummary()

        async with self._session_factory() as db:
            search_ids = await MonitorStore(db).list_eligible_ids(now)
        summary.eligible = len(search_ids)
        if not search_ids:
            logger.debug("Monitor tick: no eligible searches")
            return summary

        semaphore = asyncio.Semaphore(self._max_concurrency)
        await asyncio.gather(*(self._process(search_id, now, semaphore, summary) for search_id in search_ids))

        logger.info(
            f"Monitor tick: {summary.checked}/{summary.eligible} checked, "
            f"{summary.notifications} notifications, {summary.failed} failed, "
            f"{summary.timed_out} timed out, {summary.leased} leased elsewhere"
        )
        return summary

    async def _process(
        self,
        search_id: uuid.UUID,
        now: datetime,
        semaphore: asyncio.Semaphore,
        summary: TickSummary,
    ) -> None:
        async with semaphore:
            async with self._session_factory() as db:
                store = MonitorStore(db)
                token = uuid.uuid4().hex
                try:
                    acquired = await store.acquire_lease(search_id, token, now, self._lease_ttl)
                except Exception as e:
                    logger.error(f"Lease acquisition failed for search {search_id}: {e}")
                    summary.failed += 1
                    summary.errors[str(search_id)] = str(e)
                    return
                if not acquired:
                    logger.info(f"Search {search_id} is leased by another worker, skipping")
                    summary.leased += 1
                    return

                try:
                    await self._run_one(db, store, search_id, now, summary)
                finally:
                    try:
                        await store.release_lease(search_id, token)
                    except Exception as e:
                        # Lease expires on its own after the TTL
                        logger.warning(f"Failed to release lease on search {search_id}: {e}")

    async def _run_one(
        self,
        db: AsyncSession,
        store: MonitorStore,
        search_id: uuid.UUID,
        now: datetime,
        summary: TickSummary,
    ) -> None:
        try:
            search = await store.get_search(search_id)
            if search is None:
                raise MonitoringInvariantError(f"search {search_id} disappeared")
            result = await asyncio.wait_for(
                self._runner.check(db, search, now),
                timeout=self._search_timeout,
            )
        except asyncio.TimeoutError:
            await db.rollback()
            logger.warning(f"Search {search_id} timed out after {self._search_timeout}s, rolled back")
            summary.timed_out += 1
            summary.errors[str(search_id)] = "timeout"
            return
        except MonitoringInvariantError as e:
            await db.rollback()
            logger.error(f"Search {search_id} is invalid: {e}")
            summary.failed += 1
            summary.errors[str(search_id)] = str(e)
            return
        except Exception as e:
            await db.rollback()
            logger.exception(f"Search {search_id} failed: {e}")
            summary.failed += 1
            summary.errors[str(search_id)] = str(e)
            return

        if result.checked:
            summary.checked += 1
            summary.notifications += result.notifications_sent
        elif result.skipped_reason == "provider_error":
            summary.failed += 1
            summary.errors[str(search_id)] = "provider_error"
        else:
            summary.skipped += 1

        # The cycle is committed; delivery has its own per-event timeout
        try:
            await self._runner.deliver(db, result)
        except Exception as e:
            logger.exception(f"Delivery for search {search_id} failed: {e}")


monitor_scheduler = MonitorScheduler()
