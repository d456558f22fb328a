"""Quiet hours and per-cycle notification caps."""

import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tourwatch.config import settings
from tourwatch.schemas.monitoring import NotifyConditions, QuietHours
from tourwatch.services.offers import Change

logger = logging.getLogger(__name__)

TOP_MATCHES_CAP = 3
DEFAULT_CAP = 10


def window_timezone(quiet_hours: QuietHours | None = None) -> ZoneInfo:
    name = (quiet_hours.timezone if quiet_hours else None) or settings.monitor_timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, falling back to {settings.monitor_timezone}")
        return ZoneInfo(settings.monitor_timezone)


def in_window(minute: int, start: int, end: int) -> bool:
    """Minute-of-day membership in ``[start, end)``; ``start > end`` wraps midnight."""
    if start == end:
        return False
    if start < end:
        return start <= minute < end
    return minute >= start or minute < end


def local_time(now: datetime, quiet_hours: QuietHours | None = None) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(window_timezone(quiet_hours))


def is_quiet(quiet_hours: QuietHours | None, now: datetime) -> bool:
    if quiet_hours is None:
        return False
    local = local_time(now, quiet_hours)
    minute = local.hour * 60 + local.minute
    return in_window(minute, quiet_hours.start_minute(), quiet_hours.end_minute())


def local_midnight(now: datetime, conditions: NotifyConditions) -> datetime:
    """Start of the current local day, in UTC."""
    local = local_time(now, conditions.quiet_hours)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


def selection_cap(conditions: NotifyConditions, sent_today: int = 0) -> int:
    if conditions.only_top_matches:
        cap = TOP_MATCHES_CAP
    else:
        cap = conditions.max_notifications_per_day or DEFAULT_CAP
    if conditions.max_notifications_per_day is not None:
        cap = min(cap, conditions.max_notifications_per_day - sent_today)
    return max(0, cap)


class NotificationPolicy:
    """Decides whether a cycle may notify and which changes make the cut."""

    def should_skip(self, conditions: NotifyConditions, now: datetime) -> bool:
        return is_quiet(conditions.quiet_hours, now)

    def select(
        self,
        changes: list[Change],
        conditions: NotifyConditions,
        now: datetime,
        sent_today: int = 0,
    ) -> list[Change]:
        """Best changes first (score desc, price asc, id), capped."""
        if self.should_skip(conditions, now):
            return []

        ordered = sorted(
            changes,
            key=lambda c: (-c.ranked.score, c.ranked.price, c.ranked.candidate_id),
        )
        cap = selection_cap(conditions, sent_today)
        if len(ordered) > cap:
            logger.info(f"Capping {len(ordered)} changes to {cap}")
        return ordered[:cap]


notification_policy = NotificationPolicy()
