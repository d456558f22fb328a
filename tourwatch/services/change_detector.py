"""Diff ranked offers against a search's snapshot history."""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from tourwatch.schemas.monitoring import NotifyConditions
from tourwatch.services.offers import (
    AvailabilityChange,
    Change,
    NewOfferChange,
    PriceDropChange,
    RankedCandidate,
    is_available,
)

logger = logging.getLogger(__name__)


def _index_snapshots(previous: Mapping[str, Any] | Iterable[Any]) -> dict[str, Any]:
    if isinstance(previous, Mapping):
        return dict(previous)
    return {snapshot.candidate_id: snapshot for snapshot in previous}


def is_price_drop(previous_price: float, new_price: float, conditions: NotifyConditions) -> bool:
    """Any configured threshold suffices, but the price must have fallen."""
    drop = previous_price - new_price
    if drop <= 0:
        return False
    if conditions.price_drop_amount and drop >= conditions.price_drop_amount:
        return True
    if conditions.price_drop_percent and previous_price > 0:
        if drop / previous_price * 100 >= conditions.price_drop_percent:
            return True
    if conditions.price_below_threshold is not None and new_price <= conditions.price_below_threshold:
        return True
    return False


def classify(
    ranked: Iterable[RankedCandidate],
    previous_snapshots: Mapping[str, Any] | Iterable[Any],
    conditions: NotifyConditions,
) -> list[Change]:
    """Classify offers as new, price-dropped or back in availability.

    ``previous_snapshots`` holds the latest snapshot per candidate id (anything
    with ``candidate_id``, ``price`` and ``availability``). Offers scoring under
    ``min_match_score`` are dropped before classification; unchanged offers are
    not returned.
    """
    snapshots = _index_snapshots(previous_snapshots)
    changes: list[Change] = []

    for item in ranked:
        if conditions.min_match_score is not None and item.score < conditions.min_match_score:
            continue

        previous = snapshots.get(item.candidate_id)
        if previous is None:
            if conditions.notify_new_tours:
                changes.append(NewOfferChange(ranked=item))
            continue

        previous_price = float(previous.price)
        if is_price_drop(previous_price, item.price, conditions):
            changes.append(PriceDropChange(ranked=item, previous_price=previous_price))
            continue

        if (
            conditions.notify_availability_change
            and not is_available(previous.availability)
            and item.candidate.is_available
        ):
            changes.append(AvailabilityChange(ranked=item, previous_availability=previous.availability))

    logger.debug(
        f"Classified {len(changes)} changes against {len(snapshots)} snapshots"
    )
    return changes
