"""Offer data passed between the provider client, ranking and change detection."""

from dataclasses import dataclass, field
from datetime import date
from typing import Any

AVAILABLE_STATES = frozenset({"available", "instant", "on_request", "few_left"})


@dataclass
class CandidateResult:
    """One offer returned by the provider aggregator.

    Ranking inputs (stars, beach_line, meal_type, review_rating, amenity flags,
    distances in metres) live in ``attributes``; the rest is for display.
    """
    provider: str
    external_id: str
    price: float
    currency: str = "RUB"
    availability: str | None = "available"
    hotel: str = ""
    destination: str = ""
    start_date: date | None = None
    end_date: date | None = None
    nights: int | None = None
    link: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def candidate_id(self) -> str:
        return f"{self.provider}:{self.external_id}"

    @property
    def is_available(self) -> bool:
        return is_available(self.availability)


def is_available(availability: str | None) -> bool:
    # Providers that do not report availability only return bookable offers.
    if availability is None:
        return True
    return availability.strip().lower() in AVAILABLE_STATES


@dataclass
class RankedCandidate:
    candidate: CandidateResult
    score: int
    breakdown: dict[str, int] = field(default_factory=dict)

    @property
    def candidate_id(self) -> str:
        return self.candidate.candidate_id

    @property
    def price(self) -> float:
        return self.candidate.price


# ---------- Classified changes ----------

@dataclass
class NewOfferChange:
    ranked: RankedCandidate
    reason: str = field(default="new", init=False)

    @property
    def price_delta(self) -> float | None:
        return None


@dataclass
class PriceDropChange:
    ranked: RankedCandidate
    previous_price: float
    reason: str = field(default="price_drop", init=False)

    @property
    def price_delta(self) -> float:
        return round(self.previous_price - self.ranked.price, 2)

    @property
    def drop_percent(self) -> float:
        if self.previous_price <= 0:
            return 0.0
        return self.price_delta / self.previous_price * 100


@dataclass
class AvailabilityChange:
    ranked: RankedCandidate
    previous_availability: str | None
    reason: str = field(default="availability_change", init=False)

    @property
    def price_delta(self) -> float | None:
        return None


Change = NewOfferChange | PriceDropChange | AvailabilityChange
