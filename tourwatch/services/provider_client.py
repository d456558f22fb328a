"""Tour aggregator client: search with retries, caching and a mock mode."""

import asyncio
import hashlib
import logging
import random
from datetime import date, timedelta
from typing import Any

import httpx

from tourwatch.config import settings
from tourwatch.services.cache_service import OfferCache, offer_cache
from tourwatch.services.errors import ProviderError
from tourwatch.services.offers import CandidateResult
from tourwatch.services.ranking_engine import effective_budget

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

# Aggregator field -> ranking attribute
ATTRIBUTE_FIELDS = {
    "hotelStars": "stars",
    "stars": "stars",
    "beachLine": "beach_line",
    "beachDistance": "beach_distance",
    "seaDistance": "sea_distance",
    "slopeLine": "slope_line",
    "slopeDistance": "slope_distance",
    "centerDistance": "center_distance",
    "airportDistance": "airport_distance",
    "mealType": "meal_type",
    "rating": "review_rating",
    "reviewRating": "review_rating",
    "safetyRating": "safety_rating",
    "locationMatch": "location_match",
    "description": "description",
    "hasKidsClub": "has_kids_club",
    "hasFamilyRooms": "has_family_rooms",
    "hasChildrenMenu": "has_children_menu",
    "hasBabysitting": "has_babysitting",
    "hasPlayground": "has_playground",
    "hasKidsAnimation": "has_kids_animation",
    "hasKidsPool": "has_kids_pool",
    "hasAquapark": "has_aquapark",
    "hasPool": "has_pool",
    "hasSpa": "has_spa",
    "hasFitness": "has_fitness",
    "hasWifi": "has_wifi",
    "hasWaterSports": "has_water_sports",
    "hasBeachInfrastructure": "has_beach_infrastructure",
}

MOCK_HOTELS = [
    ("Rixos Premium", 5, "all_inclusive"),
    ("Delphin Imperial", 5, "ultra all inclusive"),
    ("Club Marco Polo", 4, "all_inclusive"),
    ("Sea Breeze Resort", 4, "half_board"),
    ("Aurora Beach", 3, "breakfast"),
    ("Blue Lagoon Inn", 3, "room_only"),
    ("Palm Garden", 4, "full_board"),
    ("Sunset Bay", 5, "all_inclusive"),
]

MOCK_PROVIDERS = ["leveltravel", "travelata", "sletat"]


def search_params(query: Any) -> dict:
    """Aggregator query parameters for a saved search."""
    params: dict[str, Any] = {
        "destinations": ",".join(getattr(query, "destinations", None) or []),
        "adults": getattr(query, "adults", None) or 2,
        "children": getattr(query, "children", None) or 0,
        "currency": getattr(query, "currency", None) or "RUB",
    }
    ages = getattr(query, "children_ages", None) or []
    if ages:
        params["childrenAges"] = ",".join(str(a) for a in ages)
    if getattr(query, "departure_city", None):
        params["departureCity"] = query.departure_city
    if getattr(query, "start_date", None):
        params["dateFrom"] = query.start_date.isoformat()
    if getattr(query, "end_date", None):
        params["dateTo"] = query.end_date.isoformat()
    if getattr(query, "flexible_month", None):
        params["month"] = query.flexible_month
    if getattr(query, "duration_nights", None):
        params["nights"] = query.duration_nights
    budget = effective_budget(query)
    if budget:
        params["budgetMax"] = round(budget)
    return params


def parse_tour(item: dict, default_provider: str = "aggregator") -> CandidateResult | None:
    """Map one aggregator tour to a CandidateResult. None if unusable."""
    if not isinstance(item, dict):
        return None
    external_id = item.get("externalId") or item.get("id")
    price = item.get("price")
    if external_id is None or price is None:
        return None
    try:
        price = float(price)
    except (TypeError, ValueError):
        return None

    attributes = {}
    for source, target in ATTRIBUTE_FIELDS.items():
        if item.get(source) is not None and target not in attributes:
            attributes[target] = item[source]

    return CandidateResult(
        provider=str(item.get("provider") or default_provider),
        external_id=str(external_id),
        price=price,
        currency=item.get("currency") or "RUB",
        availability=item.get("availability"),
        hotel=item.get("hotel") or item.get("hotelName") or "",
        destination=item.get("destination") or "",
        start_date=_parse_date(item.get("startDate")),
        end_date=_parse_date(item.get("endDate")),
        nights=item.get("nights"),
        link=item.get("link"),
        attributes=attributes,
    )


def _parse_date(value: Any) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def dedupe(candidates: list[CandidateResult]) -> list[CandidateResult]:
    """One result per candidate id; the cheapest offer wins."""
    best: dict[str, CandidateResult] = {}
    for candidate in candidates:
        current = best.get(candidate.candidate_id)
        if current is None or candidate.price < current.price:
            best[candidate.candidate_id] = candidate
    return list(best.values())


class ProviderClient:
    """Adapter for the tour aggregator HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        cache: OfferCache | None = None,
        use_cache: bool | None = None,
        retry_backoff: float = 1.0,
    ):
        self._base_url = settings.provider_base_url if base_url is None else base_url
        self._api_key = settings.provider_api_key if api_key is None else api_key
        self._client = client
        self._owns_client = client is None
        self._cache = cache or offer_cache
        self._use_cache = settings.provider_cache_enabled if use_cache is None else use_cache
        self._retry_backoff = retry_backoff
        self._use_mock = not self._base_url

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=settings.provider_timeout_seconds,
            )
        return self._client

    async def search(self, query: Any) -> list[CandidateResult]:
        """Search tours for a saved query. Raises ProviderError on failure."""
        params = search_params(query)
        if self._use_mock:
            return self._generate_mock_tours(params)

        if self._use_cache:
            cached = await self._cache.get_offers(params)
            if cached is not None:
                logger.debug(f"Provider cache hit for {params.get('destinations')}")
                return dedupe([c for c in (parse_tour(t) for t in cached) if c])

        tours = await self._fetch(params)
        if self._use_cache:
            await self._cache.set_offers(params, tours)

        candidates = [c for c in (parse_tour(t) for t in tours) if c]
        skipped = len(tours) - len(candidates)
        if skipped:
            logger.warning(f"Skipped {skipped} malformed tours from aggregator")
        return dedupe(candidates)

    async def _fetch(self, params: dict) -> list[dict]:
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        url = f"{self._base_url.rstrip('/')}/tours/search"

        for attempt in range(MAX_ATTEMPTS):
            try:
                resp = await client.get(url, params=params, headers=headers)
                if resp.status_code == 429 and attempt < MAX_ATTEMPTS - 1:
                    await asyncio.sleep(self._retry_backoff * 2 ** attempt)
                    continue
                resp.raise_for_status()
                data = resp.json()
                tours = data.get("tours", []) if isinstance(data, dict) else data
                if not isinstance(tours, list):
                    raise ProviderError("aggregator returned an unexpected payload")
                return tours
            except httpx.HTTPStatusError as e:
                raise ProviderError(f"aggregator returned {e.response.status_code}") from e
            except httpx.RequestError as e:
                logger.warning(f"Aggregator request error (attempt {attempt + 1}): {e}")
                if attempt < MAX_ATTEMPTS - 1:
                    await asyncio.sleep(self._retry_backoff * 2 ** attempt)
                    continue
                raise ProviderError(f"aggregator unreachable: {e}") from e
            except ValueError as e:
                raise ProviderError(f"aggregator returned invalid JSON: {e}") from e

        raise ProviderError("aggregator rate limit exceeded")

    def _generate_mock_tours(self, params: dict) -> list[CandidateResult]:
        """Deterministic demo offers for development without an aggregator."""
        seed_str = "|".join(f"{k}={params[k]}" for k in sorted(params))
        seed = int(hashlib.md5(seed_str.encode()).hexdigest()[:8], 16)
        rng = random.Random(seed)

        destination = (params.get("destinations") or "Turkey").split(",")[0]
        start = _parse_date(params.get("dateFrom")) or date.today() + timedelta(days=30)
        nights = int(params.get("nights") or 7)
        budget = float(params.get("budgetMax") or 150000)

        tours = []
        for i, (hotel, stars, meal) in enumerate(rng.sample(MOCK_HOTELS, k=rng.randint(4, len(MOCK_HOTELS)))):
            tours.append(CandidateResult(
                provider=rng.choice(MOCK_PROVIDERS),
                external_id=f"mock-{seed % 10000}-{i}",
                price=round(budget * rng.uniform(0.6, 1.3), -2),
                currency=params.get("currency", "RUB"),
                availability=rng.choice(["available", "available", "few_left", "on_request"]),
                hotel=hotel,
                destination=destination,
                start_date=start,
                end_date=start + timedelta(days=nights),
                nights=nights,
                attributes={
                    "stars": stars,
                    "beach_line": rng.randint(1, 3),
                    "meal_type": meal,
                    "review_rating": round(rng.uniform(3.8, 5.0), 1),
                    "has_pool": True,
                    "has_kids_club": rng.random() < 0.5,
                },
            ))
        return dedupe(tours)

    async def close(self):
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None


provider_client = ProviderClient()
