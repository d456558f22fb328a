"""Scores tour offers against a user's weighted priorities."""

import logging
import math
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from tourwatch.data.travel_styles import (
    CRITERION_ALIASES,
    FAMILY_ONLY_CRITERIA,
    default_weights,
    detect_travel_styles,
)
from tourwatch.services.errors import InvalidPrioritiesError
from tourwatch.services.offers import CandidateResult, RankedCandidate

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50

# (max ratio of price to budget, score)
PRICE_BANDS = (
    (0.7, 100),
    (0.85, 90),
    (1.0, 80),
    (1.1, 60),
    (1.2, 40),
    (1.5, 20),
)

# Distance (metres) at or under which proximity counts as perfect.
PROXIMITY_REFERENCE_M = {
    "beach_line": 200,
    "sea_distance": 200,
    "slope_distance": 300,
    "sightseeing_distance": 1000,
}

# Meal category patterns, checked in order. Codes are matched as whole words.
MEAL_SCORES = (
    (("ultra", "uai", "all inclusive", "all_inclusive", "allinclusive", "ai", "все включено"), 100),
    (("full board", "full_board", "fb", "полный пансион"), 85),
    (("half board", "half_board", "hb", "полупансион"), 70),
    (("breakfast", "bb", "завтрак"), 50),
    (("room only", "room_only", "ro", "none", "no meals", "без питания"), 30),
)

AMENITY_FLAGS = {
    "kids_club": "has_kids_club",
    "family_rooms": "has_family_rooms",
    "children_menu": "has_children_menu",
    "babysitting": "has_babysitting",
    "playgrounds": "has_playground",
    "kids_entertainment": "has_kids_animation",
    "pool_safety": "has_kids_pool",
    "stroller_accessibility": "stroller_friendly",
    "spa_quality": "has_spa",
    "fitness_center": "has_fitness",
    "water_activities": "has_water_sports",
    "water_sports": "has_water_sports",
    "beach_infrastructure": "has_beach_infrastructure",
    "equipment_rental": "has_equipment_rental",
    "thermal_springs": "has_thermal_springs",
}


@dataclass
class RankingResult:
    score: int
    breakdown: dict[str, int] = field(default_factory=dict)


def normalize_criterion(name: str) -> str:
    """``starRating`` / ``hotel_rating`` / ``StarRating`` → ``star_rating``."""
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", name.strip()).lower()
    return CRITERION_ALIASES.get(snake, snake)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def travelers(query: Any) -> int:
    return max(1, (getattr(query, "adults", None) or 0) + (getattr(query, "children", None) or 0))


def effective_budget(query: Any) -> float | None:
    budget = _number(getattr(query, "budget", None))
    if not budget or budget <= 0:
        return None
    if getattr(query, "budget_type", "total") == "per_person":
        return budget * travelers(query)
    return budget


# ---------- Per-criterion scorers (return 0-100 or None when unresolvable) ----------

def price_score(candidate: CandidateResult, query: Any) -> float | None:
    budget = effective_budget(query)
    if budget is None:
        return None
    ratio = candidate.price / budget
    for ceiling, score in PRICE_BANDS:
        if ratio <= ceiling:
            return score
    return 0


def star_score(candidate: CandidateResult, query: Any) -> float | None:
    stars = _number(candidate.attributes.get("stars"))
    if stars is None:
        return None
    if stars >= 4:
        return 100
    return max(0.0, min(100.0, stars / 5 * 100))


def _tier_score(tier: float) -> float:
    if tier <= 1:
        return 100
    if tier <= 2:
        return 70
    return 40


def _distance_score(distance_m: float, reference_m: float) -> float:
    if distance_m <= 0:
        return 100
    return 100 * reference_m / max(distance_m, reference_m)


def _proximity_scorer(criterion: str, tier_key: str | None, distance_keys: tuple[str, ...]):
    reference = PROXIMITY_REFERENCE_M[criterion]

    def scorer(candidate: CandidateResult, query: Any) -> float | None:
        if tier_key:
            tier = _number(candidate.attributes.get(tier_key))
            if tier is not None:
                return _tier_score(tier)
        for key in distance_keys:
            distance = _number(candidate.attributes.get(key))
            if distance is not None:
                return _distance_score(distance, reference)
        return None

    return scorer


def meal_score(candidate: CandidateResult, query: Any) -> float | None:
    meal = candidate.attributes.get("meal_type")
    if not meal:
        return None
    lowered = str(meal).strip().lower()
    for patterns, score in MEAL_SCORES:
        for pattern in patterns:
            if re.search(rf"(?<!\w){re.escape(pattern)}(?!\w)", lowered):
                return score
    return None


def _scaled_rating(value: float) -> float:
    if value <= 5:
        return value / 5 * 100
    if value <= 10:
        return value / 10 * 100
    return min(100.0, value)


def reviews_score(candidate: CandidateResult, query: Any) -> float | None:
    rating = _number(candidate.attributes.get("review_rating"))
    if rating is None or rating < 0:
        return None
    return _scaled_rating(rating)


def safety_score(candidate: CandidateResult, query: Any) -> float | None:
    rating = _number(candidate.attributes.get("safety_rating"))
    if rating is None or rating < 0:
        return None
    return _scaled_rating(rating)


def location_score(candidate: CandidateResult, query: Any) -> float | None:
    match = _number(candidate.attributes.get("location_match"))
    if match is not None:
        return max(0.0, min(100.0, match * 100 if match <= 1 else match))

    airport_km = _number(candidate.attributes.get("airport_distance"))
    if airport_km is None:
        return None
    if airport_km <= 30:
        return 100
    if airport_km <= 60:
        return 80
    if airport_km <= 100:
        return 60
    return 40


def _flag_scorer(flag: str):
    def scorer(candidate: CandidateResult, query: Any) -> float | None:
        value = candidate.attributes.get(flag)
        if value is None:
            return None
        return 100 if bool(value) else 0
    return scorer


def _description(candidate: CandidateResult) -> str:
    return str(candidate.attributes.get("description") or "").lower()


def family_score(candidate: CandidateResult, query: Any) -> float | None:
    attrs = candidate.attributes
    flags = ("has_kids_club", "has_aquapark", "has_pool")
    if all(attrs.get(f) is None for f in flags):
        return None
    score = 30
    if attrs.get("has_kids_club"):
        score += 30
    if attrs.get("has_aquapark"):
        score += 20
    if attrs.get("has_pool"):
        score += 10
    if (meal_score(candidate, query) or 0) >= 100:
        score += 10
    return min(100, score)


def activities_score(candidate: CandidateResult, query: Any) -> float | None:
    attrs = candidate.attributes
    keys = ("has_aquapark", "has_fitness", "has_pool", "has_wifi", "airport_distance", "description")
    if all(attrs.get(k) is None for k in keys):
        return None
    score = 30
    if attrs.get("has_aquapark"):
        score += 20
    if attrs.get("has_fitness"):
        score += 10
    if attrs.get("has_pool"):
        score += 10
    if attrs.get("has_wifi"):
        score += 10
    airport_km = _number(attrs.get("airport_distance"))
    if airport_km is not None and airport_km <= 50:
        score += 10
    if "animation" in _description(candidate):
        score += 10
    return min(100, score)


def quietness_score(candidate: CandidateResult, query: Any) -> float | None:
    attrs = candidate.attributes
    keys = ("has_aquapark", "has_kids_club", "airport_distance", "description")
    if all(attrs.get(k) is None for k in keys):
        return None
    score = 70
    description = _description(candidate)
    if attrs.get("has_aquapark"):
        score -= 20
    if attrs.get("has_kids_club"):
        score -= 10
    if "animation" in description:
        score -= 20
    if "disco" in description or "nightclub" in description:
        score -= 20
    if "quiet" in description:
        score += 20
    if "secluded" in description:
        score += 20
    airport_km = _number(attrs.get("airport_distance"))
    if airport_km is not None and airport_km > 70:
        score += 10
    return max(0, min(100, score))


Scorer = Callable[[CandidateResult, Any], float | None]

SCORERS: dict[str, Scorer] = {
    "price": price_score,
    "star_rating": star_score,
    "reviews": reviews_score,
    "safety": safety_score,
    "location": location_score,
    "meal_type": meal_score,
    "beach_line": _proximity_scorer("beach_line", "beach_line", ("beach_distance",)),
    "sea_distance": _proximity_scorer("sea_distance", None, ("sea_distance", "beach_distance")),
    "slope_distance": _proximity_scorer("slope_distance", "slope_line", ("slope_distance",)),
    "sightseeing_distance": _proximity_scorer(
        "sightseeing_distance", None, ("sightseeing_distance", "center_distance")
    ),
    "family_friendly": family_score,
    "activities": activities_score,
    "quietness": quietness_score,
    **{criterion: _flag_scorer(flag) for criterion, flag in AMENITY_FLAGS.items()},
}


class RankingEngine:
    """Scores offers; a pure function of candidate, query and priorities."""

    def criterion_weights(self, query: Any, priorities: Mapping[str, Any] | None = None) -> dict[str, float]:
        """Relevant criteria with their weights for this query.

        Style defaults (max across matched styles) are overridden by explicit
        priorities; family-only criteria are dropped for parties without children.
        """
        if priorities is None:
            priorities = getattr(query, "priorities", None) or {}
        if not isinstance(priorities, Mapping):
            raise InvalidPrioritiesError(f"priorities must be a mapping, got {type(priorities).__name__}")
        # Stored profiles may wrap the map as {"profileName": ..., "weights": {...}}
        if isinstance(priorities.get("weights"), Mapping):
            priorities = priorities["weights"]

        styles = detect_travel_styles(
            getattr(query, "raw_text", None),
            getattr(query, "travel_styles", None),
        )
        weights = default_weights(styles)

        for key, raw_weight in priorities.items():
            weight = _number(raw_weight)
            if weight is None or not 0 <= weight <= 10:
                raise InvalidPrioritiesError(f"invalid weight {raw_weight!r} for criterion {key!r}")
            weights[normalize_criterion(str(key))] = weight

        if not (getattr(query, "children", None) or 0) > 0:
            for criterion in FAMILY_ONLY_CRITERIA:
                weights.pop(criterion, None)

        return weights

    def score(
        self,
        candidate: CandidateResult,
        query: Any,
        priorities: Mapping[str, Any] | None = None,
        weights: dict[str, float] | None = None,
    ) -> RankingResult:
        if weights is None:
            weights = self.criterion_weights(query, priorities)

        breakdown: dict[str, int] = {}
        weighted_sum = 0.0
        total_weight = 0.0
        for criterion, weight in weights.items():
            if weight <= 0:
                continue
            scorer = SCORERS.get(criterion)
            if scorer is None:
                continue
            sub_score = scorer(candidate, query)
            if sub_score is None:
                continue
            breakdown[criterion] = _round_half_up(sub_score)
            weighted_sum += sub_score * weight
            total_weight += weight

        if total_weight == 0:
            return RankingResult(score=NEUTRAL_SCORE, breakdown=breakdown)

        overall = weighted_sum / total_weight

        # An offer over budget cannot rank as a strong match on comfort alone.
        budget = effective_budget(query)
        if budget is not None and candidate.price > budget:
            overall *= budget / candidate.price

        return RankingResult(score=max(0, min(100, _round_half_up(overall))), breakdown=breakdown)

    def rank(
        self,
        candidates: Iterable[CandidateResult],
        query: Any,
        priorities: Mapping[str, Any] | None = None,
    ) -> list[RankedCandidate]:
        """Score every candidate, best first (cheaper first on equal score)."""
        weights = self.criterion_weights(query, priorities)
        ranked = []
        for candidate in candidates:
            result = self.score(candidate, query, weights=weights)
            ranked.append(RankedCandidate(candidate=candidate, score=result.score, breakdown=result.breakdown))
        ranked.sort(key=lambda r: (-r.score, r.price, r.candidate_id))
        if ranked:
            logger.debug(f"Ranked {len(ranked)} offers, top score {ranked[0].score}")
        return ranked


ranking_engine = RankingEngine()
