"""Travel styles, their criteria and default criterion weights (0-10)."""

import re

BASE_CRITERIA = ("price", "location", "star_rating", "reviews", "safety")

# Only meaningful when the party includes children.
FAMILY_ONLY_CRITERIA = frozenset({
    "kids_club",
    "family_rooms",
    "children_menu",
    "babysitting",
    "kids_entertainment",
    "pool_safety",
    "playgrounds",
    "family_activities",
    "stroller_accessibility",
    "family_friendly",
})

DEFAULT_STYLE = "beach"

# Default weights per style. Base criteria first, then style-specific ones.
STYLE_WEIGHTS: dict[str, dict[str, int]] = {
    "beach": {
        "price": 8, "location": 6, "star_rating": 7, "reviews": 7, "safety": 6,
        "beach_line": 9, "beach_quality": 9, "water_temperature": 8, "sea_distance": 10,
        "sunny_days": 7, "water_activities": 5, "beach_infrastructure": 6, "meal_type": 7,
    },
    "ski": {
        "price": 7, "location": 8, "star_rating": 6, "reviews": 7, "safety": 8,
        "slope_distance": 10, "slope_variety": 9, "snow_quality": 10, "altitude_range": 7,
        "ski_pass_price": 8, "equipment_rental": 6, "apres_ski": 5, "beginner_friendly": 6,
        "season_length": 7,
    },
    "excursion": {
        "price": 7, "location": 10, "star_rating": 5, "reviews": 7, "safety": 8,
        "sightseeing_distance": 10, "historical_value": 9, "cultural_richness": 9,
        "guided_tours": 8, "transport_accessibility": 9, "local_cuisine": 6,
        "museums_density": 7, "photo_opportunities": 6,
    },
    "active": {
        "price": 6, "location": 7, "star_rating": 5, "reviews": 8, "safety": 9,
        "adventure_activities": 10, "fitness_center": 6, "hiking_trails": 9, "bike_routes": 7,
        "water_sports": 8, "equipment_quality": 9, "guided_adventures": 8, "activities": 8,
    },
    "wellness": {
        "price": 5, "location": 6, "star_rating": 9, "reviews": 8, "safety": 7,
        "spa_quality": 10, "thermal_springs": 9, "medical_services": 8, "dietary_options": 8,
        "quietness": 10, "yoga_meditation": 7, "detox_programs": 6, "beauty_treatments": 7,
    },
    "cruise": {
        "price": 8, "location": 4, "star_rating": 0, "reviews": 8, "safety": 9,
        "ship_size": 6, "cabin_comfort": 9, "route_interest": 10, "onboard_entertainment": 8,
        "dining_options": 8, "port_excursions": 7, "sea_sickness": 5, "dress_code": 4,
    },
    "family": {
        "price": 8, "location": 7, "star_rating": 8, "reviews": 9, "safety": 10,
        "kids_club": 9, "family_rooms": 10, "children_menu": 8, "babysitting": 6,
        "kids_entertainment": 9, "pool_safety": 10, "playgrounds": 7, "family_activities": 8,
        "stroller_accessibility": 7, "meal_type": 8,
    },
    "romantic": {
        "price": 6, "location": 7, "star_rating": 8, "reviews": 8, "safety": 6,
        "quietness": 9, "spa_quality": 7, "sea_distance": 7,
    },
}

# Matched as whole words, so inflected forms are listed explicitly.
STYLE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "beach": (
        "beach", "beaches", "sea", "seaside", "sunbathing", "swimming",
        "море", "моря", "пляж", "пляжный", "загар", "купание",
    ),
    "ski": (
        "ski", "skiing", "snowboard", "snowboarding", "slopes", "snow",
        "лыжи", "горнолыжный", "сноуборд", "горы", "снег",
    ),
    "excursion": (
        "excursion", "excursions", "sightseeing", "museum", "museums", "history",
        "экскурсии", "музеи", "история",
    ),
    "active": (
        "hiking", "trekking", "rafting", "cycling", "sport", "sports",
        "спорт", "треккинг", "рафтинг",
    ),
    "wellness": (
        "spa", "massage", "yoga", "detox", "wellness",
        "спа", "массаж", "йога", "детокс",
    ),
    "cruise": ("cruise", "cruises", "liner", "круиз", "лайнер", "каюта"),
    "family": (
        "family", "kids", "children", "kids club",
        "семья", "дети", "детьми", "детский клуб", "семейный",
    ),
    "romantic": (
        "romantic", "honeymoon", "for two",
        "романтика", "романтический", "медовый месяц", "для двоих",
    ),
}

# Alternate spellings of criterion names found in stored priorities.
CRITERION_ALIASES = {
    "hotel_rating": "star_rating",
    "stars": "star_rating",
    "user_reviews": "reviews",
    "rating": "reviews",
    "meal": "meal_type",
    "beach": "beach_line",
    "family": "family_friendly",
    "apres_ski_life": "apres_ski",
}


def detect_travel_styles(text: str | None, tags: list[str] | None = None) -> list[str]:
    """Styles from explicit tags plus keyword matches in free text.

    Falls back to the beach style when nothing matches.
    """
    styles: list[str] = []
    for tag in tags or []:
        key = tag.strip().lower()
        if key in STYLE_WEIGHTS and key not in styles:
            styles.append(key)

    lowered = (text or "").lower()
    if lowered:
        for style, keywords in STYLE_KEYWORDS.items():
            if style in styles:
                continue
            if any(re.search(rf"\b{re.escape(k)}\b", lowered) for k in keywords):
                styles.append(style)

    return styles or [DEFAULT_STYLE]


def default_weights(styles: list[str]) -> dict[str, float]:
    """Union of base and style criteria, each weighted by its max across styles."""
    criteria: list[str] = list(BASE_CRITERIA)
    for style in styles:
        for criterion in STYLE_WEIGHTS.get(style, {}):
            if criterion not in criteria:
                criteria.append(criterion)

    weights: dict[str, float] = {}
    for criterion in criteria:
        defined = [
            STYLE_WEIGHTS[style][criterion]
            for style in styles
            if criterion in STYLE_WEIGHTS.get(style, {})
        ]
        weights[criterion] = float(max(defined)) if defined else 5.0
    return weights
