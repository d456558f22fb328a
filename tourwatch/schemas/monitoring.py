"""Notify conditions and request models for monitored searches."""

import logging
import re
import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def _to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class QuietHours(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel)

    start: str
    end: str
    timezone: str | None = None

    @field_validator("start", "end")
    @classmethod
    def _check_hhmm(cls, v: str) -> str:
        if not _HHMM.match(v.strip()):
            raise ValueError(f"expected HH:MM, got {v!r}")
        return v.strip()

    def start_minute(self) -> int:
        return _minute_of_day(self.start)

    def end_minute(self) -> int:
        return _minute_of_day(self.end)


def _minute_of_day(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


class NotifyConditions(BaseModel):
    """When a monitored search should notify.

    Stored as JSON on the monitored search; both snake_case and the camelCase
    keys written by older clients are accepted.
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel)

    notify_new_tours: bool = True
    price_drop_percent: float | None = Field(default=10, ge=0, le=100)
    price_drop_amount: float | None = Field(default=None, ge=0)
    price_below_threshold: float | None = Field(default=None, ge=0)
    min_match_score: float | None = Field(default=70, ge=0, le=100)
    only_top_matches: bool = False
    max_notifications_per_day: int | None = Field(default=None, ge=0)
    quiet_hours: QuietHours | None = None
    notify_availability_change: bool = True

    def to_storage(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def resolve_conditions(raw: dict | None) -> NotifyConditions:
    """Validate stored conditions, falling back to defaults for malformed fields.

    A broken field is dropped (and logged) rather than failing the search:
    the remaining fields are kept and missing ones take their defaults.
    """
    if not raw:
        return NotifyConditions()
    if not isinstance(raw, dict):
        logger.warning(f"Notify conditions are not a mapping ({type(raw).__name__}), using defaults")
        return NotifyConditions()

    data = dict(raw)
    for _ in range(len(data) + 1):
        try:
            return NotifyConditions.model_validate(data)
        except ValidationError as e:
            bad_keys = set()
            for err in e.errors():
                if not err["loc"]:
                    continue
                key = str(err["loc"][0])
                bad_keys |= {key, _to_camel(key), _to_snake(key)} & set(data)
            if not bad_keys:
                break
            logger.warning(f"Dropping malformed notify conditions {sorted(bad_keys)}: {e.error_count()} errors")
            for key in bad_keys:
                data.pop(key, None)
    return NotifyConditions()


class SavedQueryIn(BaseModel):
    raw_text: str | None = None
    destinations: list[str] = Field(default_factory=list)
    departure_city: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    flexible_month: str | None = None
    duration_nights: int | None = Field(default=None, ge=1)
    adults: int = Field(default=2, ge=1)
    children: int = Field(default=0, ge=0)
    children_ages: list[int] = Field(default_factory=list)
    budget: float | None = Field(default=None, gt=0)
    budget_type: str = "total"
    currency: str = "RUB"
    travel_styles: list[str] = Field(default_factory=list)
    requirements: list[str] = Field(default_factory=list)
    priorities: dict[str, float] = Field(default_factory=dict)

    @field_validator("budget_type")
    @classmethod
    def _budget_type(cls, v: str) -> str:
        if v not in ("total", "per_person"):
            raise ValueError("budget_type must be 'total' or 'per_person'")
        return v

    @field_validator("priorities")
    @classmethod
    def _weights_in_range(cls, v: dict[str, float]) -> dict[str, float]:
        for key, weight in v.items():
            if not 0 <= weight <= 10:
                raise ValueError(f"priority weight for {key!r} must be within 0-10")
        return v

    @model_validator(mode="after")
    def _children_ages_match(self):
        if self.children_ages and len(self.children_ages) != self.children:
            raise ValueError("children_ages must list one age per child")
        return self


class CreateMonitoredSearchRequest(BaseModel):
    """Either a new query to save or the id of one the owner already saved."""

    query: SavedQueryIn | None = None
    saved_query_id: uuid.UUID | None = None
    conditions: NotifyConditions | None = None
    monitor_until: datetime | None = None
    monitor_days: int | None = Field(default=None, ge=1, le=365)

    @model_validator(mode="after")
    def _one_query_source(self):
        if (self.query is None) == (self.saved_query_id is None):
            raise ValueError("provide exactly one of query or saved_query_id")
        return self


class ControlActionRequest(BaseModel):
    callback_data: str
