# src/readmap/models/schemas.py
import logging
from typing import Any, FrozenSet, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


def _coerce_progress(v: Any) -> int:
    """Best-effort integer progress; anything non-numeric becomes 0."""
    try:
        return int(round(float(v)))
    except (TypeError, ValueError, OverflowError):
        return 0


def _as_text(v: Any) -> Optional[str]:
    """Scalars become strings; containers and None become None."""
    if v is None or isinstance(v, (dict, list, tuple, set)):
        return None
    return str(v)


def _keep_records(
    v: Any, model: Type["WireModel"], required: Tuple[str, ...]
) -> List["WireModel"]:
    """
    Validate list entries one at a time, dropping the ones that fail.

    Entries that are not objects, lack a required key, or do not validate
    are skipped so one bad record never discards the whole response.
    """
    if not isinstance(v, list):
        return []

    records = []
    for item in v:
        if not isinstance(item, dict) or not all(item.get(key) for key in required):
            continue
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Dropping malformed {model.__name__} record: {e.error_count()} error(s)")
    return records


class WireModel(BaseModel):
    """Accepts both the backend's wire names and snake_case names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CountryProgress(WireModel):
    iso3: str
    progress: int = 0

    @field_validator("iso3", mode="before")
    @classmethod
    def upper_iso3(cls, v):
        return str(v).strip().upper()

    @field_validator("progress", mode="before")
    @classmethod
    def numeric_progress(cls, v):
        return _coerce_progress(v)


class UserLocation(WireModel):
    user: str
    iso3: str
    avatar_url: Optional[str] = Field(default=None, alias="avatarURL")
    book: Optional[str] = Field(default=None, alias="livro")
    timestamp: Optional[Any] = None  # epoch seconds or ISO string, passed through

    @field_validator("iso3", mode="before")
    @classmethod
    def upper_iso3(cls, v):
        return str(v).strip().upper()

    @field_validator("user", "book", mode="before")
    @classmethod
    def scalar_text(cls, v):
        return _as_text(v)

    @field_validator("avatar_url", mode="before")
    @classmethod
    def blank_avatar_is_none(cls, v):
        if not isinstance(v, str) or not v.strip():
            return None
        return v


class Reading(WireModel):
    """One reader of a country, as listed in the country popup."""

    user: str
    avatar_url: Optional[str] = Field(default=None, alias="avatarURL")
    cover_url: Optional[str] = Field(default=None, alias="capaURL")
    book: str = Field(default="", alias="livro")
    progress: int = Field(default=0, alias="progresso")

    @field_validator("progress", mode="before")
    @classmethod
    def numeric_progress(cls, v):
        return _coerce_progress(v)

    @field_validator("user", mode="before")
    @classmethod
    def scalar_user(cls, v):
        return _as_text(v)

    @field_validator("book", mode="before")
    @classmethod
    def none_book_is_empty(cls, v):
        return _as_text(v) or ""

    @field_validator("avatar_url", "cover_url", mode="before")
    @classmethod
    def string_urls_only(cls, v):
        if not isinstance(v, str) or not v.strip():
            return None
        return v


class StatsResponse(WireModel):
    countries: List[CountryProgress] = []
    total: int = 0

    @field_validator("countries", mode="before")
    @classmethod
    def drop_malformed_countries(cls, v):
        return _keep_records(v, CountryProgress, ("iso3",))

    @field_validator("total", mode="before")
    @classmethod
    def numeric_total(cls, v):
        return _coerce_progress(v)


class UserLocationsResponse(WireModel):
    users: List[UserLocation] = []
    total: int = 0

    @field_validator("users", mode="before")
    @classmethod
    def drop_malformed_users(cls, v):
        return _keep_records(v, UserLocation, ("user", "iso3"))

    @field_validator("total", mode="before")
    @classmethod
    def numeric_total(cls, v):
        return _coerce_progress(v)


class ReadingsResponse(WireModel):
    readings: List[Reading] = []

    @field_validator("readings", mode="before")
    @classmethod
    def drop_malformed_readings(cls, v):
        return _keep_records(v, Reading, ("user",))


class MonthConfig(BaseModel):
    """One month of the challenge and the countries read during it."""

    model_config = ConfigDict(frozen=True)

    name: str
    color: str  # base (most saturated) color
    countries: FrozenSet[str]
    tier_colors: Tuple[str, str, str, str, str]  # lightest -> most saturated

    @field_validator("countries", mode="before")
    @classmethod
    def upper_countries(cls, v):
        return frozenset(str(iso).upper() for iso in v)
