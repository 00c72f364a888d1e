"""Pydantic models describing catalog records and user state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

UNKNOWN_TITLE = "Unknown Title"
NO_SYNOPSIS = "No synopsis available."
UNKNOWN_STATUS = "Unknown"


class AnimeRecord(BaseModel):
    """Normalized representation of a catalog entry."""

    id: int
    title: str = UNKNOWN_TITLE
    image_url: str = ""
    synopsis: str = NO_SYNOPSIS
    score: float | None = Field(default=None, ge=0, le=10)
    genres: list[str] = Field(default_factory=list)
    episode_count: int = Field(default=0, ge=0)
    status: str = UNKNOWN_STATUS

    year: int | None = None
    season: str | None = None
    type: str | None = None
    source: str | None = None
    studios: list[str] = Field(default_factory=list)

    scored_by: int | None = None
    rank: int | None = None
    popularity: int | None = None

    @property
    def rating(self) -> float:
        """Return the score, or ``0.0`` when the catalog has none."""

        return self.score if self.score is not None else 0.0


class CatalogPage(BaseModel):
    """One page of records plus whether the catalog reports another page."""

    records: list[AnimeRecord] = Field(default_factory=list)
    has_more: bool = False


class WatchStatus(str, Enum):
    """Anime watch status."""

    WATCHING = "watching"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    DROPPED = "dropped"
    PLAN_TO_WATCH = "plan_to_watch"


class UserAnimeEntry(BaseModel):
    """A user's tracking record for one title."""

    id: int
    in_watchlist: bool = False
    watch_status: WatchStatus = WatchStatus.PLAN_TO_WATCH
    user_rating: int | None = Field(default=None, ge=1, le=10)
    watch_progress: int = Field(default=0, ge=0)
    date_added: datetime | None = None
    notes: str = ""
    is_favorite: bool = False


class CompletionStats(BaseModel):
    completed: int = 0
    watching: int = 0
    plan_to_watch: int = 0
    total: int = 0


class TitleImage(BaseModel):
    url: str
    width: int | None = None
    height: int | None = None


class TitleRating(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    aggregate_rating: float = Field(alias="aggregateRating")
    vote_count: int = Field(default=0, alias="voteCount")


class TitleMatch(BaseModel):
    """A single hit returned by the title-lookup service."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str
    primary_title: str = Field(alias="primaryTitle")
    original_title: str | None = Field(
        default=None,
        validation_alias=AliasChoices("originalTitle", "original_title"),
    )
    primary_image: TitleImage | None = Field(default=None, alias="primaryImage")
    start_year: int | None = Field(default=None, alias="startYear")
    end_year: int | None = Field(default=None, alias="endYear")
    rating: TitleRating | None = None


class FeedItem(BaseModel):
    """A catalog record merged with the user's tracking flags."""

    record: AnimeRecord
    in_watchlist: bool = False
    is_favorite: bool = False
    watch_status: WatchStatus | None = None
    user_rating: int | None = None
    watch_progress: int = 0


@dataclass(frozen=True, slots=True)
class DecodedRecord:
    record: AnimeRecord


@dataclass(frozen=True, slots=True)
class DecodeFailure:
    reason: str


DecodeResult = DecodedRecord | DecodeFailure


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _optional_int(value: Any) -> int | None:
    return value if _is_int(value) else None


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _text_or(value: Any, fallback: str) -> str:
    text = _optional_str(value)
    return text if text is not None else fallback


def _score(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    score = float(value)
    if 0 <= score <= 10:
        return score
    return None


def _episode_count(value: Any) -> int:
    if _is_int(value) and value >= 0:
        return value
    return 0


def _image_url(images: Any) -> str:
    if not isinstance(images, Mapping):
        return ""
    for variant in ("jpg", "webp"):
        urls = images.get(variant)
        if not isinstance(urls, Mapping):
            continue
        url = urls.get("large_image_url")
        if isinstance(url, str) and url:
            return url
    return ""


def _names(entries: Any) -> list[str]:
    if not isinstance(entries, list):
        return []
    names: list[str] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        name = entry.get("name")
        if isinstance(name, str) and name:
            names.append(name)
    return names


def decode_anime_record(raw: Any) -> DecodeResult:
    """Map one raw catalog object onto :class:`AnimeRecord`.

    Only a missing or non-integer ``mal_id`` is a failure; every other
    field falls back to its documented default.
    """

    if not isinstance(raw, Mapping):
        return DecodeFailure("record is not an object")
    anime_id = raw.get("mal_id")
    if not _is_int(anime_id):
        return DecodeFailure("record has no integer mal_id")

    record = AnimeRecord(
        id=anime_id,
        title=_text_or(raw.get("title"), UNKNOWN_TITLE),
        image_url=_image_url(raw.get("images")),
        synopsis=_text_or(raw.get("synopsis"), NO_SYNOPSIS),
        score=_score(raw.get("score")),
        genres=_names(raw.get("genres")),
        episode_count=_episode_count(raw.get("episodes")),
        status=_text_or(raw.get("status"), UNKNOWN_STATUS),
        year=_optional_int(raw.get("year")),
        season=_optional_str(raw.get("season")),
        type=_optional_str(raw.get("type")),
        source=_optional_str(raw.get("source")),
        studios=_names(raw.get("studios")),
        scored_by=_optional_int(raw.get("scored_by")),
        rank=_optional_int(raw.get("rank")),
        popularity=_optional_int(raw.get("popularity")),
    )
    return DecodedRecord(record)
