"""Persisted user state: watchlist entries, favorites, ratings and progress."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy import delete, select

from ..database import Database
from ..db_models import UserStateRecord
from ..models import AnimeRecord, CompletionStats, UserAnimeEntry, WatchStatus
from ..utils import int_list, int_mapping, iso_timestamp, utc_now

logger = logging.getLogger(__name__)

WATCHLIST_KEY = "user_watchlist"
FAVORITES_KEY = "user_favorites"
RATINGS_KEY = "user_ratings"
PROGRESS_KEY = "user_progress"
STATE_KEYS: tuple[str, ...] = (WATCHLIST_KEY, FAVORITES_KEY, RATINGS_KEY, PROGRESS_KEY)

MIN_RATING = 1
MAX_RATING = 10


class StateStorage:
    """Durable key/value storage for serialized state indexes."""

    def read(self, key: str) -> str | None:
        raise NotImplementedError

    def write_many(self, values: Mapping[str, str]) -> None:
        raise NotImplementedError

    def delete_many(self, keys: Iterable[str]) -> None:
        raise NotImplementedError


class MemoryStateStorage(StateStorage):
    """Process-local storage, used for tests and throwaway sessions."""

    def __init__(self, initial: Mapping[str, str] | None = None):
        self.values: dict[str, str] = dict(initial or {})

    def read(self, key: str) -> str | None:
        return self.values.get(key)

    def write_many(self, values: Mapping[str, str]) -> None:
        self.values.update(values)

    def delete_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.values.pop(key, None)


class SQLStateStorage(StateStorage):
    """Stores each index as a row of the ``user_state`` table."""

    def __init__(self, database: Database):
        self._database = database

    def read(self, key: str) -> str | None:
        with self._database.session() as session:
            record = session.get(UserStateRecord, key)
            return record.value if record is not None else None

    def write_many(self, values: Mapping[str, str]) -> None:
        with self._database.session() as session:
            existing = {
                record.key: record
                for record in session.scalars(
                    select(UserStateRecord).where(UserStateRecord.key.in_(list(values)))
                )
            }
            for key, value in values.items():
                record = existing.get(key)
                if record is None:
                    session.add(UserStateRecord(key=key, value=value))
                else:
                    record.value = value

    def delete_many(self, keys: Iterable[str]) -> None:
        with self._database.session() as session:
            session.execute(delete(UserStateRecord).where(UserStateRecord.key.in_(list(keys))))


def _decode_entries(data: Any) -> dict[int, UserAnimeEntry]:
    if not isinstance(data, list):
        raise ValueError("Expected a JSON array of entries")
    entries: dict[int, UserAnimeEntry] = {}
    for item in data:
        entry = UserAnimeEntry.model_validate(item)
        entries[entry.id] = entry
    return entries


class UserStateStore:
    """Single owner of the user's tracking state.

    Construct one per process, hand it to the consumers that need it and
    let the application lifespan drop it on shutdown. Every mutation writes
    all four indexes back to ``storage``. A re-entrant lock serializes
    access so read-modify-write operations stay atomic across threads.
    """

    def __init__(
        self,
        storage: StateStorage,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._storage = storage
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[int, UserAnimeEntry] = {}
        self._favorites: set[int] = set()
        self._ratings: dict[int, int] = {}
        self._progress: dict[int, int] = {}
        self._load()

    # Watchlist

    def add_to_watchlist(
        self, record: AnimeRecord, status: WatchStatus = WatchStatus.PLAN_TO_WATCH
    ) -> UserAnimeEntry:
        """Insert or replace the watchlist entry for ``record``."""

        with self._lock:
            previous = self._entries.get(record.id)
            entry = UserAnimeEntry(
                id=record.id,
                in_watchlist=True,
                watch_status=status,
                user_rating=self._ratings.get(record.id),
                watch_progress=self._progress.get(record.id, 0),
                date_added=self._clock(),
                notes=previous.notes if previous is not None else "",
                is_favorite=record.id in self._favorites,
            )
            self._entries[record.id] = entry
            self._persist()
            logger.debug("Added %s to watchlist as %s", record.id, status.value)
            return entry.model_copy()

    def remove_from_watchlist(self, anime_id: int) -> None:
        """Delete the entry; favorites and ratings are left untouched."""

        with self._lock:
            self._entries.pop(anime_id, None)
            self._persist()

    def update_watch_status(self, anime_id: int, status: WatchStatus) -> None:
        with self._lock:
            entry = self._entries.get(anime_id)
            if entry is None:
                return
            entry.watch_status = status
            self._persist()

    def update_watch_progress(self, anime_id: int, progress: int) -> None:
        """Record episodes watched; negative counts are ignored."""

        if progress < 0:
            return
        with self._lock:
            self._progress[anime_id] = progress
            entry = self._entries.get(anime_id)
            if entry is not None:
                entry.watch_progress = progress
            self._persist()

    def is_in_watchlist(self, anime_id: int) -> bool:
        with self._lock:
            entry = self._entries.get(anime_id)
            # Entries created only by update_notes are not watchlisted.
            return entry is not None and entry.in_watchlist

    def get_entry(self, anime_id: int) -> UserAnimeEntry | None:
        with self._lock:
            entry = self._entries.get(anime_id)
            return entry.model_copy() if entry is not None else None

    def watchlist_entries(self) -> list[UserAnimeEntry]:
        """Return watchlist entries in the order they were first added."""

        # Stats and status queries build on this, so notes-only entries stay out.
        with self._lock:
            return [
                entry.model_copy()
                for entry in self._entries.values()
                if entry.in_watchlist
            ]

    # Favorites

    def toggle_favorite(self, anime_id: int) -> bool:
        """Flip favorite membership and return the new state."""

        with self._lock:
            if anime_id in self._favorites:
                self._favorites.discard(anime_id)
            else:
                self._favorites.add(anime_id)
            favorite = anime_id in self._favorites
            entry = self._entries.get(anime_id)
            if entry is not None:
                entry.is_favorite = favorite
            self._persist()
            return favorite

    def is_favorite(self, anime_id: int) -> bool:
        with self._lock:
            return anime_id in self._favorites

    def favorite_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._favorites)

    # Ratings

    def set_user_rating(self, anime_id: int, rating: int) -> None:
        """Store a 1-10 rating; anything outside that range is ignored."""

        if not MIN_RATING <= rating <= MAX_RATING:
            return
        with self._lock:
            self._ratings[anime_id] = rating
            entry = self._entries.get(anime_id)
            if entry is not None:
                entry.user_rating = rating
            self._persist()

    def remove_user_rating(self, anime_id: int) -> None:
        with self._lock:
            self._ratings.pop(anime_id, None)
            entry = self._entries.get(anime_id)
            if entry is not None:
                entry.user_rating = None
            self._persist()

    def get_user_rating(self, anime_id: int) -> int | None:
        with self._lock:
            return self._ratings.get(anime_id)

    def get_watch_progress(self, anime_id: int) -> int:
        with self._lock:
            return self._progress.get(anime_id, 0)

    # Notes

    def update_notes(self, anime_id: int, notes: str) -> None:
        """Set notes, creating a bare entry when the title is not tracked yet."""

        with self._lock:
            entry = self._entries.get(anime_id)
            if entry is None:
                self._entries[anime_id] = UserAnimeEntry(
                    id=anime_id,
                    notes=notes,
                    is_favorite=anime_id in self._favorites,
                    user_rating=self._ratings.get(anime_id),
                    watch_progress=self._progress.get(anime_id, 0),
                )
            else:
                entry.notes = notes
            self._persist()

    def get_notes(self, anime_id: int) -> str:
        with self._lock:
            entry = self._entries.get(anime_id)
            return entry.notes if entry is not None else ""

    # Queries

    def entries_by_status(self, status: WatchStatus) -> list[UserAnimeEntry]:
        return [entry for entry in self.watchlist_entries() if entry.watch_status == status]

    def recently_added(self, limit: int = 10) -> list[UserAnimeEntry]:
        """Return the most recently added entries, newest first."""

        dated = [entry for entry in self.watchlist_entries() if entry.date_added is not None]
        dated.sort(key=lambda entry: entry.date_added, reverse=True)
        return dated[: max(limit, 0)]

    def completion_stats(self) -> CompletionStats:
        entries = self.watchlist_entries()
        return CompletionStats(
            completed=sum(1 for entry in entries if entry.watch_status == WatchStatus.COMPLETED),
            watching=sum(1 for entry in entries if entry.watch_status == WatchStatus.WATCHING),
            plan_to_watch=sum(
                1 for entry in entries if entry.watch_status == WatchStatus.PLAN_TO_WATCH
            ),
            total=len(entries),
        )

    # Export / import

    def export_all(self) -> dict[str, Any]:
        """Return a JSON-serializable snapshot of every index."""

        with self._lock:
            return {
                "watchlist": [
                    entry.model_dump(mode="json") for entry in self._entries.values()
                ],
                "favorites": sorted(self._favorites),
                "ratings": {str(key): value for key, value in self._ratings.items()},
                "progress": {str(key): value for key, value in self._progress.items()},
                "exportDate": iso_timestamp(self._clock()),
            }

    def import_all(self, snapshot: Mapping[str, Any]) -> None:
        """Merge favorites, ratings and progress from an exported snapshot.

        Incoming values win per key. The ``watchlist`` list is not restored;
        existing entries only have their mirrored fields refreshed.
        """

        favorites = self._parse_or_none(snapshot.get("favorites"), int_list, "favorites")
        ratings = self._parse_or_none(snapshot.get("ratings"), int_mapping, "ratings")
        progress = self._parse_or_none(snapshot.get("progress"), int_mapping, "progress")

        with self._lock:
            if favorites is not None:
                # Union: an import adds favorites but never removes one.
                self._favorites.update(favorites)
            if ratings is not None:
                self._ratings.update(
                    {
                        key: value
                        for key, value in ratings.items()
                        if MIN_RATING <= value <= MAX_RATING
                    }
                )
            if progress is not None:
                self._progress.update(
                    {key: value for key, value in progress.items() if value >= 0}
                )
            for anime_id, entry in self._entries.items():
                entry.is_favorite = anime_id in self._favorites
                if anime_id in self._ratings:
                    entry.user_rating = self._ratings[anime_id]
                if anime_id in self._progress:
                    entry.watch_progress = self._progress[anime_id]
            self._persist()

    def clear_all(self) -> None:
        """Forget everything, in memory and in storage."""

        with self._lock:
            self._entries.clear()
            self._favorites.clear()
            self._ratings.clear()
            self._progress.clear()
            self._storage.delete_many(STATE_KEYS)

    # Persistence

    def _persist(self) -> None:
        self._storage.write_many(
            {
                WATCHLIST_KEY: json.dumps(
                    [entry.model_dump(mode="json") for entry in self._entries.values()]
                ),
                FAVORITES_KEY: json.dumps(sorted(self._favorites)),
                RATINGS_KEY: json.dumps({str(key): value for key, value in self._ratings.items()}),
                PROGRESS_KEY: json.dumps({str(key): value for key, value in self._progress.items()}),
            }
        )

    def _load(self) -> None:
        self._entries = self._load_key(WATCHLIST_KEY, _decode_entries) or {}
        self._favorites = set(self._load_key(FAVORITES_KEY, int_list) or [])
        self._ratings = self._load_key(RATINGS_KEY, int_mapping) or {}
        self._progress = self._load_key(PROGRESS_KEY, int_mapping) or {}

    def _load_key(self, key: str, decoder: Callable[[Any], Any]) -> Any:
        raw = self._storage.read(key)
        if raw is None:
            return None
        try:
            return decoder(json.loads(raw))
        except (TypeError, ValueError) as exc:
            logger.warning("Discarding unreadable user state under %s: %s", key, exc)
            return None

    @staticmethod
    def _parse_or_none(value: Any, parser: Callable[[Any], Any], label: str) -> Any:
        if value is None:
            return None
        try:
            return parser(value)
        except ValueError as exc:
            logger.warning("Ignoring %s in imported snapshot: %s", label, exc)
            return None
