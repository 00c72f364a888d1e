"""Feed orchestration: query modes, pagination, cancellation and filtering."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Awaitable, Callable, Collection, Iterable

from ..errors import ServiceError
from ..genres import genre_ids_for
from ..models import AnimeRecord, CatalogPage, FeedItem
from ..utils import any_casefold_contains, casefold_contains
from .catalog import CatalogClient
from .user_state import UserStateStore

logger = logging.getLogger(__name__)

PageFetcher = Callable[[int], Awaitable[CatalogPage]]


class FeedMode(str, Enum):
    TOP = "top"
    SEASONAL = "seasonal"
    UPCOMING = "upcoming"
    SEARCH = "search"
    GENRE = "genre"


BROWSE_MODES: tuple[FeedMode, ...] = (FeedMode.TOP, FeedMode.SEASONAL, FeedMode.UPCOMING)


class FeedPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"


@dataclass
class FeedState:
    """Everything a screen needs to render one feed."""

    mode: FeedMode = FeedMode.SEASONAL
    browse_mode: FeedMode = FeedMode.SEASONAL
    page: int = 1
    items: list[AnimeRecord] = field(default_factory=list)
    is_loading: bool = False
    error_message: str | None = None
    has_more: bool = False
    search_text: str = ""
    # Query behind the loaded search results; search_text may run ahead of it.
    active_query: str = ""
    genres: list[str] = field(default_factory=list)
    genre_ids: list[int] = field(default_factory=list)

    @property
    def phase(self) -> FeedPhase:
        if self.is_loading:
            return FeedPhase.LOADING
        if self.error_message is not None:
            return FeedPhase.ERROR
        return FeedPhase.IDLE


class CancellationToken:
    """Cooperative cancellation flag checked after every await."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass(frozen=True, slots=True)
class _Request:
    token: CancellationToken
    generation: int


class FeedController:
    """Drives one feed against the catalog and merges in user state.

    Requests run in one of two slots. Starting a request cancels the
    previous token in the same slot only; results that arrive for a
    cancelled token, or for a feed that has since been reset, are dropped
    without touching the state.
    """

    LOAD_SLOT = "load"
    SEARCH_SLOT = "search"

    def __init__(
        self,
        catalog: CatalogClient,
        store: UserStateStore | None = None,
        *,
        mode: FeedMode = FeedMode.SEASONAL,
    ):
        if mode not in BROWSE_MODES:
            raise ValueError(f"Initial feed mode must be one of {[m.value for m in BROWSE_MODES]}")
        self._catalog = catalog
        self._store = store
        self._state = FeedState(mode=mode, browse_mode=mode)
        self._tokens: dict[str, CancellationToken] = {}
        self._generation = 0

    @property
    def state(self) -> FeedState:
        """Return a snapshot of the current feed state."""

        return replace(
            self._state,
            items=list(self._state.items),
            genres=list(self._state.genres),
            genre_ids=list(self._state.genre_ids),
        )

    # Loading

    async def load_initial(self) -> None:
        """Load the first page unless the feed already has items."""

        if self._state.items:
            return
        await self.refresh()

    async def refresh(self) -> None:
        """Reload the first page of whatever the feed currently shows."""

        mode = self._state.mode
        if mode == FeedMode.SEARCH and self._state.active_query:
            await self.submit_search(self._state.active_query)
        elif mode == FeedMode.GENRE and self._state.genres:
            await self.apply_genre_filter(self._state.genres)
        else:
            await self._load_browse(self._state.browse_mode)

    async def switch_mode(self, mode: FeedMode | str) -> None:
        """Switch to a browse mode and load its first page."""

        mode = FeedMode(mode)
        if mode not in BROWSE_MODES:
            raise ValueError(f"{mode.value!r} is not a browse mode")
        self._state.search_text = ""
        await self._load_browse(mode)

    async def submit_search(self, text: str) -> None:
        """Run a catalog search, or fall back to browsing for blank text."""

        query = (text or "").strip()
        self._state.search_text = text or ""
        if not query:
            await self._load_browse(self._state.browse_mode)
            return
        self._state.active_query = query
        await self._reset_and_load(
            self.SEARCH_SLOT,
            FeedMode.SEARCH,
            lambda page: self._catalog.search_by_text(query, page),
        )

    async def update_search_text(self, text: str) -> None:
        """Track typed text; clearing it during a search reloads the browse mode."""

        self._state.search_text = text or ""
        if not self._state.search_text and self._state.mode == FeedMode.SEARCH:
            await self._load_browse(self._state.browse_mode)

    async def apply_genre_filter(self, genres: Iterable[str]) -> None:
        """Load titles for the selected genre names.

        An empty selection goes back to the browse mode. A selection made only
        of unknown names empties the feed without contacting the catalog.
        """

        names = list(genres)
        if not names:
            self._state.genres = []
            self._state.genre_ids = []
            await self._load_browse(self._state.browse_mode)
            return

        genre_ids = genre_ids_for(names)
        self._state.genres = names
        self._state.genre_ids = genre_ids
        if not genre_ids:
            self._begin(self.LOAD_SLOT, reset=True)
            self._reset_state(FeedMode.GENRE)
            self._state.is_loading = False
            logger.debug("No known genres in %s; skipping catalog request", names)
            return

        await self._reset_and_load(
            self.LOAD_SLOT,
            FeedMode.GENRE,
            lambda page: self._catalog.fetch_by_genre_ids(genre_ids, page),
        )

    async def load_more(self) -> None:
        """Append the next page when one exists and nothing is loading."""

        state = self._state
        if state.is_loading or not state.has_more:
            return
        fetch = self._fetcher_for(state.mode)
        next_page = state.page + 1
        request = self._begin(self.LOAD_SLOT, reset=False)
        state.is_loading = True
        state.error_message = None

        def apply(page: CatalogPage) -> None:
            state.items = _merge_unique(state.items, page.records)
            state.has_more = page.has_more
            if page.has_more:
                state.page += 1

        await self._execute(request, lambda: fetch(next_page), apply)

    def cancel_pending(self) -> None:
        """Cancel every in-flight request of this controller."""

        for token in self._tokens.values():
            token.cancel()

    # Local filtering

    def get_filtered_items(
        self, search_text: str = "", genres: Collection[str] = ()
    ) -> list[AnimeRecord]:
        """Filter the loaded items locally without contacting the catalog."""

        needle = (search_text or "").strip()
        selected = set(genres)
        items = list(self._state.items)
        if needle:
            items = [
                item
                for item in items
                if casefold_contains(item.title, needle)
                or casefold_contains(item.synopsis, needle)
                or any_casefold_contains(item.genres, needle)
            ]
        if selected:
            items = [item for item in items if not selected.isdisjoint(item.genres)]
        return items

    def presented_items(
        self, search_text: str = "", genres: Collection[str] = ()
    ) -> list[FeedItem]:
        """Return filtered items merged with the user's tracking flags."""

        return [
            self._present(record)
            for record in self.get_filtered_items(search_text, genres)
        ]

    # Lookups outside the feed

    async def fetch_details(self, anime_id: int) -> AnimeRecord:
        return await self._catalog.fetch_by_id(anime_id)

    async def fetch_recommendations(self, anime_id: int) -> list[AnimeRecord]:
        page = await self._catalog.fetch_recommendations(anime_id)
        return [record for record in page.records if record.id != anime_id]

    async def load_watchlist_records(self) -> list[FeedItem]:
        """Resolve every watchlist entry to its catalog record.

        Titles that fail to load are logged and left out.
        """

        if self._store is None:
            return []
        items: list[FeedItem] = []
        for entry in self._store.watchlist_entries():
            try:
                record = await self._catalog.fetch_by_id(entry.id)
            except ServiceError as exc:
                logger.warning("Failed to load anime %s: %s", entry.id, exc)
                continue
            items.append(self._present(record))
        return items

    # Internals

    async def _load_browse(self, mode: FeedMode) -> None:
        self._state.browse_mode = mode
        await self._reset_and_load(self.LOAD_SLOT, mode, self._fetcher_for(mode))

    def _fetcher_for(self, mode: FeedMode) -> PageFetcher:
        if mode == FeedMode.TOP:
            return self._catalog.fetch_top
        if mode == FeedMode.SEASONAL:
            return self._catalog.fetch_current_season
        if mode == FeedMode.UPCOMING:
            return self._catalog.fetch_upcoming
        if mode == FeedMode.SEARCH:
            query = self._state.active_query
            return lambda page: self._catalog.search_by_text(query, page)
        genre_ids = list(self._state.genre_ids)
        return lambda page: self._catalog.fetch_by_genre_ids(genre_ids, page)

    async def _reset_and_load(self, slot: str, mode: FeedMode, fetch: PageFetcher) -> None:
        request = self._begin(slot, reset=True)
        self._reset_state(mode)
        state = self._state

        def apply(page: CatalogPage) -> None:
            state.items = _merge_unique([], page.records)
            state.has_more = page.has_more

        await self._execute(request, lambda: fetch(1), apply)

    def _reset_state(self, mode: FeedMode) -> None:
        state = self._state
        state.mode = mode
        state.page = 1
        state.items = []
        state.has_more = False
        state.error_message = None
        state.is_loading = True
        logger.debug("Feed reset to %s", mode.value)

    def _begin(self, slot: str, *, reset: bool) -> _Request:
        previous = self._tokens.get(slot)
        if previous is not None:
            previous.cancel()
        token = CancellationToken()
        self._tokens[slot] = token
        if reset:
            self._generation += 1
        return _Request(token=token, generation=self._generation)

    def _is_live(self, request: _Request) -> bool:
        return not request.token.cancelled and request.generation == self._generation

    async def _execute(
        self,
        request: _Request,
        fetch: Callable[[], Awaitable[CatalogPage]],
        apply: Callable[[CatalogPage], None],
    ) -> None:
        try:
            page = await fetch()
        except ServiceError as exc:
            if not self._is_live(request):
                logger.debug("Dropping error from superseded request: %s", exc)
                return
            logger.warning("Feed request failed: %s", exc)
            self._state.is_loading = False
            self._state.error_message = exc.message
            return
        except asyncio.CancelledError:
            if self._is_live(request):
                self._state.is_loading = False
            raise

        if not self._is_live(request):
            logger.debug("Dropping result from superseded request")
            return
        apply(page)
        self._state.is_loading = False

    def _present(self, record: AnimeRecord) -> FeedItem:
        store = self._store
        if store is None:
            return FeedItem(record=record)
        entry = store.get_entry(record.id)
        return FeedItem(
            record=record,
            in_watchlist=store.is_in_watchlist(record.id),
            is_favorite=store.is_favorite(record.id),
            watch_status=entry.watch_status if entry is not None and entry.in_watchlist else None,
            user_rating=store.get_user_rating(record.id),
            watch_progress=store.get_watch_progress(record.id),
        )


def _merge_unique(existing: list[AnimeRecord], incoming: Iterable[AnimeRecord]) -> list[AnimeRecord]:
    """Append ``incoming`` to ``existing`` skipping ids already present."""

    seen = {record.id for record in existing}
    merged = list(existing)
    for record in incoming:
        if record.id in seen:
            continue
        seen.add(record.id)
        merged.append(record)
    return merged
