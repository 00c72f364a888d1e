from __future__ import annotations

import asyncio
from typing import Any, Iterable, Mapping

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import register_routes
from app.services.catalog import CatalogClient
from app.services.feed import FeedController
from app.services.title_lookup import TitleLookupClient
from app.services.user_state import MemoryStateStorage, UserStateStore


def raw_anime(anime_id: int, title: str, genres: list[str] | None = None) -> dict[str, Any]:
    return {
        "mal_id": anime_id,
        "title": title,
        "genres": [{"mal_id": 0, "name": name} for name in genres or []],
        "episodes": 12,
    }


CATALOG = {
    "/v4/seasons/now": {
        "data": [raw_anime(1, "Frieren", ["Adventure"]), raw_anime(2, "Dandadan", ["Comedy"])],
        "pagination": {"has_next_page": True},
    },
    "/v4/top/anime": {"data": [raw_anime(3, "Steins;Gate")]},
    "/v4/anime/1": {"data": raw_anime(1, "Frieren", ["Adventure"])},
    "/v4/anime/1/recommendations": {
        "data": [{"entry": raw_anime(1, "Frieren")}, {"entry": raw_anime(5, "Mushishi")}]
    },
}


def catalog_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/v4/seasons/now" and request.url.params.get("page") == "2":
        return httpx.Response(200, json={"data": [raw_anime(4, "Apothecary Diaries")]})
    if path == "/v4/anime" and "q" in request.url.params:
        return httpx.Response(200, json={"data": [raw_anime(9, request.url.params["q"])]})
    if path in CATALOG:
        return httpx.Response(200, json=CATALOG[path])
    if path == "/v4/anime/429":
        return httpx.Response(429)
    return httpx.Response(404, json={"status": 404})


def title_handler(request: httpx.Request) -> httpx.Response:
    query = request.url.params.get("query")
    if query == "Frieren":
        return httpx.Response(
            200,
            json={"titles": [{"id": "tt22248376", "type": "tvSeries", "primaryTitle": "Frieren"}]},
        )
    return httpx.Response(200, json={"titles": []})


def build_app(storage: MemoryStateStorage | None = None) -> tuple[FastAPI, UserStateStore]:
    settings = Settings(_env_file=None, CATALOG_RATE_LIMIT_INTERVAL=0)  # type: ignore[arg-type]
    catalog_http = httpx.AsyncClient(
        transport=httpx.MockTransport(catalog_handler), base_url="https://catalog.test/v4"
    )
    title_http = httpx.AsyncClient(
        transport=httpx.MockTransport(title_handler), base_url="https://titles.test"
    )
    store = UserStateStore(storage or MemoryStateStorage())

    app = FastAPI()
    register_routes(app)
    app.state.store = store
    app.state.feed = FeedController(CatalogClient(settings, catalog_http), store)
    app.state.title_lookup = TitleLookupClient(settings, title_http)
    return app, store


def test_healthcheck() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        response = client.get("/healthz")

    assert response.json() == {"status": "ok"}


def test_genres_lists_selectable_names() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        response = client.get("/api/genres")

    genres = response.json()["genres"]
    assert len(genres) == 16
    assert genres[0] == "Action"


def test_feed_loads_and_pages() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        first = client.get("/api/feed").json()
        more = client.post("/api/feed/more").json()

    assert first["mode"] == "seasonal"
    assert first["hasMore"] is True
    assert [item["record"]["title"] for item in first["items"]] == ["Frieren", "Dandadan"]
    assert [item["record"]["id"] for item in more["items"]] == [1, 2, 4]
    assert more["hasMore"] is False


def test_feed_mode_search_and_bad_mode() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        top = client.get("/api/feed", params={"mode": "top"}).json()
        search = client.get("/api/feed", params={"q": "Akira"}).json()
        bad = client.get("/api/feed", params={"mode": "sideways"})

    assert [item["record"]["id"] for item in top["items"]] == [3]
    assert search["mode"] == "search"
    assert search["items"][0]["record"]["title"] == "Akira"
    assert bad.status_code == 400


def test_local_filter_uses_loaded_items() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        client.get("/api/feed")
        response = client.get("/api/feed/filter", params={"genres": "Comedy"})

    assert [item["record"]["id"] for item in response.json()["items"]] == [2]


def test_anime_details_and_errors() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        found = client.get("/api/anime/1")
        missing = client.get("/api/anime/77")
        limited = client.get("/api/anime/429")
        recommendations = client.get("/api/anime/1/recommendations")

    assert found.json()["title"] == "Frieren"
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Anime not found"
    assert limited.status_code == 429
    assert [item["id"] for item in recommendations.json()["items"]] == [5]


def test_launch_url_resolves_from_catalog_title() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        response = client.get("/api/anime/1/launch")
        missing = client.get("/api/anime/1/launch", params={"title": "Nothing"})

    assert response.json() == {"url": "stremio:///detail/series/tt22248376"}
    assert missing.status_code == 404


def test_watchlist_lifecycle() -> None:
    app, store = build_app()

    with TestClient(app) as client:
        added = client.post("/api/watchlist/1", json={"status": "watching"})
        patched = client.patch(
            "/api/watchlist/1", json={"progress": 3, "rating": 9, "notes": "Great"}
        )
        favorite = client.post("/api/favorites/1/toggle")
        listing = client.get("/api/watchlist", params={"status": "watching"})
        records = client.get("/api/watchlist/records")
        stats = client.get("/api/stats")
        removed = client.delete("/api/watchlist/1")

    assert added.status_code == 200
    assert added.json()["watch_status"] == "watching"
    assert patched.json()["watch_progress"] == 3
    assert patched.json()["user_rating"] == 9
    assert patched.json()["notes"] == "Great"
    assert favorite.json() == {"id": 1, "favorite": True}
    assert [entry["id"] for entry in listing.json()["entries"]] == [1]
    assert records.json()["items"][0]["is_favorite"] is True
    assert stats.json() == {"completed": 0, "watching": 1, "plan_to_watch": 0, "total": 1}
    assert removed.json() == {"id": 1, "inWatchlist": False}
    assert store.is_in_watchlist(1) is False
    assert store.is_favorite(1) is True


def test_adding_unknown_title_fails() -> None:
    app, store = build_app()

    with TestClient(app) as client:
        response = client.post("/api/watchlist/77")

    assert response.status_code == 404
    assert store.watchlist_entries() == []


def test_patch_rejects_negative_progress_and_unknown_entries() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        negative = client.patch("/api/watchlist/1", json={"progress": -1})
        unknown = client.patch("/api/watchlist/1", json={"status": "completed"})

    assert negative.status_code == 400
    assert unknown.status_code == 404


def test_export_import_and_clear() -> None:
    app, store = build_app()
    store.toggle_favorite(5)
    store.set_user_rating(5, 7)

    with TestClient(app) as client:
        exported = client.get("/api/export").json()
        client.delete("/api/state")
        cleared = client.get("/api/export").json()
        imported = client.post("/api/import", json=exported)
        invalid = client.post("/api/import", json=[1, 2])

    assert exported["favorites"] == [5]
    assert exported["exportDate"].endswith("Z")
    assert cleared["favorites"] == []
    assert imported.json() == {"status": "ok"}
    assert invalid.status_code == 400
    assert store.favorite_ids() == [5]
    assert store.get_user_rating(5) == 7


class LoopAwareStorage(MemoryStateStorage):
    """Remembers whether each write happened on a thread running an event loop."""

    def __init__(self) -> None:
        super().__init__()
        self.writes_on_loop: list[bool] = []

    def _on_loop(self) -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def write_many(self, values: Mapping[str, str]) -> None:
        self.writes_on_loop.append(self._on_loop())
        super().write_many(values)

    def delete_many(self, keys: Iterable[str]) -> None:
        self.writes_on_loop.append(self._on_loop())
        super().delete_many(keys)


def test_state_writes_run_off_the_event_loop() -> None:
    storage = LoopAwareStorage()
    app, _ = build_app(storage)

    with TestClient(app) as client:
        client.post("/api/watchlist/1", json={"status": "watching"})
        client.patch("/api/watchlist/1", json={"progress": 2})
        client.post("/api/favorites/1/toggle")
        client.post("/api/import", json={"ratings": {"1": 8}})
        client.delete("/api/watchlist/1")
        client.delete("/api/state")

    assert len(storage.writes_on_loop) == 6
    assert not any(storage.writes_on_loop)
