"""Entry point for the FastAPI-powered anime feed service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError

from .config import settings
from .database import Database
from .errors import (
    InvalidURLError,
    NoResultsFoundError,
    NotFoundError,
    RateLimitedError,
    ServiceError,
)
from .genres import AVAILABLE_GENRES
from .models import UserAnimeEntry, WatchStatus
from .services.catalog import CatalogClient
from .services.feed import FeedController, FeedState
from .services.title_lookup import TitleLookupClient
from .services.user_state import SQLStateStorage, UserStateStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    timeout = httpx.Timeout(settings.http_timeout_seconds, connect=10.0)
    catalog_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(base_url=str(settings.catalog_api_url), timeout=timeout)
    )
    title_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(base_url=str(settings.title_lookup_api_url), timeout=timeout)
    )
    database = Database(settings.database_url)
    await run_in_threadpool(database.create_all)

    store = await run_in_threadpool(UserStateStore, SQLStateStorage(database))
    catalog = CatalogClient(settings, catalog_http)
    feed = FeedController(catalog, store)

    fastapi_app.state.database = database
    fastapi_app.state.store = store
    fastapi_app.state.feed = feed
    fastapi_app.state.title_lookup = TitleLookupClient(settings, title_http)

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        feed.cancel_pending()
        database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Anime catalog feed with watchlist tracking",
        version=settings.app_version,
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


class WatchlistAddRequest(BaseModel):
    status: WatchStatus = WatchStatus.PLAN_TO_WATCH


class WatchlistUpdateRequest(BaseModel):
    status: WatchStatus | None = None
    progress: int | None = Field(default=None, ge=0)
    rating: int | None = None
    notes: str | None = None


def _get_state(fastapi_app: FastAPI, name: str) -> Any:
    value = getattr(fastapi_app.state, name, None)
    if value is None:
        raise RuntimeError(f"{name} not initialised")
    return value


def _http_error(exc: ServiceError) -> HTTPException:
    if isinstance(exc, (NotFoundError, NoResultsFoundError)):
        return HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, RateLimitedError):
        return HTTPException(status_code=429, detail=exc.message)
    if isinstance(exc, InvalidURLError):
        return HTTPException(status_code=400, detail=exc.message)
    return HTTPException(status_code=502, detail=exc.message)


def _split_genres(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def register_routes(fastapi_app: FastAPI) -> None:
    def feed_controller() -> FeedController:
        return _get_state(fastapi_app, "feed")

    def user_store() -> UserStateStore:
        return _get_state(fastapi_app, "store")

    def title_lookup() -> TitleLookupClient:
        return _get_state(fastapi_app, "title_lookup")

    def feed_payload(state: FeedState, controller: FeedController) -> dict[str, Any]:
        return {
            "mode": state.mode.value,
            "page": state.page,
            "phase": state.phase.value,
            "hasMore": state.has_more,
            "error": state.error_message,
            "items": [
                item.model_dump(mode="json") for item in controller.presented_items()
            ],
        }

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/genres")
    async def genres() -> dict[str, list[str]]:
        return {"genres": list(AVAILABLE_GENRES)}

    @fastapi_app.get("/api/feed")
    async def feed(
        mode: str | None = None, q: str | None = None, genres: str | None = None
    ) -> dict[str, Any]:
        controller = feed_controller()
        if q is not None:
            await controller.submit_search(q)
        elif genres is not None:
            await controller.apply_genre_filter(_split_genres(genres))
        elif mode is not None:
            try:
                await controller.switch_mode(mode)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        else:
            await controller.load_initial()
        return feed_payload(controller.state, controller)

    @fastapi_app.post("/api/feed/more")
    async def feed_more() -> dict[str, Any]:
        controller = feed_controller()
        await controller.load_more()
        return feed_payload(controller.state, controller)

    @fastapi_app.get("/api/feed/filter")
    async def feed_filter(q: str = "", genres: str | None = None) -> dict[str, Any]:
        controller = feed_controller()
        items = controller.presented_items(q, _split_genres(genres))
        return {"items": [item.model_dump(mode="json") for item in items]}

    @fastapi_app.get("/api/anime/{anime_id}")
    async def anime_details(anime_id: int) -> dict[str, Any]:
        try:
            record = await feed_controller().fetch_details(anime_id)
        except ServiceError as exc:
            raise _http_error(exc) from exc
        return record.model_dump(mode="json")

    @fastapi_app.get("/api/anime/{anime_id}/recommendations")
    async def anime_recommendations(anime_id: int) -> dict[str, Any]:
        try:
            records = await feed_controller().fetch_recommendations(anime_id)
        except ServiceError as exc:
            raise _http_error(exc) from exc
        return {"items": [record.model_dump(mode="json") for record in records]}

    @fastapi_app.get("/api/anime/{anime_id}/launch")
    async def anime_launch(anime_id: int, title: str | None = None) -> dict[str, str]:
        try:
            if not title:
                title = (await feed_controller().fetch_details(anime_id)).title
            url = await title_lookup().resolve_launch_url(title)
        except ServiceError as exc:
            raise _http_error(exc) from exc
        return {"url": url}

    @fastapi_app.get("/api/watchlist")
    def watchlist(status: WatchStatus | None = None) -> dict[str, Any]:
        store = user_store()
        entries = (
            store.entries_by_status(status) if status is not None else store.watchlist_entries()
        )
        return {"entries": [entry.model_dump(mode="json") for entry in entries]}

    @fastapi_app.get("/api/watchlist/records")
    async def watchlist_records() -> dict[str, Any]:
        items = await feed_controller().load_watchlist_records()
        return {"items": [item.model_dump(mode="json") for item in items]}

    @fastapi_app.post("/api/watchlist/{anime_id}")
    async def add_to_watchlist(anime_id: int, request: Request) -> dict[str, Any]:
        try:
            body = await request.json()
        except ValueError:
            body = {}
        try:
            payload = WatchlistAddRequest.model_validate(body or {})
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.errors()) from exc
        try:
            record = await feed_controller().fetch_details(anime_id)
        except ServiceError as exc:
            raise _http_error(exc) from exc
        entry = await run_in_threadpool(user_store().add_to_watchlist, record, payload.status)
        return entry.model_dump(mode="json")

    @fastapi_app.patch("/api/watchlist/{anime_id}")
    async def update_watchlist(anime_id: int, request: Request) -> dict[str, Any]:
        try:
            payload = WatchlistUpdateRequest.model_validate(await request.json())
        except (ValueError, ValidationError) as exc:
            raise HTTPException(status_code=400, detail="Invalid payload") from exc
        store = user_store()

        def apply_update() -> UserAnimeEntry | None:
            if payload.status is not None:
                store.update_watch_status(anime_id, payload.status)
            if payload.progress is not None:
                store.update_watch_progress(anime_id, payload.progress)
            if payload.rating is not None:
                store.set_user_rating(anime_id, payload.rating)
            if payload.notes is not None:
                store.update_notes(anime_id, payload.notes)
            return store.get_entry(anime_id)

        entry = await run_in_threadpool(apply_update)
        if entry is None:
            raise HTTPException(status_code=404, detail="Entry not found")
        return entry.model_dump(mode="json")

    @fastapi_app.delete("/api/watchlist/{anime_id}")
    def remove_from_watchlist(anime_id: int) -> dict[str, Any]:
        user_store().remove_from_watchlist(anime_id)
        return {"id": anime_id, "inWatchlist": False}

    @fastapi_app.post("/api/favorites/{anime_id}/toggle")
    def toggle_favorite(anime_id: int) -> dict[str, Any]:
        return {"id": anime_id, "favorite": user_store().toggle_favorite(anime_id)}

    @fastapi_app.get("/api/stats")
    def stats() -> dict[str, int]:
        return user_store().completion_stats().model_dump()

    @fastapi_app.get("/api/export")
    def export_state() -> dict[str, Any]:
        return user_store().export_all()

    @fastapi_app.post("/api/import")
    async def import_state(request: Request) -> dict[str, str]:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid payload") from exc
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        await run_in_threadpool(user_store().import_all, payload)
        return {"status": "ok"}

    @fastapi_app.delete("/api/state")
    def clear_state() -> dict[str, str]:
        user_store().clear_all()
        return {"status": "ok"}


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
