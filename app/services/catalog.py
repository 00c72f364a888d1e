"""Client for the remote anime catalog (Jikan v4 REST API)."""

from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx

from ..config import Settings
from ..errors import (
    DecodingError,
    InvalidResponseError,
    InvalidURLError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    ServerError,
)
from ..models import AnimeRecord, CatalogPage, DecodedRecord, decode_anime_record
from .rate_limit import MinimumIntervalLimiter

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404
HTTP_TOO_MANY_REQUESTS = 429

SEASONS = ("winter", "spring", "summer", "fall")


class CatalogClient:
    """Rate-limited wrapper around the catalog's listing and search endpoints."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        limiter: MinimumIntervalLimiter | None = None,
    ):
        self._settings = settings
        self._client = http_client
        self._limiter = limiter or MinimumIntervalLimiter(
            settings.catalog_rate_limit_interval
        )
        self._page_size = settings.catalog_page_size

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": self._settings.user_agent,
        }

    async def fetch_top(self, page: int = 1) -> CatalogPage:
        """Fetch the top-rated listing."""

        return await self._fetch_page(
            "/top/anime", {"page": page, "limit": self._page_size}
        )

    async def fetch_current_season(self, page: int = 1) -> CatalogPage:
        """Fetch titles airing this season."""

        return await self._fetch_page(
            "/seasons/now", {"page": page, "limit": self._page_size}
        )

    async def fetch_upcoming(self, page: int = 1) -> CatalogPage:
        """Fetch titles announced for upcoming seasons."""

        return await self._fetch_page(
            "/seasons/upcoming", {"page": page, "limit": self._page_size}
        )

    async def fetch_season(self, year: int, season: str, page: int = 1) -> CatalogPage:
        """Fetch the listing for a specific ``year`` and ``season``."""

        normalized = (season or "").strip().lower()
        if normalized not in SEASONS:
            raise InvalidURLError(f"Unknown season: {season!r}")
        return await self._fetch_page(
            f"/seasons/{int(year)}/{normalized}",
            {"page": page, "limit": self._page_size},
        )

    async def search_by_text(self, query: str, page: int = 1) -> CatalogPage:
        """Search by free text; a blank query yields an empty page offline."""

        normalized = (query or "").strip()
        if not normalized:
            return CatalogPage(records=[], has_more=False)
        return await self._fetch_page(
            "/anime",
            {
                "q": normalized,
                "page": page,
                "limit": self._page_size,
                "order_by": "popularity",
                "sort": "asc",
            },
        )

    async def fetch_by_genre_ids(self, genre_ids: Iterable[int], page: int = 1) -> CatalogPage:
        """Fetch titles tagged with every genre in ``genre_ids``."""

        ids = [int(genre_id) for genre_id in genre_ids]
        if not ids:
            return CatalogPage(records=[], has_more=False)
        return await self._fetch_page(
            "/anime",
            {
                "genres": ",".join(str(genre_id) for genre_id in ids),
                "page": page,
                "limit": self._page_size,
                "order_by": "popularity",
                "sort": "asc",
            },
        )

    async def fetch_by_id(self, anime_id: int) -> AnimeRecord:
        """Fetch a single record by its catalog id."""

        endpoint = f"/anime/{int(anime_id)}"
        payload = await self._request(endpoint)
        if not isinstance(payload, dict) or "data" not in payload:
            raise DecodingError(f"Unexpected payload shape from {endpoint}")
        result = decode_anime_record(payload["data"])
        if not isinstance(result, DecodedRecord):
            logger.warning("Failed to decode %s: %s", endpoint, result.reason)
            raise DecodingError(f"Failed to decode record from {endpoint}")
        return result.record

    async def fetch_recommendations(self, anime_id: int) -> CatalogPage:
        """Fetch titles the catalog's users recommend alongside ``anime_id``."""

        endpoint = f"/anime/{int(anime_id)}/recommendations"
        payload = await self._request(endpoint)
        data = self._extract_data_list(payload, endpoint)
        entries = [
            item.get("entry") if isinstance(item, dict) else None for item in data
        ]
        return CatalogPage(
            records=self._decode_records(entries, endpoint),
            has_more=self._has_next_page(payload),
        )

    async def _fetch_page(self, endpoint: str, params: dict[str, Any]) -> CatalogPage:
        payload = await self._request(endpoint, params)
        data = self._extract_data_list(payload, endpoint)
        return CatalogPage(
            records=self._decode_records(data, endpoint),
            has_more=self._has_next_page(payload),
        )

    async def _request(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        await self._limiter.acquire()
        try:
            response = await self._client.get(
                endpoint, params=params, headers=self._headers()
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise InvalidURLError(f"Invalid URL for catalog request {endpoint}") from exc
        except httpx.HTTPError as exc:
            logger.warning("Catalog request %s failed: %s", endpoint, exc)
            raise NetworkError(exc) from exc

        status = response.status_code
        if status == HTTP_TOO_MANY_REQUESTS:
            raise RateLimitedError()
        if status == HTTP_NOT_FOUND:
            raise NotFoundError()
        if status >= 400:
            logger.warning("Catalog request %s returned HTTP %s", endpoint, status)
            raise ServerError(status)
        if not 200 <= status < 300:
            raise InvalidResponseError(
                f"Unexpected HTTP {status} from catalog endpoint {endpoint}"
            )

        try:
            return response.json()
        except ValueError as exc:
            logger.warning("Non-JSON catalog response for %s", endpoint)
            raise DecodingError() from exc

    @staticmethod
    def _extract_data_list(payload: Any, endpoint: str) -> list[Any]:
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            raise DecodingError(f"Unexpected payload shape from {endpoint}")
        return payload["data"]

    @staticmethod
    def _has_next_page(payload: dict[str, Any]) -> bool:
        pagination = payload.get("pagination")
        if not isinstance(pagination, dict):
            return False
        return pagination.get("has_next_page") is True

    @staticmethod
    def _decode_records(items: list[Any], endpoint: str) -> list[AnimeRecord]:
        records: list[AnimeRecord] = []
        for item in items:
            result = decode_anime_record(item)
            if isinstance(result, DecodedRecord):
                records.append(result.record)
            else:
                logger.warning("Skipping catalog record from %s: %s", endpoint, result.reason)
        return records
