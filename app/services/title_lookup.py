"""Title search against the external title database and launch-link building."""

from __future__ import annotations

import logging
import re

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import (
    DecodingError,
    InvalidResponseError,
    InvalidURLError,
    NetworkError,
    NoResultsFoundError,
)
from ..models import TitleMatch

logger = logging.getLogger(__name__)

# Characters allowed in a path segment without percent-encoding.
PATH_SEGMENT_RE = re.compile(r"^[A-Za-z0-9\-._~!$&'()*+,;=:@]+$")


def launch_category(title_type: str) -> str:
    """Collapse a title type to the ``movie``/``series`` split players use."""

    if (title_type or "").strip().lower() == "movie":
        return "movie"
    return "series"


def build_launch_url(match: TitleMatch, scheme: str = "stremio") -> str | None:
    """Return ``<scheme>:///detail/<category>/<id>`` or ``None``.

    ``None`` means the identifier cannot be placed in a URL path as-is.
    """

    external_id = (match.id or "").strip()
    if not external_id or not PATH_SEGMENT_RE.match(external_id):
        return None
    return f"{scheme}:///detail/{launch_category(match.type)}/{external_id}"


class TitleLookupClient:
    """Client for the ``/search/titles`` endpoint."""

    _SEARCH_PATH = "/search/titles"

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def search_titles(self, query: str, limit: int = 5) -> list[TitleMatch]:
        """Return matches for ``query`` in the order the service ranks them."""

        normalized = (query or "").strip()
        if not normalized:
            raise InvalidURLError("Cannot search titles with an empty query")

        try:
            response = await self._client.get(
                self._SEARCH_PATH,
                params={"query": normalized, "limit": limit},
                headers={"accept": "application/json"},
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise InvalidURLError() from exc
        except httpx.HTTPError as exc:
            logger.warning("Title search for %s failed: %s", normalized, exc)
            raise NetworkError(exc) from exc

        if response.status_code != 200:
            logger.warning(
                "Title search for %s returned HTTP %s", normalized, response.status_code
            )
            raise InvalidResponseError(
                f"Title search returned HTTP {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise DecodingError() from exc
        if not isinstance(payload, dict):
            raise DecodingError("Title search response is not an object")
        # The service omits ``titles`` entirely when nothing matched.
        titles = payload.get("titles", [])
        if not isinstance(titles, list):
            raise DecodingError("Title search response has no titles list")
        try:
            return [TitleMatch.model_validate(title) for title in titles]
        except ValidationError as exc:
            raise DecodingError(
                f"Failed to decode title search response ({exc.error_count()} errors)"
            ) from exc

    async def resolve_launch_url(self, title: str) -> str:
        """Search for ``title`` and build the launch URL for the best match."""

        matches = await self.search_titles(title, limit=self._settings.title_lookup_limit)
        if not matches:
            raise NoResultsFoundError(f"No matching titles found for {title!r}")
        url = build_launch_url(matches[0], scheme=self._settings.launch_scheme)
        if url is None:
            raise InvalidURLError(f"Cannot build a launch URL for {matches[0].id!r}")
        logger.info("Resolved %s to %s", title, url)
        return url
