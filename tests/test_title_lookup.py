"""Tests for the title-lookup client and launch URL building."""

from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest

from app.config import Settings
from app.errors import (
    DecodingError,
    InvalidResponseError,
    InvalidURLError,
    NetworkError,
    NoResultsFoundError,
)
from app.models import TitleMatch
from app.services.title_lookup import TitleLookupClient, build_launch_url, launch_category


def make_match(title_type: str, title_id: str) -> TitleMatch:
    return TitleMatch(id=title_id, type=title_type, primary_title="Example")


def title_payload(*titles: tuple[str, str, str]) -> dict[str, Any]:
    return {
        "titles": [
            {
                "id": title_id,
                "type": title_type,
                "primaryTitle": name,
                "originalTitle": name,
                "startYear": 1998,
            }
            for title_id, title_type, name in titles
        ]
    }


async def run_with(
    handler: Callable[[httpx.Request], httpx.Response],
    call: Callable[[TitleLookupClient], Any],
    **overrides: Any,
) -> Any:
    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(
        transport=transport, base_url="https://titles.example.com"
    ) as http_client:
        client = TitleLookupClient(Settings(_env_file=None, **overrides), http_client)  # type: ignore[arg-type]
        return await call(client)


@pytest.mark.parametrize(
    ("title_type", "title_id", "expected"),
    [
        ("Movie", "tt123", "stremio:///detail/movie/tt123"),
        ("movie", "tt1", "stremio:///detail/movie/tt1"),
        ("tvSeries", "tt456", "stremio:///detail/series/tt456"),
        ("tvMiniSeries", "tt7", "stremio:///detail/series/tt7"),
        ("tvEpisode", "tt8", "stremio:///detail/series/tt8"),
        ("tvSpecial", "tt9", "stremio:///detail/series/tt9"),
        ("videoGame", "tt10", "stremio:///detail/series/tt10"),
    ],
)
def test_build_launch_url_maps_types(title_type: str, title_id: str, expected: str) -> None:
    assert build_launch_url(make_match(title_type, title_id)) == expected


def test_build_launch_url_rejects_ids_that_break_the_url() -> None:
    assert build_launch_url(make_match("movie", "")) is None
    assert build_launch_url(make_match("movie", "tt 123")) is None
    assert build_launch_url(make_match("movie", "tt1/../2")) is None


def test_build_launch_url_honours_scheme() -> None:
    assert build_launch_url(make_match("movie", "tt1"), scheme="player") == "player:///detail/movie/tt1"


def test_launch_category_defaults_to_series() -> None:
    assert launch_category("") == "series"
    assert launch_category("short") == "series"


@pytest.mark.anyio("asyncio")
async def test_search_titles_sends_query_and_parses_matches() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200, json=title_payload(("tt0213338", "tvSeries", "Cowboy Bebop"))
        )

    matches = await run_with(handler, lambda client: client.search_titles("Cowboy Bebop", 5))

    assert requests[0].url.path == "/search/titles"
    assert requests[0].url.params["query"] == "Cowboy Bebop"
    assert requests[0].url.params["limit"] == "5"
    assert requests[0].headers["accept"] == "application/json"
    assert [match.id for match in matches] == ["tt0213338"]
    assert matches[0].primary_title == "Cowboy Bebop"


@pytest.mark.anyio("asyncio")
async def test_search_titles_without_titles_key_is_empty() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    assert await run_with(handler, lambda client: client.search_titles("nothing")) == []


@pytest.mark.anyio("asyncio")
async def test_search_titles_non_200_is_invalid_response() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": "boom"})

    with pytest.raises(InvalidResponseError):
        await run_with(handler, lambda client: client.search_titles("x"))


@pytest.mark.anyio("asyncio")
async def test_search_titles_shape_mismatch_is_decoding_error() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"titles": [{"id": "tt1"}]})

    with pytest.raises(DecodingError):
        await run_with(handler, lambda client: client.search_titles("x"))


@pytest.mark.anyio("asyncio")
async def test_search_titles_transport_failure_is_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(NetworkError):
        await run_with(handler, lambda client: client.search_titles("x"))


@pytest.mark.anyio("asyncio")
async def test_search_titles_blank_query_is_invalid_url() -> None:
    def handler(_: httpx.Request) -> httpx.Response:  # pragma: no cover - never called
        raise AssertionError("no request expected")

    with pytest.raises(InvalidURLError):
        await run_with(handler, lambda client: client.search_titles("  "))


@pytest.mark.anyio("asyncio")
async def test_resolve_launch_url_uses_first_match() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json=title_payload(
                ("tt0245429", "movie", "Spirited Away"),
                ("tt9999999", "tvSeries", "Spirited Away: Live"),
            ),
        )

    url = await run_with(handler, lambda client: client.resolve_launch_url("Spirited Away"))

    assert url == "stremio:///detail/movie/tt0245429"
    assert requests[0].url.params["limit"] == "5"


@pytest.mark.anyio("asyncio")
async def test_resolve_launch_url_without_matches_fails() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"titles": []})

    with pytest.raises(NoResultsFoundError):
        await run_with(handler, lambda client: client.resolve_launch_url("Obscure"))


@pytest.mark.anyio("asyncio")
async def test_resolve_launch_url_with_unusable_id_fails() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=title_payload(("tt 1", "movie", "Broken")))

    with pytest.raises(InvalidURLError):
        await run_with(handler, lambda client: client.resolve_launch_url("Broken"))


@pytest.mark.anyio("asyncio")
async def test_resolve_launch_url_uses_configured_scheme() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=title_payload(("tt2", "tvSeries", "Show")))

    url = await run_with(
        handler, lambda client: client.resolve_launch_url("Show"), LAUNCH_SCHEME="Player://"
    )

    assert url == "player:///detail/series/tt2"
