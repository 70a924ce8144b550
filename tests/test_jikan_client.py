"""Tests for the Jikan API client helpers."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from app.config import Settings
from app.errors import ExternalCatalogError
from app.services.jikan import JikanClient


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base: dict[str, Any] = {"SECRET_KEY": "test-secret"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def _anime(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "mal_id": 5114,
        "title": "Fullmetal Alchemist: Brotherhood",
        "images": {
            "jpg": {
                "image_url": "https://cdn.example.com/small.jpg",
                "large_image_url": "https://cdn.example.com/large.jpg",
            }
        },
        "synopsis": "Two brothers search for the Philosopher's Stone.",
        "genres": [{"name": "Action"}, {"name": "Adventure"}],
        "score": 9.1,
        "episodes": 64,
        "status": "Finished Airing",
        "aired": {"from": "2009-04-05T00:00:00+00:00"},
        "studios": [{"name": "Bones"}],
        "rating": "R - 17+ (violence & profanity)",
    }
    payload.update(overrides)
    return payload


@pytest.mark.anyio("asyncio")
async def test_search_maps_results_to_catalog_fields() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={"data": [_anime(), _anime(mal_id=1, title="", rating=None), "junk"]},
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(
        transport=transport, base_url="https://api.example.com/v4"
    ) as http_client:
        client = JikanClient(build_settings(JIKAN_SEARCH_LIMIT=3), http_client)
        results = await client.search("fullmetal")

    assert requests[0].url.path == "/v4/anime"
    assert requests[0].url.params["q"] == "fullmetal"
    assert requests[0].url.params["limit"] == "3"

    assert len(results) == 1
    item = results[0]
    assert item.external_id == "5114"
    assert item.image_url == "https://cdn.example.com/large.jpg"
    assert item.genres == ["Action", "Adventure"]
    assert item.rating == pytest.approx(9.1)
    assert item.season_count == 1
    assert item.episode_count == 64
    assert item.status == "finished"
    assert item.release_year == 2009
    assert item.studio == "Bones"
    assert item.content_rating == "R"


@pytest.mark.anyio("asyncio")
async def test_fetch_applies_defaults_for_sparse_records() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        sparse = _anime(
            images={"jpg": {"image_url": "https://cdn.example.com/small.jpg"}},
            genres=[],
            score=None,
            episodes=None,
            status="Currently Airing",
            aired={},
            year=2023,
            studios=[],
            rating="Rx - Hentai",
        )
        return httpx.Response(200, json={"data": sparse})

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com/v4"
    ) as http_client:
        item = await JikanClient(build_settings(), http_client).fetch("5114")

    assert item is not None
    assert item.image_url == "https://cdn.example.com/small.jpg"
    assert item.genres == []
    assert item.rating == 0
    assert item.episode_count == 1
    assert item.status == "airing"
    assert item.release_year == 2023
    assert item.studio == "Unknown"
    assert item.content_rating == "NC-17"


@pytest.mark.anyio("asyncio")
async def test_fetch_returns_none_for_missing_anime() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"status": 404, "message": "Not Found"})

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com/v4"
    ) as http_client:
        assert await JikanClient(build_settings(), http_client).fetch("999999") is None


@pytest.mark.anyio("asyncio")
async def test_server_errors_raise_external_catalog_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="rate limited")

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com/v4"
    ) as http_client:
        client = JikanClient(build_settings(), http_client)
        with pytest.raises(ExternalCatalogError):
            await client.search("naruto")


@pytest.mark.anyio("asyncio")
async def test_transport_errors_raise_external_catalog_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.example.com/v4"
    ) as http_client:
        with pytest.raises(ExternalCatalogError):
            await JikanClient(build_settings(), http_client).fetch("1")


@pytest.mark.parametrize(
    ("external", "expected"),
    [
        ("Currently Airing", "airing"),
        ("Finished Airing", "finished"),
        ("Not yet aired", "announced"),
        ("On Hiatus", "on_hiatus"),
        ("Something New", "finished"),
        (None, "finished"),
    ],
)
def test_status_mapping(external, expected) -> None:
    assert JikanClient.map_status(external) == expected


@pytest.mark.parametrize(
    ("external", "expected"),
    [
        ("G - All Ages", "G"),
        ("PG - Children", "PG"),
        ("PG-13 - Teens 13 or older", "PG-13"),
        ("R+ - Mild Nudity", "R"),
        ("Rx - Hentai", "NC-17"),
        ("Unrated", "PG-13"),
        (None, "PG-13"),
    ],
)
def test_content_rating_mapping(external, expected) -> None:
    assert JikanClient.map_content_rating(external) == expected
