"""Client for the Jikan (MyAnimeList) public API."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import ExternalCatalogError
from ..models import ContentItemCreate

logger = logging.getLogger(__name__)

STATUS_MAP: dict[str, str] = {
    "Airing": "airing",
    "Currently Airing": "airing",
    "Finished Airing": "finished",
    "Complete": "finished",
    "Not yet aired": "announced",
    "Upcoming": "announced",
    "On Hiatus": "on_hiatus",
}

CONTENT_RATING_MAP: dict[str, str] = {
    "G - All Ages": "G",
    "PG - Children": "PG",
    "PG-13 - Teens 13 or older": "PG-13",
    "R - 17+ (violence & profanity)": "R",
    "R+ - Mild Nudity": "R",
    "Rx - Hentai": "NC-17",
}

DEFAULT_STATUS = "finished"
DEFAULT_CONTENT_RATING = "PG-13"


class JikanClient:
    """Search and fetch anime metadata, normalised to catalog fields."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def search(self, title: str) -> list[ContentItemCreate]:
        """Return up to the configured number of candidates for ``title``."""

        params = {"q": title, "limit": self._settings.jikan_search_limit}
        payload = await self._get_json("/anime", params=params)
        if payload is None:
            return []
        results = payload.get("data") or []
        if not isinstance(results, list):
            return []

        candidates: list[ContentItemCreate] = []
        for raw in results:
            if not isinstance(raw, dict):
                continue
            candidate = self._to_content(raw)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    async def fetch(self, external_id: str) -> ContentItemCreate | None:
        """Return the anime with MyAnimeList id ``external_id`` if it exists."""

        payload = await self._get_json(f"/anime/{external_id}")
        if payload is None:
            return None
        raw = payload.get("data")
        if not isinstance(raw, dict):
            return None
        return self._to_content(raw)

    async def _get_json(
        self, path: str, *, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            logger.warning("Jikan request to %s failed: %s", path, exc)
            raise ExternalCatalogError(
                "Failed to fetch data from external API"
            ) from exc

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning(
                "Jikan request to %s returned %s: %s",
                path,
                response.status_code,
                response.text,
            )
            raise ExternalCatalogError("Failed to fetch data from external API")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalCatalogError("External API returned invalid JSON") from exc
        if not isinstance(payload, dict):
            return None
        return payload

    def _to_content(self, raw: dict[str, Any]) -> ContentItemCreate | None:
        mal_id = raw.get("mal_id")
        title = raw.get("title")
        if mal_id is None or not title:
            return None

        images = raw.get("images") if isinstance(raw.get("images"), dict) else {}
        jpg = images.get("jpg") if isinstance(images.get("jpg"), dict) else {}
        studios = raw.get("studios") or []
        studio = "Unknown"
        if studios and isinstance(studios[0], dict) and studios[0].get("name"):
            studio = str(studios[0]["name"])

        data = {
            "external_id": str(mal_id),
            "title": str(title),
            "image_url": jpg.get("large_image_url") or jpg.get("image_url") or "",
            "synopsis": raw.get("synopsis") or "",
            "genres": [
                str(genre["name"])
                for genre in raw.get("genres") or []
                if isinstance(genre, dict) and genre.get("name")
            ],
            "rating": min(float(raw.get("score") or 0), 10.0),
            "season_count": raw.get("seasons") or 1,
            "episode_count": raw.get("episodes") or 1,
            "status": self.map_status(raw.get("status")),
            "release_year": self._release_year(raw),
            "studio": studio,
            "content_rating": self.map_content_rating(raw.get("rating")),
        }
        try:
            return ContentItemCreate.model_validate(data)
        except ValidationError:
            logger.warning("Skipping malformed Jikan entry %s", mal_id)
            return None

    @staticmethod
    def map_status(external_status: str | None) -> str:
        if not external_status:
            return DEFAULT_STATUS
        return STATUS_MAP.get(external_status, DEFAULT_STATUS)

    @staticmethod
    def map_content_rating(external_rating: str | None) -> str:
        if not external_rating:
            return DEFAULT_CONTENT_RATING
        return CONTENT_RATING_MAP.get(external_rating, DEFAULT_CONTENT_RATING)

    @staticmethod
    def _release_year(raw: dict[str, Any]) -> int:
        aired = raw.get("aired") or {}
        start = aired.get("from") if isinstance(aired, dict) else None
        if isinstance(start, str) and len(start) >= 4:
            try:
                return int(start[:4])
            except ValueError:
                pass
        year = raw.get("year")
        if isinstance(year, int):
            return year
        return 0
