"""
TMDb Adapter
============

Movie lookups against The Movie Database search API.
Requires TMDB_API_KEY (or custom_config.api_key).
"""

from __future__ import annotations

import os
from datetime import date
from typing import Any

import httpx

from shelf_agent.catalog.adapters.base import CatalogAdapter
from shelf_agent.core.enums import ShelfKind
from shelf_agent.core.schema import CatalogCandidate, ItemDescription

SEARCH_URL = "https://api.themoviedb.org/3/search/movie"
POSTER_URL = "https://image.tmdb.org/t/p/w500{path}"


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


class TmdbAdapter(CatalogAdapter):
    """Catalog adapter for movies backed by themoviedb.org."""

    ADAPTER_NAME = "tmdb"
    ADAPTER_VERSION = "1.0.0"
    DEFAULT_SHELF_TYPES = ("movie", "movies", "film", "dvd", "bluray")

    @property
    def api_key(self) -> str:
        return self.config.custom_config.get("api_key") or os.environ.get("TMDB_API_KEY", "")

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _search(
        self,
        client: httpx.AsyncClient,
        item: ItemDescription,
        limit: int,
        platform: str | None = None,
    ) -> list[CatalogCandidate]:
        params: dict[str, Any] = {
            "api_key": self.api_key,
            "query": item.title,
            "include_adult": "false",
        }
        if item.year:
            params["year"] = item.year

        response = await self._request(client, "GET", SEARCH_URL, params=params)
        results = (response.json().get("results") or [])[:limit]
        max_popularity = max((r.get("popularity") or 0.0 for r in results), default=0.0)

        candidates = []
        for result in results:
            title = result.get("title") or result.get("original_title")
            if not title:
                continue
            release = _parse_date(result.get("release_date"))
            popularity = result.get("popularity") or 0.0
            candidates.append(
                CatalogCandidate(
                    provider=self.name,
                    title=title,
                    kind=ShelfKind.MOVIE,
                    year=release.year if release else None,
                    release_date=release,
                    format=item.format,
                    description=result.get("overview") or None,
                    identifiers={"tmdb": result.get("id")},
                    images=[POSTER_URL.format(path=result["poster_path"])]
                    if result.get("poster_path")
                    else [],
                    match_score=popularity / max_popularity if max_popularity else 0.0,
                )
            )
        return candidates
