"""
IGDB Adapter
============

Video game lookups against the IGDB v4 API. Authenticates with a Twitch
client-credentials token (IGDB_CLIENT_ID / IGDB_CLIENT_SECRET).

First-pass queries never filter on category, so remakes and ports are
returned alongside the original and demoted during ranking. A platform
filter is only appended on the retry after an empty first pass.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import UTC, datetime
from typing import Any

import httpx

from shelf_agent.catalog.adapters.base import CatalogAdapter, ProviderError
from shelf_agent.core.enums import ShelfKind
from shelf_agent.core.schema import CatalogCandidate, ItemDescription

logger = logging.getLogger(__name__)

TOKEN_URL = "https://id.twitch.tv/oauth2/token"
GAMES_URL = "https://api.igdb.com/v4/games"
COVER_URL = "https://images.igdb.com/igdb/image/upload/t_cover_big/{image_id}.jpg"

GAME_FIELDS = ",".join(
    [
        "name",
        "summary",
        "first_release_date",
        "category",
        "version_parent",
        "parent_game",
        "platforms.name",
        "platforms.abbreviation",
        "involved_companies.company.name",
        "involved_companies.developer",
        "involved_companies.publisher",
        "cover.image_id",
        "genres.name",
    ]
)

# IGDB game category codes
CATEGORY_NAMES: dict[int, str] = {
    0: "main_game",
    1: "dlc_addon",
    2: "expansion",
    3: "bundle",
    4: "standalone_expansion",
    5: "mod",
    6: "episode",
    7: "season",
    8: "remake",
    9: "remaster",
    10: "expanded_game",
    11: "port",
    12: "fork",
    13: "pack",
    14: "update",
}

# Refresh tokens this many seconds before IGDB says they expire
TOKEN_EXPIRY_MARGIN = 60


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def build_query(title: str, limit: int, platform: str | None = None) -> str:
    """
    Build an IGDB apicalypse query body.

    Args:
        title: Search text.
        limit: Maximum number of results.
        platform: Optional platform name or abbreviation filter.
    """
    lines = [f'search "{_escape(title)}";', f"fields {GAME_FIELDS};"]
    if platform:
        p = _escape(platform)
        lines.append(
            f'where platforms.name ~ *"{p}"* | release_dates.platform.abbreviation ~ *"{p}"*;'
        )
    lines.append(f"limit {limit};")
    return "\n".join(lines)


class IgdbAdapter(CatalogAdapter):
    """Catalog adapter for video games backed by api.igdb.com."""

    ADAPTER_NAME = "igdb"
    ADAPTER_VERSION = "1.0.0"
    DEFAULT_SHELF_TYPES = ("game", "games", "videogame")
    SUPPORTS_PLATFORM_FILTER = True

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @property
    def client_id(self) -> str:
        return self.config.custom_config.get("client_id") or os.environ.get("IGDB_CLIENT_ID", "")

    @property
    def client_secret(self) -> str:
        return self.config.custom_config.get("client_secret") or os.environ.get(
            "IGDB_CLIENT_SECRET", ""
        )

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def _get_token(self, client: httpx.AsyncClient) -> str:
        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token

            response = await self._request(
                client,
                "POST",
                TOKEN_URL,
                params={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "client_credentials",
                },
            )
            payload = response.json()
            token = payload.get("access_token")
            if not token:
                raise ProviderError("igdb: token response did not include an access token")

            expires_in = float(payload.get("expires_in", 3600))
            self._token = token
            self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
            logger.info("igdb: obtained access token")
            return token

    async def _search(
        self,
        client: httpx.AsyncClient,
        item: ItemDescription,
        limit: int,
        platform: str | None = None,
    ) -> list[CatalogCandidate]:
        token = await self._get_token(client)
        try:
            response = await self._request(
                client,
                "POST",
                GAMES_URL,
                content=build_query(item.title, limit, platform),
                headers={
                    "Client-ID": self.client_id,
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
            )
        except ProviderError:
            # Token may have been revoked; fetch a fresh one next time
            self._token = None
            raise

        games = response.json() or []
        return [
            candidate
            for position, game in enumerate(games)
            if (candidate := self._to_candidate(game, item, position, len(games))) is not None
        ]

    def _to_candidate(
        self,
        game: dict[str, Any],
        item: ItemDescription,
        position: int,
        total: int,
    ) -> CatalogCandidate | None:
        title = game.get("name")
        if not title:
            return None

        companies = game.get("involved_companies") or []
        developers = [
            c["company"]["name"] for c in companies if c.get("developer") and c.get("company")
        ]
        publishers = [
            c["company"]["name"] for c in companies if c.get("publisher") and c.get("company")
        ]

        release = None
        if game.get("first_release_date"):
            release = datetime.fromtimestamp(game["first_release_date"], UTC).date()

        category = game.get("category")
        parent = game.get("version_parent") or game.get("parent_game")
        platforms = [p.get("name") for p in game.get("platforms") or [] if p.get("name")]
        cover = game.get("cover") or {}

        return CatalogCandidate(
            provider=self.name,
            title=title,
            kind=ShelfKind.GAME,
            creators=developers or publishers,
            year=release.year if release else None,
            release_date=release,
            platform=item.platform or (platforms[0] if platforms else None),
            publisher=publishers[0] if publishers else None,
            description=game.get("summary"),
            identifiers={"igdb": game.get("id")},
            images=[COVER_URL.format(image_id=cover["image_id"])] if cover.get("image_id") else [],
            tags=[g["name"] for g in game.get("genres") or [] if g.get("name")],
            match_score=1.0 - (position / max(total, 1)),
            edition_category=CATEGORY_NAMES.get(category) if category is not None else None,
            parent_id=str(parent) if parent else None,
        )
