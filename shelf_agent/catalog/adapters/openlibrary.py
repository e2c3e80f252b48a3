"""
Open Library Adapter
====================

Book lookups against the public Open Library search API.
No credentials are required.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from shelf_agent.catalog.adapters.base import CatalogAdapter
from shelf_agent.core.enums import ShelfKind
from shelf_agent.core.schema import CatalogCandidate, ItemDescription

logger = logging.getLogger(__name__)

SEARCH_URL = "https://openlibrary.org/search.json"
COVER_URL = "https://covers.openlibrary.org/b/id/{cover_id}-L.jpg"
SEARCH_FIELDS = ",".join(
    [
        "key",
        "title",
        "subtitle",
        "author_name",
        "first_publish_year",
        "isbn",
        "cover_i",
        "publisher",
        "subject",
        "number_of_pages_median",
    ]
)


class OpenLibraryAdapter(CatalogAdapter):
    """Catalog adapter for books backed by openlibrary.org."""

    ADAPTER_NAME = "openlibrary"
    ADAPTER_VERSION = "1.0.0"
    DEFAULT_SHELF_TYPES = ("book", "books", "novel", "manga", "comic")

    async def _search(
        self,
        client: httpx.AsyncClient,
        item: ItemDescription,
        limit: int,
        platform: str | None = None,
    ) -> list[CatalogCandidate]:
        params: dict[str, Any] = {"title": item.title, "limit": limit, "fields": SEARCH_FIELDS}
        if item.creator:
            params["author"] = item.creator

        response = await self._request(client, "GET", SEARCH_URL, params=params)
        docs = response.json().get("docs", [])
        logger.debug(f"openlibrary: {len(docs)} docs for '{item.title}'")
        return [
            candidate
            for position, doc in enumerate(docs)
            if (candidate := self._to_candidate(doc, position, len(docs))) is not None
        ]

    def _to_candidate(self, doc: dict[str, Any], position: int, total: int) -> CatalogCandidate | None:
        title = doc.get("title")
        if not title:
            return None

        identifiers: dict[str, Any] = {}
        if doc.get("key"):
            identifiers["openlibrary"] = doc["key"]
        isbns = doc.get("isbn") or []
        if isbns:
            identifiers["isbn13"] = [i for i in isbns if len(i) == 13][:5]
            identifiers["isbn10"] = [i for i in isbns if len(i) == 10][:5]

        images = []
        if doc.get("cover_i"):
            images.append(COVER_URL.format(cover_id=doc["cover_i"]))

        publishers = doc.get("publisher") or []
        return CatalogCandidate(
            provider=self.name,
            title=title,
            kind=ShelfKind.BOOK,
            creators=list(doc.get("author_name") or []),
            year=doc.get("first_publish_year"),
            publisher=publishers[0] if publishers else None,
            identifiers=identifiers,
            images=images,
            tags=list(doc.get("subject") or [])[:10],
            match_score=1.0 - (position / max(total, 1)),
        )
