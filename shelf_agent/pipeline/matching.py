"""
Matching Service
================

Finds existing collectables (or proposes catalog candidates) for an item.

Strategies, in order:
1. Exact strong / lightweight fingerprint lookup
2. Fuzzy-OCR fingerprint lookup
3. Similarity-ranked title/creator lookup above a configurable floor
4. Catalog resolution chain (only when 1-3 found nothing and the API is allowed)

The async entry points run the database strategies in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from shelf_agent.catalog.chain import CatalogResolutionChain
from shelf_agent.core.enums import FingerprintKind, MatchSource, ShelfKind, normalize_kind
from shelf_agent.core.schema import CatalogCandidate, CollectableRecord, ItemDescription
from shelf_agent.pipeline.gateways import PersistenceGateway

logger = logging.getLogger(__name__)

FINGERPRINT_SCORE = 1.0
FUZZY_FINGERPRINT_SCORE = 0.95


@dataclass
class MatchSuggestion:
    """One suggestion: either a persisted record or a catalog candidate."""

    source: MatchSource
    score: float
    record: CollectableRecord | None = None
    candidate: CatalogCandidate | None = None

    @property
    def title(self) -> str:
        if self.record is not None:
            return self.record.title
        return self.candidate.title if self.candidate else ""

    @property
    def is_existing(self) -> bool:
        """Whether the suggestion refers to an already persisted record."""
        return self.record is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "score": round(self.score, 4),
            "title": self.title,
            "record": self.record.model_dump(mode="json") if self.record else None,
            "candidate": self.candidate.model_dump(mode="json") if self.candidate else None,
        }


@dataclass
class SearchResult:
    """Suggestions plus which backends were consulted."""

    suggestions: list[MatchSuggestion] = field(default_factory=list)
    searched_database: bool = False
    searched_api: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "suggestions": [s.to_dict() for s in self.suggestions],
            "searched": {"database": self.searched_database, "api": self.searched_api},
        }


class MatchingService:
    """Combines fingerprint, similarity and catalog lookups."""

    def __init__(
        self,
        persistence: PersistenceGateway,
        chain: CatalogResolutionChain | None = None,
        search_threshold: float = 0.5,
        auto_match_threshold: float = 0.8,
        suggestion_limit: int = 5,
    ) -> None:
        self.persistence = persistence
        self.chain = chain
        self.search_threshold = search_threshold
        self.auto_match_threshold = auto_match_threshold
        self.suggestion_limit = suggestion_limit

    @staticmethod
    def _with_kind(item: ItemDescription, kind: ShelfKind | str | None) -> ItemDescription:
        if kind is None:
            return item
        normalized = normalize_kind(kind)
        if item.kind == normalized:
            return item
        return item.model_copy(update={"kind": normalized})

    def _fingerprint_lookup(self, item: ItemDescription) -> CollectableRecord | None:
        strong = item.strong_fingerprint()
        if strong:
            record = self.persistence.find_by_fingerprint(FingerprintKind.STRONG, strong)
            if record is not None:
                return record
        lightweight = item.lightweight_fingerprint()
        if lightweight:
            return self.persistence.find_by_fingerprint(FingerprintKind.LIGHTWEIGHT, lightweight)
        return None

    def _fuzzy_fingerprint_lookup(self, item: ItemDescription) -> CollectableRecord | None:
        fuzzy = item.fuzzy_fingerprint()
        if not fuzzy:
            return None
        return self.persistence.find_by_fingerprint(FingerprintKind.FUZZY, fuzzy)

    def match_existing(
        self, item: ItemDescription, kind: ShelfKind | str | None = None
    ) -> MatchSuggestion | None:
        """
        First persisted record found by strategies 1-3, stopping early.

        Args:
            item: Item to match.
            kind: Optional shelf kind overriding item.kind.
        """
        item = self._with_kind(item, kind)

        record = self._fingerprint_lookup(item)
        if record is not None:
            logger.debug(f"Fingerprint match for '{item.title}' -> {record.id}")
            return MatchSuggestion(MatchSource.FINGERPRINT, FINGERPRINT_SCORE, record=record)

        record = self._fuzzy_fingerprint_lookup(item)
        if record is not None:
            logger.debug(f"Fuzzy fingerprint match for '{item.title}' -> {record.id}")
            return MatchSuggestion(
                MatchSource.FUZZY_FINGERPRINT, FUZZY_FINGERPRINT_SCORE, record=record
            )

        similar = self.persistence.find_similar(
            item.title, item.creator, item.kind, self.auto_match_threshold, limit=1
        )
        if similar:
            record, score = similar[0]
            logger.debug(f"Similarity match for '{item.title}' -> {record.id} ({score:.2f})")
            return MatchSuggestion(MatchSource.FUZZY_MATCH, score, record=record)

        return None

    async def find_best_match(
        self,
        item: ItemDescription,
        kind: ShelfKind | str | None = None,
        include_api: bool = True,
    ) -> MatchSuggestion | None:
        """
        Single best match for the automated pipeline path.

        Returns the first successful strategy with its source tag; later
        strategies are never run once an earlier one hits.
        """
        match = await asyncio.to_thread(self.match_existing, item, kind)
        if match is not None:
            return match

        if include_api and self.chain is not None:
            item = self._with_kind(item, kind)
            candidate = await self.chain.safe_lookup(item, item.kind)
            if candidate is not None and candidate.title:
                return MatchSuggestion(MatchSource.API, candidate.match_score, candidate=candidate)

        return None

    def database_suggestions(self, item: ItemDescription) -> list[MatchSuggestion]:
        """Every persisted record found by strategies 1-3, deduplicated, in strategy order."""
        suggestions: list[MatchSuggestion] = []
        seen: set[str] = set()

        def add(suggestion: MatchSuggestion) -> None:
            if suggestion.record is None or suggestion.record.id in seen:
                return
            seen.add(suggestion.record.id)
            suggestions.append(suggestion)

        record = self._fingerprint_lookup(item)
        if record is not None:
            add(MatchSuggestion(MatchSource.FINGERPRINT, FINGERPRINT_SCORE, record=record))

        record = self._fuzzy_fingerprint_lookup(item)
        if record is not None:
            add(MatchSuggestion(MatchSource.FUZZY_FINGERPRINT, FUZZY_FINGERPRINT_SCORE, record=record))

        for record, score in self.persistence.find_similar(
            item.title, item.creator, item.kind, self.search_threshold, limit=self.suggestion_limit
        ):
            add(MatchSuggestion(MatchSource.FUZZY_MATCH, score, record=record))

        return suggestions

    async def search(
        self,
        item: ItemDescription,
        kind: ShelfKind | str | None = None,
        include_api: bool = True,
    ) -> SearchResult:
        """
        Interactive search returning every suggestion found.

        The catalog chain is only consulted when the database strategies
        produced nothing and include_api is set.
        """
        item = self._with_kind(item, kind)
        result = SearchResult(searched_database=True)
        result.suggestions = await asyncio.to_thread(self.database_suggestions, item)

        if not result.suggestions and include_api and self.chain is not None:
            result.searched_api = True
            candidates = await self.chain.safe_lookup_many(
                item, item.kind, limit=self.suggestion_limit
            )
            for candidate in candidates:
                if not candidate.title:
                    continue
                result.suggestions.append(
                    MatchSuggestion(MatchSource.API, candidate.match_score, candidate=candidate)
                )

        return result
