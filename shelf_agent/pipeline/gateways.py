"""
Gateway Interfaces
==================

Abstract collaborators consumed by the pipeline. Concrete implementations
live in shelf_agent.services.ai (extraction, enrichment) and
shelf_agent.db.repositories (persistence, review queue); tests supply
in-memory doubles.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from shelf_agent.core.enums import EnrichmentMode, FingerprintKind, ShelfKind
from shelf_agent.core.schema import (
    CollectableFields,
    CollectableRecord,
    DetectedItem,
    EnrichedItem,
    ItemDescription,
    ReviewItem,
    ShelfItem,
)


class ExtractionError(Exception):
    """The extraction provider could not produce detections."""


class ExtractionAdapter(ABC):
    """Turns a shelf photo into detected items."""

    @abstractmethod
    async def detect(self, image: bytes, kind: ShelfKind) -> list[DetectedItem]:
        """
        Detect items in an image.

        Raises:
            ExtractionError: When the provider call fails.
        """
        pass


class EnrichmentAdapter(ABC):
    """Completes metadata for detected items."""

    @abstractmethod
    async def enrich(
        self,
        items: Sequence[ItemDescription],
        kind: ShelfKind,
        mode: EnrichmentMode,
    ) -> list[EnrichedItem]:
        """
        Enrich a batch of items.

        Must return one record per input, in input order, substituting a
        fallback record for anything the provider could not describe.
        """
        pass


class PersistenceGateway(ABC):
    """Storage for collectables and shelf membership."""

    @abstractmethod
    def find_by_fingerprint(self, kind: FingerprintKind, key: str) -> CollectableRecord | None:
        pass

    @abstractmethod
    def find_similar(
        self,
        title: str,
        creator: str | None,
        kind: ShelfKind,
        threshold: float,
        limit: int = 5,
    ) -> list[tuple[CollectableRecord, float]]:
        """Records of a kind whose title/creator similarity meets threshold, best first."""
        pass

    @abstractmethod
    def upsert(self, fields: CollectableFields) -> CollectableRecord:
        """
        Create a collectable or extend the existing one.

        Idempotent on the strong fingerprint when present, else the
        lightweight fingerprint. Existing non-empty fields are never
        overwritten.
        """
        pass

    @abstractmethod
    def add_fuzzy_fingerprint(self, collectable_id: str, fingerprint: str) -> CollectableRecord | None:
        pass

    @abstractmethod
    def attach_to_shelf(
        self, user_id: str, shelf_id: str, collectable_id: str
    ) -> tuple[ShelfItem, bool]:
        """Put a collectable on a shelf; returns (shelf_item, created), idempotent."""
        pass


class ReviewQueueGateway(ABC):
    """Parking area for detections that need a human decision."""

    @property
    @abstractmethod
    def available(self) -> bool:
        """False once the backing store has been found missing."""
        pass

    @abstractmethod
    def enqueue(
        self,
        user_id: str,
        shelf_id: str,
        raw_item: dict[str, Any],
        confidence: float | None,
    ) -> ReviewItem | None:
        """Park an item; None when the queue is unavailable."""
        pass

    @abstractmethod
    def get(self, review_id: str, user_id: str) -> ReviewItem | None:
        pass

    @abstractmethod
    def list_pending(self, user_id: str, shelf_id: str | None = None) -> list[ReviewItem]:
        pass

    @abstractmethod
    def mark_completed(self, review_id: str, user_id: str) -> ReviewItem | None:
        pass

    @abstractmethod
    def dismiss(self, review_id: str, user_id: str) -> ReviewItem | None:
        pass
