"""Review queue adjudication: completing or dismissing parked detections."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from shelf_agent.core.enums import ReviewStatus
from shelf_agent.core.schema import (
    CollectableFields,
    CollectableRecord,
    ItemDescription,
    ReviewItem,
    ShelfItem,
)
from shelf_agent.pipeline.gateways import PersistenceGateway, ReviewQueueGateway
from shelf_agent.pipeline.matching import MatchingService

logger = logging.getLogger(__name__)

_ITEM_KEYS = ("title", "creator", "kind", "year", "format", "platform")


class ReviewItemNotFoundError(LookupError):
    """The review item does not exist, belongs to another user or is closed."""


class ReviewQueueUnavailableError(RuntimeError):
    """The review queue storage is missing."""


@dataclass
class ReviewCompletion:
    """What completing a review item produced."""

    record: CollectableRecord
    shelf_item: ShelfItem
    source: str
    created: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "collectable": self.record.model_dump(mode="json"),
            "shelfItem": self.shelf_item.model_dump(mode="json"),
            "source": self.source,
            "created": self.created,
        }


class ReviewService:
    """Applies user decisions to review items."""

    def __init__(
        self,
        review_queue: ReviewQueueGateway,
        matching: MatchingService,
        persistence: PersistenceGateway,
    ) -> None:
        self.review_queue = review_queue
        self.matching = matching
        self.persistence = persistence

    def _pending(self, review_id: str, user_id: str, shelf_id: str | None = None) -> ReviewItem:
        if not self.review_queue.available:
            raise ReviewQueueUnavailableError("Review queue is not available")
        item = self.review_queue.get(review_id, user_id)
        if item is None or item.status != ReviewStatus.PENDING:
            raise ReviewItemNotFoundError(review_id)
        if shelf_id is not None and item.shelf_id != shelf_id:
            raise ReviewItemNotFoundError(review_id)
        return item

    def complete(
        self,
        review_id: str,
        user_id: str,
        edits: dict[str, Any] | None = None,
        shelf_id: str | None = None,
    ) -> ReviewCompletion:
        """
        Resolve a review item with optional user edits.

        Edits are merged over the stored payload and the result is matched
        against persisted records (no external catalog calls). When nothing
        matches a new collectable is created. Either way it is attached to
        the review item's shelf and the item is marked completed.

        Raises:
            ReviewItemNotFoundError: Unknown, foreign or already closed item.
            ReviewQueueUnavailableError: Review storage is missing.
            ValueError: The merged payload has no title.
        """
        review_item = self._pending(review_id, user_id, shelf_id)
        merged = {**review_item.raw_data, **{k: v for k, v in (edits or {}).items() if v is not None}}
        item = ItemDescription(**{k: merged.get(k) for k in _ITEM_KEYS if k in merged})
        if not item.title:
            raise ValueError("A title is required to complete a review item")

        match = self.matching.match_existing(item)
        if match is not None and match.record is not None:
            record, source, created = match.record, match.source.value, False
            fuzzy = item.fuzzy_fingerprint()
            if fuzzy and fuzzy not in record.fuzzy_fingerprints:
                record = self.persistence.add_fuzzy_fingerprint(record.id, fuzzy) or record
        else:
            fields = CollectableFields.from_item(item, source="review")
            if merged.get("description"):
                fields = fields.model_copy(update={"description": merged["description"]})
            record, source, created = self.persistence.upsert(fields), "review", True

        shelf_item, _ = self.persistence.attach_to_shelf(user_id, review_item.shelf_id, record.id)
        self.review_queue.mark_completed(review_id, user_id)
        logger.info(f"Completed review item {review_id} -> collectable {record.id} ({source})")
        return ReviewCompletion(record=record, shelf_item=shelf_item, source=source, created=created)

    def dismiss(self, review_id: str, user_id: str, shelf_id: str | None = None) -> bool:
        """
        Dismiss a review item without creating anything.

        Raises:
            ReviewItemNotFoundError: Unknown, foreign or already closed item.
            ReviewQueueUnavailableError: Review storage is missing.
        """
        self._pending(review_id, user_id, shelf_id)
        dismissed = self.review_queue.dismiss(review_id, user_id)
        logger.info(f"Dismissed review item {review_id}")
        return dismissed is not None
