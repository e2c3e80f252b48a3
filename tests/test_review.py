"""Tests for review queue adjudication."""

import pytest
from sqlalchemy.orm import sessionmaker

from shelf_agent.core.enums import ReviewStatus, ShelfKind
from shelf_agent.core.schema import CollectableFields
from shelf_agent.db.repositories import SqlPersistenceGateway, SqlReviewQueue
from shelf_agent.pipeline.matching import MatchingService
from shelf_agent.pipeline.review import (
    ReviewItemNotFoundError,
    ReviewQueueUnavailableError,
    ReviewService,
)


@pytest.fixture
def service(persistence, review_queue) -> ReviewService:
    return ReviewService(review_queue, MatchingService(persistence), persistence)


@pytest.fixture
def parked(review_queue):
    return review_queue.enqueue(
        "u1",
        "s1",
        {"title": "Dnue", "kind": "book", "confidence": 0.4, "reason": "low-confidence"},
        0.4,
    )


class TestComplete:
    """Tests for completing review items."""

    def test_creates_collectable_from_edits(self, service, review_queue, parked) -> None:
        completion = service.complete(
            parked.id, "u1", edits={"title": "Dune", "creator": "Frank Herbert", "year": 1965}
        )

        assert completion.created is True
        assert completion.source == "review"
        assert completion.record.title == "Dune"
        assert completion.record.primary_creator == "Frank Herbert"
        assert completion.record.sources == ["review"]
        assert completion.shelf_item.shelf_id == "s1"
        assert review_queue.get(parked.id, "u1").status == ReviewStatus.COMPLETED
        assert review_queue.list_pending("u1") == []

    def test_reuses_existing_collectable(self, service, persistence, parked) -> None:
        """Test that completion prefers an existing record over a new one."""
        existing = persistence.upsert(
            CollectableFields(kind=ShelfKind.BOOK, title="Dune", primary_creator="Frank Herbert")
        )

        completion = service.complete(
            parked.id, "u1", edits={"title": "Dune", "creator": "Frank Herbert"}
        )

        assert completion.created is False
        assert completion.source == "fingerprint"
        assert completion.record.id == existing.id
        payload = completion.to_dict()
        assert set(payload) == {"collectable", "shelfItem", "source", "created"}

    def test_completes_with_stored_payload(self, service, parked) -> None:
        completion = service.complete(parked.id, "u1")
        assert completion.record.title == "Dnue"

    def test_cannot_complete_twice(self, service, parked) -> None:
        service.complete(parked.id, "u1")
        with pytest.raises(ReviewItemNotFoundError):
            service.complete(parked.id, "u1")

    def test_foreign_user_and_wrong_shelf(self, service, review_queue, parked) -> None:
        with pytest.raises(ReviewItemNotFoundError):
            service.complete(parked.id, "u2")
        with pytest.raises(ReviewItemNotFoundError):
            service.complete(parked.id, "u1", shelf_id="other-shelf")
        assert review_queue.get(parked.id, "u1").status == ReviewStatus.PENDING

    def test_blank_title_is_rejected(self, service, review_queue, parked) -> None:
        with pytest.raises(ValueError):
            service.complete(parked.id, "u1", edits={"title": "   "})
        assert review_queue.get(parked.id, "u1").status == ReviewStatus.PENDING


class TestDismiss:
    """Tests for dismissing review items."""

    def test_dismiss(self, service, review_queue, persistence, parked) -> None:
        assert service.dismiss(parked.id, "u1", shelf_id="s1") is True
        assert review_queue.get(parked.id, "u1").status == ReviewStatus.DISMISSED
        with pytest.raises(ReviewItemNotFoundError):
            service.dismiss(parked.id, "u1")

    def test_unknown_item(self, service) -> None:
        with pytest.raises(ReviewItemNotFoundError):
            service.dismiss("missing", "u1")


class TestUnavailableQueue:
    """Tests for a missing review table."""

    def test_operations_report_unavailable(self, engine_without_review_table) -> None:
        factory = sessionmaker(bind=engine_without_review_table)
        persistence = SqlPersistenceGateway(factory)
        queue = SqlReviewQueue(factory)
        service = ReviewService(queue, MatchingService(persistence), persistence)

        assert queue.list_pending("u1") == []
        with pytest.raises(ReviewQueueUnavailableError):
            service.complete("any", "u1")
        with pytest.raises(ReviewQueueUnavailableError):
            service.dismiss("any", "u1")
