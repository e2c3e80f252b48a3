"""Tests for database repositories and SQL gateways."""

import pytest
from sqlalchemy.orm import sessionmaker

from shelf_agent.core.enums import FingerprintKind, ReviewStatus, ShelfKind
from shelf_agent.core.fingerprint import fuzzy_ocr_fingerprint, lightweight_fingerprint
from shelf_agent.core.schema import CollectableFields
from shelf_agent.db.repositories import (
    CollectableRepository,
    ReviewRepository,
    ShelfItemRepository,
    SqlReviewQueue,
)


def _fields(title: str = "Dune", creator: str | None = "Frank Herbert", **kwargs) -> CollectableFields:
    data = {
        "kind": ShelfKind.BOOK,
        "title": title,
        "primary_creator": creator,
        "creators": [creator] if creator else [],
    }
    data.update(kwargs)
    return CollectableFields(**data)


class TestCollectableRepository:
    """Tests for CollectableRepository."""

    def test_upsert_creates_then_merges(self, session) -> None:
        """Test that a second upsert of the same work does not duplicate."""
        repo = CollectableRepository(session)

        first, created = repo.upsert(_fields(year=1965, sources=["openlibrary"]))
        second, created_again = repo.upsert(_fields(sources=["enrichment"]))

        assert created is True
        assert created_again is False
        assert second.id == first.id
        assert second.sources == ["openlibrary", "enrichment"]
        assert repo.count() == 1

    def test_upsert_computes_fingerprints(self, session) -> None:
        repo = CollectableRepository(session)
        record, _ = repo.upsert(_fields(year=1965))

        assert record.lightweight_fingerprint == lightweight_fingerprint(
            "Dune", "Frank Herbert", "book"
        )
        assert record.fingerprint is not None

    def test_upsert_without_year_has_no_strong_fingerprint(self, session) -> None:
        record, _ = CollectableRepository(session).upsert(_fields())
        assert record.fingerprint is None

    def test_merge_fills_empty_fields_only(self, session) -> None:
        """Test that merging never overwrites populated values."""
        repo = CollectableRepository(session)
        repo.upsert(_fields(publisher="Chilton", tags=["scifi"], identifiers={"isbn13": ["1"]}))

        merged, _ = repo.upsert(
            _fields(
                publisher="Ace",
                description="Desert planet.",
                year=1965,
                tags=["scifi", "classic"],
                identifiers={"isbn13": ["2"], "openlibrary": "/works/OL1"},
            )
        )

        assert merged.publisher == "Chilton"
        assert merged.description == "Desert planet."
        assert merged.year == 1965
        assert merged.tags == ["scifi", "classic"]
        assert merged.identifiers == {"isbn13": ["1"], "openlibrary": "/works/OL1"}
        assert merged.fingerprint is not None

    def test_upsert_rejects_blank_title(self, session) -> None:
        with pytest.raises(ValueError):
            CollectableRepository(session).upsert(_fields(title="!!!", creator=None))

    def test_lookup_by_each_fingerprint(self, session) -> None:
        repo = CollectableRepository(session)
        fuzzy = fuzzy_ocr_fingerprint("Th3 Hobbit", "Tolkien", "book")
        record, _ = repo.upsert(
            _fields("The Hobbit", "Tolkien", year=1937, fuzzy_fingerprints=[fuzzy])
        )

        assert repo.get_by_fingerprint(FingerprintKind.STRONG, record.fingerprint).id == record.id
        assert (
            repo.get_by_fingerprint(FingerprintKind.LIGHTWEIGHT, record.lightweight_fingerprint).id
            == record.id
        )
        assert repo.get_by_fingerprint(FingerprintKind.FUZZY, fuzzy).id == record.id
        assert repo.get_by_fingerprint(FingerprintKind.FUZZY, "0" * 64) is None

    def test_add_fuzzy_fingerprint_is_idempotent(self, session) -> None:
        repo = CollectableRepository(session)
        record, _ = repo.upsert(_fields())

        repo.add_fuzzy_fingerprint(record.id, "abc")
        updated = repo.add_fuzzy_fingerprint(record.id, "abc")

        assert updated.fuzzy_fingerprints == ["abc"]
        assert repo.add_fuzzy_fingerprint("missing", "abc") is None

    def test_find_similar(self, session) -> None:
        """Test similarity ranking within a kind."""
        repo = CollectableRepository(session)
        repo.upsert(_fields("The Hobbit", "J.R.R. Tolkien"))
        repo.upsert(_fields("The Habit", "Someone"))
        repo.upsert(_fields("The Hobbit", "J.R.R. Tolkien", kind=ShelfKind.MOVIE))

        results = repo.find_similar("The Hobbitt", "J.R.R. Tolkien", ShelfKind.BOOK, 0.85)

        assert len(results) == 1
        assert results[0][0].title == "The Hobbit"
        assert results[0][0].kind == ShelfKind.BOOK
        assert results[0][1] >= 0.85


class TestShelfItemRepository:
    """Tests for ShelfItemRepository."""

    def test_attach_twice_is_noop(self, session) -> None:
        record, _ = CollectableRepository(session).upsert(_fields())
        repo = ShelfItemRepository(session)

        first, created = repo.attach("u1", "s1", record.id)
        second, created_again = repo.attach("u1", "s1", record.id)

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert len(repo.list_for_shelf("u1", "s1")) == 1

    def test_shelves_are_independent(self, session) -> None:
        record, _ = CollectableRepository(session).upsert(_fields())
        repo = ShelfItemRepository(session)

        repo.attach("u1", "s1", record.id)
        repo.attach("u1", "s2", record.id)

        assert len(repo.list_for_shelf("u1", "s2")) == 1
        assert repo.list_for_shelf("u2", "s1") == []


class TestReviewRepository:
    """Tests for ReviewRepository."""

    def test_create_and_list_pending(self, session) -> None:
        repo = ReviewRepository(session)
        item = repo.create("u1", "s1", {"title": "Dnue"}, 0.4)
        repo.create("u1", "s2", {"title": "Other"}, 0.3)

        assert item.status == ReviewStatus.PENDING
        assert item.raw_data == {"title": "Dnue"}
        assert [r.id for r in repo.list_pending("u1", "s1")] == [item.id]
        assert len(repo.list_pending("u1")) == 2
        assert repo.list_pending("u2") == []

    def test_get_is_scoped_to_user(self, session) -> None:
        repo = ReviewRepository(session)
        item = repo.create("u1", "s1", {"title": "Dnue"}, 0.4)

        assert repo.get(item.id, "u1") is not None
        assert repo.get(item.id, "u2") is None

    def test_set_status_removes_from_pending(self, session) -> None:
        repo = ReviewRepository(session)
        item = repo.create("u1", "s1", {"title": "Dnue"}, 0.4)

        updated = repo.set_status(item.id, "u1", ReviewStatus.DISMISSED)

        assert updated.status == ReviewStatus.DISMISSED
        assert repo.list_pending("u1") == []


class TestSqlGateways:
    """Tests for the session-per-call gateways."""

    def test_persistence_round_trip(self, persistence) -> None:
        record = persistence.upsert(_fields(year=1965))
        again = persistence.upsert(_fields(year=1965, tags=["classic"]))
        shelf_item, created = persistence.attach_to_shelf("u1", "s1", record.id)
        again_item, created_again = persistence.attach_to_shelf("u1", "s1", record.id)

        assert again.id == record.id
        assert persistence.get(record.id).tags == ["classic"]
        assert persistence.find_by_fingerprint(FingerprintKind.STRONG, record.fingerprint).id == record.id
        assert shelf_item.collectable_id == record.id
        assert again_item.id == shelf_item.id
        assert created is True
        assert created_again is False

    def test_review_queue_round_trip(self, review_queue) -> None:
        item = review_queue.enqueue("u1", "s1", {"title": "Dnue"}, 0.4)

        assert review_queue.available
        assert review_queue.get(item.id, "u1").status == ReviewStatus.PENDING
        assert review_queue.mark_completed(item.id, "u1").status == ReviewStatus.COMPLETED
        assert review_queue.list_pending("u1") == []
        assert review_queue.dismiss("missing", "u1") is None

    def test_review_queue_disables_itself_without_table(self, engine_without_review_table) -> None:
        """Test that a missing review table degrades instead of failing."""
        queue = SqlReviewQueue(sessionmaker(bind=engine_without_review_table))

        assert queue.enqueue("u1", "s1", {"title": "Dnue"}, 0.4) is None
        assert queue.available is False
        assert queue.list_pending("u1") == []
