"""Repository classes and gateway implementations for Shelf Agent storage."""

import json
import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from sqlalchemy.orm import Session

from shelf_agent.core.enums import FingerprintKind, ReviewStatus, ShelfKind
from shelf_agent.core.schema import (
    CollectableFields,
    CollectableRecord,
    ReviewItem,
    ShelfItem,
)
from shelf_agent.core.similarity import combined_similarity
from shelf_agent.db.models import CollectableDB, ReviewItemDB, ShelfItemDB
from shelf_agent.pipeline.gateways import PersistenceGateway, ReviewQueueGateway

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Scalar fields filled on merge only when empty on the stored record
_MERGE_SCALARS = (
    "subtitle",
    "primary_creator",
    "year",
    "format",
    "platform",
    "publisher",
    "description",
)


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _union(existing: Iterable[str], new: Iterable[str]) -> list[str]:
    """Append new values to existing ones, keeping order and dropping duplicates."""
    merged = list(existing)
    for value in new:
        if value and value not in merged:
            merged.append(value)
    return merged


# ============================================================================
# Repositories
# ============================================================================


class CollectableRepository:
    """Repository for collectable CRUD and dedup operations."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, collectable_id: str) -> CollectableRecord | None:
        """Get a collectable by ID."""
        db_item = self.session.get(CollectableDB, collectable_id)
        return self._to_domain(db_item) if db_item else None

    def _get_db_by_fingerprint(self, kind: FingerprintKind, key: str) -> CollectableDB | None:
        if kind == FingerprintKind.STRONG:
            stmt = select(CollectableDB).where(CollectableDB.fingerprint == key)
            return self.session.scalars(stmt).first()
        if kind == FingerprintKind.LIGHTWEIGHT:
            stmt = select(CollectableDB).where(CollectableDB.lightweight_fingerprint == key)
            return self.session.scalars(stmt).first()

        # Fuzzy fingerprints are hex digests, so a quoted substring match is exact
        stmt = select(CollectableDB).where(CollectableDB.fuzzy_fingerprints_json.contains(f'"{key}"'))
        for db_item in self.session.scalars(stmt):
            if key in json.loads(db_item.fuzzy_fingerprints_json or "[]"):
                return db_item
        return None

    def get_by_fingerprint(self, kind: FingerprintKind, key: str) -> CollectableRecord | None:
        """Get a collectable by one of its fingerprints."""
        db_item = self._get_db_by_fingerprint(kind, key)
        return self._to_domain(db_item) if db_item else None

    def list_by_kind(self, kind: ShelfKind) -> list[CollectableRecord]:
        """List all collectables of a kind."""
        stmt = select(CollectableDB).where(CollectableDB.kind == kind.value).order_by(CollectableDB.title)
        return [self._to_domain(db_item) for db_item in self.session.scalars(stmt)]

    def find_similar(
        self,
        title: str,
        creator: str | None,
        kind: ShelfKind,
        threshold: float,
        limit: int = 5,
    ) -> list[tuple[CollectableRecord, float]]:
        """
        Rank collectables of a kind by title/creator similarity.

        Returns:
            (record, score) pairs with score >= threshold, best first.
        """
        scored = []
        for record in self.list_by_kind(kind):
            score = combined_similarity(title, creator, record.title, record.primary_creator)
            if score >= threshold:
                scored.append((record, score))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]

    def upsert(self, fields: CollectableFields) -> tuple[CollectableRecord, bool]:
        """
        Create a collectable or merge into the existing one.

        Matches on the strong fingerprint first, then the lightweight one.

        Returns:
            (record, created) tuple.
        """
        fields = fields.with_fingerprints()
        if not fields.lightweight_fingerprint:
            raise ValueError("Cannot store a collectable without a title")

        db_item = None
        if fields.fingerprint:
            db_item = self._get_db_by_fingerprint(FingerprintKind.STRONG, fields.fingerprint)
        if db_item is None:
            db_item = self._get_db_by_fingerprint(
                FingerprintKind.LIGHTWEIGHT, fields.lightweight_fingerprint
            )

        if db_item is not None:
            self._merge(db_item, fields)
            self.session.flush()
            return self._to_domain(db_item), False

        db_item = CollectableDB(
            kind=fields.kind.value,
            title=fields.title,
            subtitle=fields.subtitle,
            primary_creator=fields.primary_creator,
            year=fields.year,
            format=fields.format,
            platform=fields.platform,
            publisher=fields.publisher,
            description=fields.description,
            fingerprint=fields.fingerprint,
            lightweight_fingerprint=fields.lightweight_fingerprint,
            fuzzy_fingerprints_json=json.dumps(_union([], fields.fuzzy_fingerprints)),
            creators_json=json.dumps(_union([], fields.creators)),
            identifiers_json=json.dumps(fields.identifiers),
            images_json=json.dumps(_union([], fields.images)),
            tags_json=json.dumps(_union([], fields.tags)),
            sources_json=json.dumps(_union([], fields.sources)),
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item), True

    def _merge(self, db_item: CollectableDB, fields: CollectableFields) -> None:
        """Fill empty fields and extend list fields without overwriting anything."""
        for attr in _MERGE_SCALARS:
            incoming = getattr(fields, attr)
            if _is_empty(getattr(db_item, attr)) and not _is_empty(incoming):
                setattr(db_item, attr, incoming)

        if db_item.fingerprint is None and fields.fingerprint:
            if self._get_db_by_fingerprint(FingerprintKind.STRONG, fields.fingerprint) is None:
                db_item.fingerprint = fields.fingerprint

        identifiers = json.loads(db_item.identifiers_json or "{}")
        for key, value in fields.identifiers.items():
            if _is_empty(identifiers.get(key)) and not _is_empty(value):
                identifiers[key] = value
        db_item.identifiers_json = json.dumps(identifiers)

        for column, values in (
            ("creators_json", fields.creators),
            ("images_json", fields.images),
            ("tags_json", fields.tags),
            ("sources_json", fields.sources),
            ("fuzzy_fingerprints_json", fields.fuzzy_fingerprints),
        ):
            current = json.loads(getattr(db_item, column) or "[]")
            setattr(db_item, column, json.dumps(_union(current, values)))

        db_item.updated_at = _utc_now()

    def add_fuzzy_fingerprint(self, collectable_id: str, fingerprint: str) -> CollectableRecord | None:
        """Append a fuzzy-OCR fingerprint if the record does not carry it yet."""
        db_item = self.session.get(CollectableDB, collectable_id)
        if db_item is None:
            return None
        current = json.loads(db_item.fuzzy_fingerprints_json or "[]")
        if fingerprint not in current:
            db_item.fuzzy_fingerprints_json = json.dumps([*current, fingerprint])
            db_item.updated_at = _utc_now()
            self.session.flush()
        return self._to_domain(db_item)

    def count(self) -> int:
        """Count all collectables."""
        return len(self.session.scalars(select(CollectableDB.id)).all())

    def _to_domain(self, db_item: CollectableDB) -> CollectableRecord:
        """Convert database model to domain model."""
        return CollectableRecord(
            id=db_item.id,
            kind=ShelfKind(db_item.kind),
            title=db_item.title,
            subtitle=db_item.subtitle,
            primary_creator=db_item.primary_creator,
            creators=json.loads(db_item.creators_json or "[]"),
            year=db_item.year,
            format=db_item.format,
            platform=db_item.platform,
            publisher=db_item.publisher,
            description=db_item.description,
            identifiers=json.loads(db_item.identifiers_json or "{}"),
            images=json.loads(db_item.images_json or "[]"),
            tags=json.loads(db_item.tags_json or "[]"),
            fingerprint=db_item.fingerprint,
            lightweight_fingerprint=db_item.lightweight_fingerprint,
            fuzzy_fingerprints=json.loads(db_item.fuzzy_fingerprints_json or "[]"),
            sources=json.loads(db_item.sources_json or "[]"),
            created_at=db_item.created_at,
            updated_at=db_item.updated_at,
        )


class ShelfItemRepository:
    """Repository for shelf membership."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str, shelf_id: str, collectable_id: str) -> ShelfItem | None:
        """Get the membership row for a collectable on a shelf."""
        stmt = select(ShelfItemDB).where(
            ShelfItemDB.user_id == user_id,
            ShelfItemDB.shelf_id == shelf_id,
            ShelfItemDB.collectable_id == collectable_id,
        )
        db_item = self.session.scalars(stmt).first()
        return self._to_domain(db_item) if db_item else None

    def attach(self, user_id: str, shelf_id: str, collectable_id: str) -> tuple[ShelfItem, bool]:
        """
        Attach a collectable to a shelf; attaching twice is a no-op.

        Returns:
            (shelf_item, created) tuple.
        """
        existing = self.get(user_id, shelf_id, collectable_id)
        if existing is not None:
            return existing, False
        db_item = ShelfItemDB(user_id=user_id, shelf_id=shelf_id, collectable_id=collectable_id)
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item), True

    def list_for_shelf(self, user_id: str, shelf_id: str) -> list[ShelfItem]:
        """List the items on a shelf, oldest first."""
        stmt = (
            select(ShelfItemDB)
            .where(ShelfItemDB.user_id == user_id, ShelfItemDB.shelf_id == shelf_id)
            .order_by(ShelfItemDB.created_at)
        )
        return [self._to_domain(db_item) for db_item in self.session.scalars(stmt)]

    def _to_domain(self, db_item: ShelfItemDB) -> ShelfItem:
        """Convert database model to domain model."""
        return ShelfItem(
            id=db_item.id,
            user_id=db_item.user_id,
            shelf_id=db_item.shelf_id,
            collectable_id=db_item.collectable_id,
            created_at=db_item.created_at,
        )


class ReviewRepository:
    """Repository for review queue items."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        user_id: str,
        shelf_id: str,
        raw_data: dict[str, Any],
        confidence: float | None,
    ) -> ReviewItem:
        """Create a pending review item."""
        db_item = ReviewItemDB(
            user_id=user_id,
            shelf_id=shelf_id,
            raw_data_json=json.dumps(raw_data, default=str),
            confidence=confidence,
            status=ReviewStatus.PENDING.value,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get(self, review_id: str, user_id: str) -> ReviewItem | None:
        """Get a review item owned by a user."""
        db_item = self._get_db(review_id, user_id)
        return self._to_domain(db_item) if db_item else None

    def _get_db(self, review_id: str, user_id: str) -> ReviewItemDB | None:
        stmt = select(ReviewItemDB).where(
            ReviewItemDB.id == review_id, ReviewItemDB.user_id == user_id
        )
        return self.session.scalars(stmt).first()

    def list_pending(self, user_id: str, shelf_id: str | None = None) -> list[ReviewItem]:
        """List pending review items for a user, optionally for one shelf."""
        stmt = select(ReviewItemDB).where(
            ReviewItemDB.user_id == user_id,
            ReviewItemDB.status == ReviewStatus.PENDING.value,
        )
        if shelf_id is not None:
            stmt = stmt.where(ReviewItemDB.shelf_id == shelf_id)
        stmt = stmt.order_by(ReviewItemDB.created_at)
        return [self._to_domain(db_item) for db_item in self.session.scalars(stmt)]

    def set_status(self, review_id: str, user_id: str, status: ReviewStatus) -> ReviewItem | None:
        """Move a review item to a new status."""
        db_item = self._get_db(review_id, user_id)
        if db_item is None:
            return None
        db_item.status = status.value
        db_item.updated_at = _utc_now()
        self.session.flush()
        return self._to_domain(db_item)

    def _to_domain(self, db_item: ReviewItemDB) -> ReviewItem:
        """Convert database model to domain model."""
        return ReviewItem(
            id=db_item.id,
            user_id=db_item.user_id,
            shelf_id=db_item.shelf_id,
            raw_data=json.loads(db_item.raw_data_json or "{}"),
            confidence=db_item.confidence,
            status=ReviewStatus(db_item.status),
            created_at=db_item.created_at,
            updated_at=db_item.updated_at,
        )


# ============================================================================
# Gateways
# ============================================================================


SessionFactory = Callable[[], Session]


class SqlPersistenceGateway(PersistenceGateway):
    """
    Persistence gateway over SQLAlchemy.

    Every call runs in its own session and commits on success, so each
    item write is atomic on its own.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def _run(self, fn: Callable[[Session], T], commit: bool = False) -> T:
        session = self._session_factory()
        try:
            result = fn(session)
            if commit:
                session.commit()
            return result
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def find_by_fingerprint(self, kind: FingerprintKind, key: str) -> CollectableRecord | None:
        return self._run(lambda s: CollectableRepository(s).get_by_fingerprint(kind, key))

    def find_similar(
        self,
        title: str,
        creator: str | None,
        kind: ShelfKind,
        threshold: float,
        limit: int = 5,
    ) -> list[tuple[CollectableRecord, float]]:
        return self._run(
            lambda s: CollectableRepository(s).find_similar(title, creator, kind, threshold, limit)
        )

    def upsert(self, fields: CollectableFields) -> CollectableRecord:
        try:
            record, created = self._run(lambda s: CollectableRepository(s).upsert(fields), commit=True)
        except IntegrityError:
            # Another writer created the same fingerprint first; merge into it
            logger.info(f"Concurrent insert for '{fields.title}', merging into existing record")
            record, created = self._run(lambda s: CollectableRepository(s).upsert(fields), commit=True)
        if created:
            logger.info(f"Created collectable {record.id} '{record.title}'")
        return record

    def add_fuzzy_fingerprint(self, collectable_id: str, fingerprint: str) -> CollectableRecord | None:
        return self._run(
            lambda s: CollectableRepository(s).add_fuzzy_fingerprint(collectable_id, fingerprint),
            commit=True,
        )

    def attach_to_shelf(
        self, user_id: str, shelf_id: str, collectable_id: str
    ) -> tuple[ShelfItem, bool]:
        return self._run(
            lambda s: ShelfItemRepository(s).attach(user_id, shelf_id, collectable_id),
            commit=True,
        )

    def get(self, collectable_id: str) -> CollectableRecord | None:
        return self._run(lambda s: CollectableRepository(s).get(collectable_id))


def _is_missing_relation(error: Exception) -> bool:
    message = str(error).lower()
    return "no such table" in message or "does not exist" in message or "undefined table" in message


class SqlReviewQueue(ReviewQueueGateway):
    """
    Review queue gateway over SQLAlchemy.

    If the review table is missing the queue switches itself off for the
    rest of the process lifetime instead of failing callers.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory
        self._available = True

    @property
    def available(self) -> bool:
        return self._available

    def _run(self, fn: Callable[[Session], T], default: T, commit: bool = False) -> T:
        if not self._available:
            return default
        session = self._session_factory()
        try:
            result = fn(session)
            if commit:
                session.commit()
            return result
        except (OperationalError, ProgrammingError) as e:
            session.rollback()
            if not _is_missing_relation(e):
                raise
            logger.warning(f"Review queue table missing, disabling review queue: {e}")
            self._available = False
            return default
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def enqueue(
        self,
        user_id: str,
        shelf_id: str,
        raw_item: dict[str, Any],
        confidence: float | None,
    ) -> ReviewItem | None:
        return self._run(
            lambda s: ReviewRepository(s).create(user_id, shelf_id, raw_item, confidence),
            None,
            commit=True,
        )

    def get(self, review_id: str, user_id: str) -> ReviewItem | None:
        return self._run(lambda s: ReviewRepository(s).get(review_id, user_id), None)

    def list_pending(self, user_id: str, shelf_id: str | None = None) -> list[ReviewItem]:
        return self._run(lambda s: ReviewRepository(s).list_pending(user_id, shelf_id), [])

    def mark_completed(self, review_id: str, user_id: str) -> ReviewItem | None:
        return self._run(
            lambda s: ReviewRepository(s).set_status(review_id, user_id, ReviewStatus.COMPLETED),
            None,
            commit=True,
        )

    def dismiss(self, review_id: str, user_id: str) -> ReviewItem | None:
        return self._run(
            lambda s: ReviewRepository(s).set_status(review_id, user_id, ReviewStatus.DISMISSED),
            None,
            commit=True,
        )
