"""SQLAlchemy ORM models for Shelf Agent database."""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class CollectableDB(Base):
    """
    Database model for collectables.

    One row per real-world work, shared across users. Strong and
    lightweight fingerprints are unique; fuzzy-OCR fingerprints accumulate
    in a JSON list.
    """

    __tablename__ = "collectables"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="other")
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    subtitle: Mapped[str | None] = mapped_column(String(500), nullable=True)
    primary_creator: Mapped[str | None] = mapped_column(String(255), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    format: Mapped[str | None] = mapped_column(String(100), nullable=True)
    platform: Mapped[str | None] = mapped_column(String(100), nullable=True)
    publisher: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Dedup keys
    fingerprint: Mapped[str | None] = mapped_column(String(40), nullable=True, unique=True)
    lightweight_fingerprint: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    fuzzy_fingerprints_json: Mapped[str] = mapped_column(Text, default="[]")

    # JSON payloads
    creators_json: Mapped[str] = mapped_column(Text, default="[]")
    identifiers_json: Mapped[str] = mapped_column(Text, default="{}")
    images_json: Mapped[str] = mapped_column(Text, default="[]")
    tags_json: Mapped[str] = mapped_column(Text, default="[]")
    sources_json: Mapped[str] = mapped_column(Text, default="[]")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    __table_args__ = (Index("ix_collectables_kind_title", "kind", "title"),)


class ShelfItemDB(Base):
    """Database model linking a user's shelf to a collectable."""

    __tablename__ = "shelf_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    shelf_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    collectable_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("collectables.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    __table_args__ = (
        UniqueConstraint("user_id", "shelf_id", "collectable_id", name="uq_shelf_items_membership"),
    )


class ReviewItemDB(Base):
    """
    Database model for the review queue.

    Stores detections the pipeline could not resolve confidently.
    """

    __tablename__ = "needs_review"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    shelf_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    raw_data_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)
