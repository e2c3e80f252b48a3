"""Pydantic v2 models for the shelf resolution pipeline.

These models define the items that flow through a run:
- ItemDescription, DetectedItem, EnrichedItem (pipeline inputs and stage outputs)
- CatalogCandidate (normalized provider result)
- CollectableFields, CollectableRecord, ShelfItem (persisted catalog entities)
- ReviewItem (parked detections awaiting user adjudication)
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shelf_agent.core.enums import EnrichmentMode, ReviewStatus, ShelfKind, normalize_kind
from shelf_agent.core.fingerprint import (
    fuzzy_ocr_fingerprint,
    lightweight_fingerprint,
    strong_fingerprint,
)


FALLBACK_CONFIDENCE = 0.5
FALLBACK_NOTE = "Enrichment failed"


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _coerce_year(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, (date, datetime)):
        return value.year
    match = re.search(r"\d{4}", str(value))
    return int(match.group(0)) if match else None


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


# ============================================================================
# Pipeline items
# ============================================================================


class ItemDescription(BaseModel):
    """Minimal description of a physical item shared by every stage."""

    title: str
    creator: str | None = None
    kind: ShelfKind = ShelfKind.OTHER
    year: int | None = None
    format: str | None = None
    platform: str | None = None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("creator", "format", "platform", mode="before")
    @classmethod
    def blank_is_none(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("kind", mode="before")
    @classmethod
    def normalize_item_kind(cls, v: Any) -> ShelfKind:
        return normalize_kind(v)

    @field_validator("year", mode="before")
    @classmethod
    def coerce_year(cls, v: Any) -> int | None:
        return _coerce_year(v)

    def lightweight_fingerprint(self) -> str | None:
        return lightweight_fingerprint(self.title, self.creator, self.kind)

    def strong_fingerprint(self) -> str | None:
        """Strong fingerprint, only defined when a year is known."""
        if self.year is None:
            return None
        return strong_fingerprint(self.title, self.creator, self.kind, self.year, self.format)

    def fuzzy_fingerprint(self) -> str | None:
        return fuzzy_ocr_fingerprint(self.title, self.creator, self.kind)


class DetectedItem(ItemDescription):
    """
    Raw extraction result for one spine/cover found in a photo.

    Immutable once created by the extraction adapter.
    """

    model_config = ConfigDict(frozen=True)

    confidence: float = Field(ge=0.0, le=1.0)


class EnrichedItem(ItemDescription):
    """Structured record returned by the enrichment adapter for one input."""

    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    subtitle: str | None = None
    publisher: str | None = None
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    identifiers: dict[str, Any] = Field(default_factory=dict)
    cover_url: str | None = None
    notes: str | None = None
    original_title: str | None = None
    mode: EnrichmentMode = EnrichmentMode.STANDARD
    fallback: bool = False

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return FALLBACK_CONFIDENCE
        return min(max(value, 0.0), 1.0)

    @classmethod
    def fallback_for(
        cls,
        item: ItemDescription,
        kind: ShelfKind,
        mode: EnrichmentMode = EnrichmentMode.STANDARD,
        note: str = FALLBACK_NOTE,
    ) -> EnrichedItem:
        """Degraded record used when the provider response is unusable."""
        return cls(
            title=item.title,
            creator=item.creator,
            kind=kind,
            year=item.year,
            format=item.format,
            platform=item.platform,
            confidence=FALLBACK_CONFIDENCE,
            notes=note,
            original_title=item.title,
            mode=mode,
            fallback=True,
        )


class CatalogCandidate(BaseModel):
    """
    Normalized result from one catalog provider.

    match_score breaks ties between otherwise equal results from the same
    provider. edition_category is the provider's own marker (main, remake,
    port, dlc...) when it has one; parent_id links derived editions to the
    work they derive from.
    """

    provider: str
    title: str
    kind: ShelfKind = ShelfKind.OTHER
    creators: list[str] = Field(default_factory=list)
    year: int | None = None
    release_date: date | None = None
    format: str | None = None
    platform: str | None = None
    publisher: str | None = None
    description: str | None = None
    identifiers: dict[str, Any] = Field(default_factory=dict)
    images: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    match_score: float = 0.0
    edition_category: str | None = None
    parent_id: str | None = None

    @field_validator("year", mode="before")
    @classmethod
    def coerce_year(cls, v: Any) -> int | None:
        return _coerce_year(v)

    @property
    def creator(self) -> str | None:
        return self.creators[0] if self.creators else None


# ============================================================================
# Persisted entities
# ============================================================================


class CollectableFields(BaseModel):
    """Field set used to create or extend a collectable."""

    kind: ShelfKind = ShelfKind.OTHER
    title: str
    subtitle: str | None = None
    primary_creator: str | None = None
    creators: list[str] = Field(default_factory=list)
    year: int | None = None
    format: str | None = None
    platform: str | None = None
    publisher: str | None = None
    description: str | None = None
    identifiers: dict[str, Any] = Field(default_factory=dict)
    images: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    fingerprint: str | None = None
    lightweight_fingerprint: str | None = None
    fuzzy_fingerprints: list[str] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)

    def with_fingerprints(self) -> CollectableFields:
        """Return a copy with strong and lightweight fingerprints filled in."""
        lwf = self.lightweight_fingerprint or lightweight_fingerprint(
            self.title, self.primary_creator, self.kind
        )
        strong = self.fingerprint
        if strong is None and self.year is not None:
            strong = strong_fingerprint(
                self.title, self.primary_creator, self.kind, self.year, self.format
            )
        return self.model_copy(update={"lightweight_fingerprint": lwf, "fingerprint": strong})

    @classmethod
    def from_candidate(cls, candidate: CatalogCandidate, kind: ShelfKind) -> CollectableFields:
        """Build collectable fields from a catalog provider result."""
        return cls(
            kind=kind,
            title=candidate.title,
            primary_creator=candidate.creator,
            creators=list(candidate.creators),
            year=candidate.year,
            format=candidate.format,
            platform=candidate.platform,
            publisher=candidate.publisher,
            description=candidate.description,
            identifiers=dict(candidate.identifiers),
            images=list(candidate.images),
            tags=list(candidate.tags),
            sources=[candidate.provider],
        ).with_fingerprints()

    @classmethod
    def from_item(cls, item: ItemDescription, source: str) -> CollectableFields:
        """Build collectable fields from a detected or enriched item."""
        data: dict[str, Any] = {
            "kind": item.kind,
            "title": item.title,
            "primary_creator": item.creator,
            "creators": [item.creator] if item.creator else [],
            "year": item.year,
            "format": item.format,
            "platform": item.platform,
            "sources": [source],
        }
        if isinstance(item, EnrichedItem):
            data.update(
                subtitle=item.subtitle,
                publisher=item.publisher,
                description=item.description,
                identifiers=dict(item.identifiers),
                images=[item.cover_url] if item.cover_url else [],
                tags=list(item.tags),
            )
        return cls(**data).with_fingerprints()


class CollectableRecord(CollectableFields):
    """Canonical catalog entity for one real-world work."""

    id: str
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class ShelfItem(BaseModel):
    """Link between a user's shelf and a collectable."""

    id: str
    user_id: str
    shelf_id: str
    collectable_id: str
    created_at: datetime = Field(default_factory=_utc_now)


class ReviewItem(BaseModel):
    """A parked detection awaiting user adjudication."""

    id: str
    user_id: str
    shelf_id: str
    raw_data: dict[str, Any] = Field(default_factory=dict)
    confidence: float | None = None
    status: ReviewStatus = ReviewStatus.PENDING
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
