"""Enumerations shared across the resolution pipeline."""

from __future__ import annotations

from enum import Enum


class ShelfKind(str, Enum):
    """Canonical kind of a shelf and of the items placed on it."""

    BOOK = "book"
    GAME = "game"
    MOVIE = "movie"
    MUSIC = "music"
    OTHER = "other"


# Free-form shelf type names mapped to their canonical kind
KIND_ALIASES: dict[str, ShelfKind] = {
    "book": ShelfKind.BOOK,
    "books": ShelfKind.BOOK,
    "novel": ShelfKind.BOOK,
    "novels": ShelfKind.BOOK,
    "manga": ShelfKind.BOOK,
    "comic": ShelfKind.BOOK,
    "comics": ShelfKind.BOOK,
    "game": ShelfKind.GAME,
    "games": ShelfKind.GAME,
    "videogame": ShelfKind.GAME,
    "videogames": ShelfKind.GAME,
    "video game": ShelfKind.GAME,
    "video games": ShelfKind.GAME,
    "movie": ShelfKind.MOVIE,
    "movies": ShelfKind.MOVIE,
    "film": ShelfKind.MOVIE,
    "films": ShelfKind.MOVIE,
    "dvd": ShelfKind.MOVIE,
    "bluray": ShelfKind.MOVIE,
    "blu-ray": ShelfKind.MOVIE,
    "music": ShelfKind.MUSIC,
    "album": ShelfKind.MUSIC,
    "albums": ShelfKind.MUSIC,
    "record": ShelfKind.MUSIC,
    "records": ShelfKind.MUSIC,
    "vinyl": ShelfKind.MUSIC,
    "cd": ShelfKind.MUSIC,
    "other": ShelfKind.OTHER,
}


def normalize_kind(value: ShelfKind | str | None) -> ShelfKind:
    """
    Resolve a free-form shelf type to a canonical ShelfKind.

    Unknown or empty values map to ShelfKind.OTHER.
    """
    if isinstance(value, ShelfKind):
        return value
    if not value:
        return ShelfKind.OTHER
    key = " ".join(str(value).strip().lower().replace("_", " ").split())
    return KIND_ALIASES.get(key, ShelfKind.OTHER)


class ConfidenceTier(str, Enum):
    """Routing class derived from an extraction confidence."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FingerprintKind(str, Enum):
    """The three dedup keys carried by a collectable."""

    STRONG = "strong"
    LIGHTWEIGHT = "lightweight"
    FUZZY = "fuzzy"


class MatchSource(str, Enum):
    """Strategy that produced a match."""

    FINGERPRINT = "fingerprint"
    FUZZY_FINGERPRINT = "fuzzy_fingerprint"
    FUZZY_MATCH = "fuzzy_match"
    API = "api"
    CATALOG_MATCH = "catalog-match"
    ENRICHMENT = "enrichment"


class EnrichmentMode(str, Enum):
    """Prompting mode for the enrichment provider."""

    STANDARD = "standard"
    UNCERTAIN = "uncertain"


class ReviewStatus(str, Enum):
    """Lifecycle of a parked review item."""

    PENDING = "pending"
    COMPLETED = "completed"
    DISMISSED = "dismissed"
