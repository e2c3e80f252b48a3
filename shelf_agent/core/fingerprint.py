"""
Fingerprint Engine
==================

Pure functions producing the three dedup keys carried by a collectable:

- Lightweight: normalized title + creator + kind. The primary dedup key.
- Strong: lightweight inputs plus year and format, for catalog-confirmed records.
- Fuzzy-OCR: an aggressively folded variant computed from raw extraction text,
  accumulated on a record so future noisy rescans of the same object match it.

All keys are hex SHA-1 digests over a pipe-joined component string.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata

from shelf_agent.core.enums import ShelfKind, normalize_kind

# Punctuation kept because it changes meaning ("C#", "Rock & Roll", "Doom + ")
_SIGNIFICANT_PUNCTUATION = frozenset("&+#")
_APOSTROPHES = frozenset("'’‘`")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

# Absent components hash as this placeholder, never as "None" or "null"
_EMPTY = ""


def normalize_component(value: object | None) -> str:
    """
    Normalize one fingerprint component.

    Trims, lowercases, drops apostrophes, turns other non-significant
    punctuation into spaces and collapses whitespace. Accents are kept.

    Args:
        value: Raw component value (title, creator, format...).

    Returns:
        Normalized string, or the empty placeholder for missing values.
    """
    if value is None:
        return _EMPTY
    text = unicodedata.normalize("NFC", str(value)).casefold()
    chars = []
    for ch in text:
        if ch in _APOSTROPHES:
            continue
        if ch in _SIGNIFICANT_PUNCTUATION:
            chars.append(ch)
        elif unicodedata.category(ch)[0] in ("P", "S"):
            chars.append(" ")
        else:
            chars.append(ch)
    return _WHITESPACE_RE.sub(" ", "".join(chars)).strip()


def fold_ocr_component(value: object | None) -> str:
    """
    Fold a raw OCR component down to ascii alphanumerics.

    Used only for fuzzy-OCR fingerprints, where diacritics and
    punctuation are more likely to be misread than meaningful.
    """
    if value is None:
        return _EMPTY
    decomposed = unicodedata.normalize("NFKD", str(value))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM_RE.sub(" ", stripped.lower()).strip()


def _kind_component(kind: ShelfKind | str | None) -> str:
    return normalize_kind(kind).value


def _year_component(year: int | str | None) -> str:
    if year is None or year == "":
        return _EMPTY
    match = re.search(r"\d{4}", str(year))
    return match.group(0) if match else normalize_component(year)


def _digest(parts: list[str]) -> str:
    return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()


def lightweight_fingerprint(
    title: str | None,
    creator: str | None,
    kind: ShelfKind | str | None,
) -> str | None:
    """
    Compute the lightweight fingerprint.

    Args:
        title: Item title.
        creator: Primary creator (author, developer, director...), may be None.
        kind: Shelf kind or one of its aliases.

    Returns:
        Hex digest, or None when the title normalizes to nothing.
    """
    norm_title = normalize_component(title)
    if not norm_title:
        return None
    return _digest([norm_title, normalize_component(creator), _kind_component(kind)])


def strong_fingerprint(
    title: str | None,
    creator: str | None,
    kind: ShelfKind | str | None,
    year: int | str | None,
    format: str | None = None,
) -> str | None:
    """
    Compute the strong fingerprint.

    Args:
        title: Item title.
        creator: Primary creator, may be None.
        kind: Shelf kind or one of its aliases.
        year: Release or publication year.
        format: Optional physical/edition format (hardcover, blu-ray...).

    Returns:
        Hex digest, or None when the title normalizes to nothing.
    """
    norm_title = normalize_component(title)
    if not norm_title:
        return None
    return _digest(
        [
            norm_title,
            normalize_component(creator),
            _year_component(year),
            _kind_component(kind),
            normalize_component(format),
        ]
    )


def fuzzy_ocr_fingerprint(
    title: str | None,
    creator: str | None,
    kind: ShelfKind | str | None,
) -> str | None:
    """
    Compute the fuzzy-OCR fingerprint from raw extraction text.

    Returns:
        Hex digest, or None when the title folds to nothing.
    """
    folded_title = fold_ocr_component(title)
    if not folded_title:
        return None
    return _digest(
        ["ocr", folded_title, fold_ocr_component(creator), _kind_component(kind)]
    )
