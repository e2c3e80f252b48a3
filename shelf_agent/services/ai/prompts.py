"""Prompt templates for shelf extraction and enrichment."""

from __future__ import annotations

import json
from collections.abc import Sequence

from shelf_agent.core.enums import EnrichmentMode, ShelfKind
from shelf_agent.core.schema import ItemDescription

PROMPT_VERSION = "1.0"

EXTRACTION_SYSTEM_PROMPT = """You catalog physical collections from photographs.
You read spines, covers and cases and report only what is actually visible.
You always answer with JSON and nothing else."""

ENRICHMENT_SYSTEM_PROMPT = """You are an expert librarian and cataloguer.
You turn rough item descriptions into catalog-quality metadata comparable to
Open Library, TMDb or IGDB records. You never invent identifiers you are not
sure of and you report your confidence honestly.
You always answer with JSON and nothing else."""

CATEGORY_INSTRUCTIONS: dict[ShelfKind, str] = {
    ShelfKind.BOOK: (
        "For books include ISBN-10 and ISBN-13 in identifiers when known, the binding "
        "format (Hardcover, Paperback, Mass Market) and series name and number if any. "
        "Use https://covers.openlibrary.org/b/isbn/{ISBN}-L.jpg as coverUrl when the ISBN is known."
    ),
    ShelfKind.GAME: (
        "For games include the platform, developer as primaryCreator, publisher, "
        "release year and the physical format (cartridge, disc) when visible."
    ),
    ShelfKind.MOVIE: (
        "For movies include the director as primaryCreator, studio as publisher, "
        "release year and the physical format (DVD, Blu-ray, 4K UHD)."
    ),
    ShelfKind.MUSIC: (
        "For music include the artist as primaryCreator, record label as publisher, "
        "release year and the format (CD, Vinyl, Cassette)."
    ),
    ShelfKind.OTHER: "Describe the item as precisely as the text allows.",
}

ENRICHMENT_OUTPUT_SCHEMA = {
    "index": "integer - position of the input item",
    "title": "string - corrected full title",
    "subtitle": "string or null",
    "primaryCreator": "string or null - author/developer/director/artist",
    "year": "string or null - 4 digit publication/release year",
    "publishers": ["publisher names"],
    "tags": ["genres, categories"],
    "identifiers": {"isbn13": "...", "isbn10": "...", "asin": "..."},
    "description": "string or null - one or two sentences",
    "format": "string or null - physical format",
    "platform": "string or null - games only",
    "coverUrl": "string or null",
    "confidence": "number 0.0-1.0",
}


def build_extraction_prompt(kind: ShelfKind) -> str:
    """
    Build the vision prompt for detecting items on a shelf.

    Args:
        kind: Shelf kind, used to tell the model what to look for.
    """
    return f"""Identify every distinct item visible on this {kind.value} shelf.

Return ONLY a JSON array. Each element must be an object with:
- "title": string, the title as printed
- "creator": string or null (author, developer, director or artist)
- "year": string or null, only if printed
- "format": string or null (e.g. Paperback, Blu-ray, Vinyl)
- "platform": string or null (games only, e.g. PS5, Switch)
- "confidence": number from 0 to 1 for how sure you are of the title

If no items are visible return []. No markdown, no explanations."""


def build_enrichment_prompt(
    items: Sequence[ItemDescription],
    kind: ShelfKind,
    mode: EnrichmentMode,
) -> str:
    """
    Build the enrichment prompt for a batch of items.

    Args:
        items: Items to enrich, in order.
        kind: Shelf kind of every item.
        mode: STANDARD for confident titles, UNCERTAIN for degraded OCR.
    """
    lines = []
    for index, item in enumerate(items):
        line = f'{index}. "{item.title}"'
        if item.creator:
            line += f" by {item.creator}"
        if item.platform:
            line += f" [{item.platform}]"
        lines.append(line)
    item_text = "\n".join(lines)

    schema = dict(ENRICHMENT_OUTPUT_SCHEMA)
    if mode == EnrichmentMode.UNCERTAIN:
        schema["confidence"] = (
            "number 0.0-1.0 - be honest: 0.9+ only if certain, 0.6-0.8 for educated guesses"
        )
        schema["_originalTitle"] = "string - the exact input text, unchanged"
        task = f"""These items were read from a {kind.value} shelf by OCR and recognition is
UNCERTAIN or PARTIAL. Text may be incomplete or misspelled.

1. Make your best guess at the real-world item.
2. Correct OCR errors (missing letters, garbled or partial titles).
3. If an input is only a creator name and you cannot tell which work it is,
   return title null rather than guessing a specific work.
4. Report low confidence instead of fabricating certainty."""
    else:
        task = f"""These items were read from a {kind.value} shelf.

1. Correct any OCR errors in titles and names.
2. Identify the real-world item.
3. Fill in catalog metadata."""

    return f"""{task}

Input items:
{item_text}

{CATEGORY_INSTRUCTIONS.get(kind, CATEGORY_INSTRUCTIONS[ShelfKind.OTHER])}

Return ONLY a JSON array with exactly one object per input item, in input order,
each following this schema:
{json.dumps(schema, indent=2)}"""
