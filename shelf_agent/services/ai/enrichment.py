"""
AI Enrichment
=============

Completes catalog metadata for detected items with a text AI client.

The adapter always returns one EnrichedItem per input, in input order.
Inputs the model could not describe get a fallback record instead.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from shelf_agent.core.enums import EnrichmentMode, ShelfKind
from shelf_agent.core.schema import FALLBACK_CONFIDENCE, EnrichedItem, ItemDescription
from shelf_agent.pipeline.gateways import EnrichmentAdapter
from shelf_agent.services.ai.client import AIClient, extract_json
from shelf_agent.services.ai.prompts import ENRICHMENT_SYSTEM_PROMPT, build_enrichment_prompt

logger = logging.getLogger(__name__)


def _str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    return []


class AIEnricher(EnrichmentAdapter):
    """Enrichment adapter backed by an AIClient."""

    def __init__(self, client: AIClient | None):
        self.client = client

    async def enrich(
        self,
        items: Sequence[ItemDescription],
        kind: ShelfKind,
        mode: EnrichmentMode,
    ) -> list[EnrichedItem]:
        if not items:
            return []
        if self.client is None:
            logger.warning("No AI provider configured; using fallback enrichment")
            return self._fallbacks(items, kind, mode)

        prompt = build_enrichment_prompt(items, kind, mode)
        result = await asyncio.to_thread(self.client.generate, prompt, ENRICHMENT_SYSTEM_PROMPT)
        if not result.success:
            logger.warning(f"Enrichment request failed: {result.error_message}")
            return self._fallbacks(items, kind, mode)

        try:
            data = extract_json(result.raw_response)
        except ValueError as e:
            logger.warning(f"Enrichment response unparseable: {e}")
            return self._fallbacks(items, kind, mode)

        if isinstance(data, dict):
            data = data.get("items")
        if not isinstance(data, list):
            logger.warning("Enrichment response is not a JSON array")
            return self._fallbacks(items, kind, mode)

        by_index = self._align(data, len(items))
        enriched = [
            self._coerce(by_index.get(i), item, kind, mode) for i, item in enumerate(items)
        ]
        fallbacks = sum(1 for e in enriched if e.fallback)
        logger.info(
            f"Enriched {len(items) - fallbacks}/{len(items)} {kind.value} item(s) "
            f"in {mode.value} mode"
        )
        return enriched

    @staticmethod
    def _align(entries: list[Any], count: int) -> dict[int, Any]:
        """Map entries to input positions, by explicit index if every entry has one."""
        indexed = [
            e for e in entries if isinstance(e, dict) and isinstance(e.get("index"), int)
        ]
        if entries and len(indexed) == len(entries):
            return {e["index"]: e for e in indexed if 0 <= e["index"] < count}
        return {i: e for i, e in enumerate(entries[:count])}

    @staticmethod
    def _fallbacks(
        items: Sequence[ItemDescription], kind: ShelfKind, mode: EnrichmentMode
    ) -> list[EnrichedItem]:
        return [EnrichedItem.fallback_for(item, kind, mode) for item in items]

    def _coerce(
        self,
        entry: Any,
        item: ItemDescription,
        kind: ShelfKind,
        mode: EnrichmentMode,
    ) -> EnrichedItem:
        if not isinstance(entry, dict):
            return EnrichedItem.fallback_for(item, kind, mode)
        title = entry.get("title")
        if not title or not str(title).strip():
            return EnrichedItem.fallback_for(item, kind, mode)

        publishers = _str_list(entry.get("publishers") or entry.get("publisher"))
        identifiers = entry.get("identifiers")
        try:
            return EnrichedItem(
                title=title,
                creator=entry.get("primaryCreator") or entry.get("creator") or item.creator,
                kind=kind,
                year=entry.get("year") or item.year,
                format=entry.get("format") or item.format,
                platform=entry.get("platform") or item.platform,
                confidence=entry.get("confidence", FALLBACK_CONFIDENCE),
                subtitle=entry.get("subtitle"),
                publisher=publishers[0] if publishers else None,
                description=entry.get("description"),
                tags=_str_list(entry.get("tags")),
                identifiers=identifiers if isinstance(identifiers, dict) else {},
                cover_url=entry.get("coverUrl") or entry.get("cover_url"),
                original_title=(
                    entry.get("_originalTitle") or entry.get("original_title") or item.title
                ),
                mode=mode,
            )
        except ValidationError as e:
            logger.warning(f"Invalid enrichment entry for '{item.title}': {e}")
            return EnrichedItem.fallback_for(item, kind, mode)
