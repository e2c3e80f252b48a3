"""
Vision Extraction
=================

Detects items in a shelf photo using a multimodal AI client.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from shelf_agent.core.enums import ShelfKind
from shelf_agent.core.schema import DetectedItem
from shelf_agent.pipeline.gateways import ExtractionAdapter, ExtractionError
from shelf_agent.services.ai.client import AIClient, extract_json
from shelf_agent.services.ai.prompts import EXTRACTION_SYSTEM_PROMPT, build_extraction_prompt

logger = logging.getLogger(__name__)

# Used when the model omits a confidence; lands below the default review floor.
DEFAULT_DETECTION_CONFIDENCE = 0.5


def _coerce_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_DETECTION_CONFIDENCE
    return min(max(confidence, 0.0), 1.0)


class VisionExtractor(ExtractionAdapter):
    """Extraction adapter backed by an AIClient with image support."""

    def __init__(self, client: AIClient | None):
        self.client = client

    async def detect(self, image: bytes, kind: ShelfKind) -> list[DetectedItem]:
        """
        Detect items on a shelf photo.

        Args:
            image: Raw image bytes.
            kind: Shelf kind; every detection is tagged with it.

        Returns:
            Detected items in the order the model listed them.

        Raises:
            ExtractionError: If no client is configured, the call fails, or
                the response is not a JSON array.
        """
        if self.client is None:
            raise ExtractionError("No AI provider configured for extraction")
        if not image:
            raise ExtractionError("Image is empty")

        result = await asyncio.to_thread(
            self.client.generate,
            build_extraction_prompt(kind),
            EXTRACTION_SYSTEM_PROMPT,
            image,
        )
        if not result.success:
            raise ExtractionError(result.error_message or "Vision request failed")

        try:
            data = extract_json(result.raw_response)
        except ValueError as e:
            raise ExtractionError(str(e)) from e

        if isinstance(data, dict):
            data = data.get("items")
        if not isinstance(data, list):
            raise ExtractionError("Vision response is not a JSON array")

        items = self._parse_items(data, kind)
        logger.info(f"Vision extraction found {len(items)} item(s) of {len(data)} entries")
        return items

    def _parse_items(self, entries: list[Any], kind: ShelfKind) -> list[DetectedItem]:
        items: list[DetectedItem] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            title = entry.get("title") or entry.get("name")
            if not title or not str(title).strip():
                continue
            try:
                items.append(
                    DetectedItem(
                        title=title,
                        creator=entry.get("creator") or entry.get("author"),
                        kind=kind,
                        year=entry.get("year"),
                        format=entry.get("format"),
                        platform=entry.get("platform"),
                        confidence=_coerce_confidence(entry.get("confidence")),
                    )
                )
            except ValidationError as e:
                logger.warning(f"Skipping malformed detection {entry!r}: {e}")
        return items
