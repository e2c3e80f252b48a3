"""Confidence router: partitions detections into High, Medium and Low tiers."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from shelf_agent.core.enums import ConfidenceTier
from shelf_agent.core.schema import DetectedItem

DEFAULT_MAX_THRESHOLD = 0.92
DEFAULT_MIN_THRESHOLD = 0.85


@dataclass
class RoutedItems:
    """Detections partitioned by tier, each keeping input order."""

    high: list[DetectedItem] = field(default_factory=list)
    medium: list[DetectedItem] = field(default_factory=list)
    low: list[DetectedItem] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {"high": len(self.high), "medium": len(self.medium), "low": len(self.low)}


class ConfidenceRouter:
    """
    Stateless tiering over two thresholds.

    Tiers are half-open: High is [max, 1], Medium is [min, max), Low is
    [0, min). A confidence equal to a threshold lands in the upper tier.
    """

    def __init__(
        self,
        max_threshold: float = DEFAULT_MAX_THRESHOLD,
        min_threshold: float = DEFAULT_MIN_THRESHOLD,
    ) -> None:
        if not 0.0 <= min_threshold <= max_threshold <= 1.0:
            raise ValueError(
                f"Thresholds must satisfy 0 <= min <= max <= 1 "
                f"(got min={min_threshold}, max={max_threshold})"
            )
        self.max_threshold = max_threshold
        self.min_threshold = min_threshold

    def tier_for(self, confidence: float) -> ConfidenceTier:
        if confidence >= self.max_threshold:
            return ConfidenceTier.HIGH
        if confidence >= self.min_threshold:
            return ConfidenceTier.MEDIUM
        return ConfidenceTier.LOW

    def is_below_floor(self, confidence: float) -> bool:
        """Whether a confidence falls in the Low tier."""
        return confidence < self.min_threshold

    def route(self, items: Iterable[DetectedItem]) -> RoutedItems:
        routed = RoutedItems()
        buckets = {
            ConfidenceTier.HIGH: routed.high,
            ConfidenceTier.MEDIUM: routed.medium,
            ConfidenceTier.LOW: routed.low,
        }
        for item in items:
            buckets[self.tier_for(item.confidence)].append(item)
        return routed
