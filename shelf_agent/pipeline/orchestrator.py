"""
Pipeline Orchestrator
=====================

Drives one shelf photo through the resolution pipeline:

1. Extracting - detect items in the image (failure fails the run)
2. Routing - split detections into High / Medium / Low confidence tiers
3. Matching - fingerprint/similarity lookups against persisted records (High, Medium)
4. Catalog - provider lookups for unmatched High items
5. Enriching - standard enrichment for unresolved High items, uncertain
   enrichment for unmatched Medium items
6. Filtering - re-tier enriched items; anything below the floor goes to review
7. Persisting - upsert and attach accepted items one at a time
8. Review - park Low and filtered items in the review queue

Abort requests are honored at every stage boundary. Items are processed
sequentially outside the catalog stage so create-or-reuse decisions within
one run never race: detections sharing a lightweight fingerprint always land
on the same collectable. Blocking storage calls run in worker threads so a
background run never stalls status or abort requests.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from shelf_agent.catalog.chain import CatalogResolutionChain
from shelf_agent.core.enums import EnrichmentMode, MatchSource, ShelfKind, normalize_kind
from shelf_agent.core.schema import (
    CollectableFields,
    CollectableRecord,
    DetectedItem,
    EnrichedItem,
    ShelfItem,
)
from shelf_agent.pipeline.gateways import (
    EnrichmentAdapter,
    ExtractionAdapter,
    ExtractionError,
    PersistenceGateway,
    ReviewQueueGateway,
)
from shelf_agent.pipeline.jobs import (
    CancellationToken,
    JobNotFoundError,
    JobTracker,
    ProcessingJob,
)
from shelf_agent.pipeline.matching import MatchingService
from shelf_agent.pipeline.router import ConfidenceRouter

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    """Stage names reported on the job while a run progresses."""

    EXTRACTING = "extracting"
    ROUTING = "routing"
    MATCHING = "matching"
    CATALOG = "catalog"
    ENRICHING = "enriching"
    FILTERING = "filtering"
    PERSISTING = "persisting"
    REVIEW = "review"


STAGE_PROGRESS: dict[PipelineStage, int] = {
    PipelineStage.EXTRACTING: 5,
    PipelineStage.ROUTING: 15,
    PipelineStage.MATCHING: 25,
    PipelineStage.CATALOG: 40,
    PipelineStage.ENRICHING: 55,
    PipelineStage.FILTERING: 70,
    PipelineStage.PERSISTING: 80,
    PipelineStage.REVIEW: 92,
}


@dataclass
class ShelfTarget:
    """The shelf a run adds items to."""

    user_id: str
    shelf_id: str
    kind: ShelfKind

    def __post_init__(self) -> None:
        self.user_id = str(self.user_id)
        self.shelf_id = str(self.shelf_id)
        self.kind = normalize_kind(self.kind)


@dataclass
class PipelineResult:
    """Outcome of a run."""

    added_count: int = 0
    needs_review_count: int = 0
    warnings: list[dict[str, Any]] = field(default_factory=list)
    added: list[dict[str, Any]] = field(default_factory=list)
    needs_review: list[dict[str, Any]] = field(default_factory=list)
    tiers: dict[str, int] = field(default_factory=dict)
    stage: str | None = None

    def warn(self, type: str, message: str, **extra: Any) -> None:
        self.warnings.append({"type": type, "message": message, **extra})

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "addedCount": self.added_count,
            "needsReviewCount": self.needs_review_count,
            "warnings": self.warnings,
            "added": self.added,
            "needsReview": self.needs_review,
            "tiers": self.tiers,
        }


class PipelineAborted(Exception):
    """Raised at a stage boundary when the owning job asked to abort."""

    def __init__(self, stage: PipelineStage, result: PipelineResult) -> None:
        super().__init__(f"Aborted before {stage.value}")
        self.stage = stage
        self.result = result


@dataclass
class _Accepted:
    """An item cleared for persistence."""

    item: DetectedItem
    source: MatchSource
    record: CollectableRecord | None = None
    fields: CollectableFields | None = None


@dataclass
class _Parked:
    """An item headed for the review queue."""

    payload: dict[str, Any]
    confidence: float
    reason: str


class PipelineOrchestrator:
    """Top-level state machine for shelf photo runs."""

    def __init__(
        self,
        extractor: ExtractionAdapter,
        enricher: EnrichmentAdapter,
        matching: MatchingService,
        chain: CatalogResolutionChain,
        persistence: PersistenceGateway,
        review_queue: ReviewQueueGateway,
        router: ConfidenceRouter | None = None,
        tracker: JobTracker | None = None,
        lookup_retries: int | None = None,
    ) -> None:
        self.extractor = extractor
        self.enricher = enricher
        self.matching = matching
        self.chain = chain
        self.persistence = persistence
        self.review_queue = review_queue
        self.router = router or ConfidenceRouter()
        self.tracker = tracker if tracker is not None else JobTracker()
        self.lookup_retries = lookup_retries
        self._tasks: set[asyncio.Task[PipelineResult | None]] = set()

    # ------------------------------------------------------------------
    # Background execution
    # ------------------------------------------------------------------

    def submit(self, image: bytes, target: ShelfTarget) -> ProcessingJob:
        """
        Create a job and run the pipeline for it in a background task.

        Must be called from a running event loop. Callers poll or abort
        through the job tracker only.
        """
        job = self.tracker.create(target.user_id, target.shelf_id)
        task = asyncio.get_running_loop().create_task(self.execute(job.job_id, image, target))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job

    async def execute(self, job_id: str, image: bytes, target: ShelfTarget) -> PipelineResult | None:
        """
        Run the pipeline for an existing job and record its terminal state.

        Never raises; every outcome ends as completed, failed or aborted.
        Unknown, expired or already finished jobs are not run at all.
        """
        try:
            job = self.tracker.get(job_id)
        except JobNotFoundError:
            logger.warning(f"Job {job_id} is unknown or expired; not running")
            return None
        if job.is_terminal:
            logger.warning(f"Job {job_id} already {job.status.value}; not running")
            return None

        try:
            result = await self.run(image, target, job_id=job_id)
        except PipelineAborted as e:
            logger.info(f"Job {job_id} aborted before {e.stage.value}")
            if not self.tracker.mark_aborted(job_id, e.result.to_dict()):
                logger.warning(f"Job {job_id} is no longer tracked; abort not recorded")
            return None
        except ExtractionError as e:
            logger.error(f"Job {job_id} failed during extraction: {e}")
            if not self.tracker.fail(job_id, f"Extraction failed: {e}"):
                logger.warning(f"Job {job_id} is no longer tracked; failure not recorded")
            return None
        except Exception as e:
            logger.exception(f"Job {job_id} failed: {e}")
            if not self.tracker.fail(job_id, f"Processing failed: {e}"):
                logger.warning(f"Job {job_id} is no longer tracked; failure not recorded")
            return None

        if not self.tracker.complete(job_id, result.to_dict()):
            logger.warning(f"Job {job_id} expired before completion; result not recorded")
            return result
        logger.info(
            f"Job {job_id} complete: added={result.added_count} "
            f"needs_review={result.needs_review_count} warnings={len(result.warnings)}"
        )
        return result

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _checkpoint(
        self,
        stage: PipelineStage,
        result: PipelineResult,
        job_id: str | None,
        token: CancellationToken | None,
        message: str,
    ) -> None:
        if token is not None and token.requested:
            raise PipelineAborted(stage, result)
        result.stage = stage.value
        if job_id is not None and not self.tracker.update(
            job_id, step=stage.value, progress=STAGE_PROGRESS[stage], message=message
        ):
            # Expired or finished elsewhere; nobody can observe further work
            logger.warning(f"Job {job_id} is no longer tracked; stopping before {stage.value}")
            raise PipelineAborted(stage, result)
        logger.info(f"[{job_id or 'inline'}] {stage.value}: {message}")

    async def run(
        self,
        image: bytes,
        target: ShelfTarget,
        job_id: str | None = None,
    ) -> PipelineResult:
        """
        Run the pipeline once.

        Args:
            image: Photo bytes.
            target: Shelf receiving the items.
            job_id: Optional tracked job for progress and cancellation.

        Returns:
            PipelineResult with counts, warnings and per-item outcomes.

        Raises:
            ExtractionError: Extraction failed; nothing was processed.
            PipelineAborted: The job asked to abort at a stage boundary.
        """
        result = PipelineResult()
        token = self.tracker.token(job_id) if job_id is not None else None

        def checkpoint(stage: PipelineStage, message: str) -> None:
            self._checkpoint(stage, result, job_id, token, message)

        checkpoint(PipelineStage.EXTRACTING, "Detecting items...")
        detected = await self._extract(image, target.kind)

        checkpoint(PipelineStage.ROUTING, f"Routing {len(detected)} detected items...")
        routed = self.router.route(detected)
        result.tiers = routed.counts()

        checkpoint(PipelineStage.MATCHING, "Matching against existing collectables...")
        accepted: list[_Accepted] = []
        high_unmatched = await self._match_existing(routed.high, accepted, result)
        medium_unmatched = await self._match_existing(routed.medium, accepted, result)

        checkpoint(PipelineStage.CATALOG, f"Looking up {len(high_unmatched)} items in catalogs...")
        high_unresolved = await self._resolve_catalog(high_unmatched, target.kind, accepted, result)

        checkpoint(PipelineStage.ENRICHING, "Enriching unresolved items...")
        enriched = await self._enrich(high_unresolved, target.kind, EnrichmentMode.STANDARD, result)
        enriched += await self._enrich(medium_unmatched, target.kind, EnrichmentMode.UNCERTAIN, result)

        checkpoint(PipelineStage.FILTERING, "Filtering by enrichment confidence...")
        parked = [
            _Parked(
                payload={**item.model_dump(mode="json"), "reason": "low-confidence"},
                confidence=item.confidence,
                reason="low-confidence",
            )
            for item in routed.low
        ]
        self._filter_enriched(enriched, accepted, parked)

        checkpoint(PipelineStage.PERSISTING, f"Saving {len(accepted)} items...")
        await self._persist(accepted, target, result)

        checkpoint(PipelineStage.REVIEW, f"Queueing {len(parked)} items for review...")
        await self._queue_for_review(parked, target, result)

        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _extract(self, image: bytes, kind: ShelfKind) -> list[DetectedItem]:
        try:
            detected = await self.extractor.detect(image, kind)
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(str(e)) from e
        # Items always take the shelf's kind
        return [d if d.kind == kind else d.model_copy(update={"kind": kind}) for d in detected]

    async def _match_existing(
        self,
        items: Sequence[DetectedItem],
        accepted: list[_Accepted],
        result: PipelineResult,
    ) -> list[DetectedItem]:
        """Accept items that match a persisted record; return the rest."""
        unmatched = []
        for item in items:
            try:
                match = await asyncio.to_thread(self.matching.match_existing, item)
            except Exception as e:
                logger.error(f"Matching failed for '{item.title}': {e}")
                result.warn("match-error", str(e), title=item.title)
                match = None

            if match is not None and match.record is not None:
                # Matched records are accepted as-is: the post-enrichment
                # gate only rejects confidences below min, which a High or
                # Medium detection never has.
                accepted.append(_Accepted(item=item, source=match.source, record=match.record))
            else:
                unmatched.append(item)
        return unmatched

    async def _resolve_catalog(
        self,
        items: Sequence[DetectedItem],
        kind: ShelfKind,
        accepted: list[_Accepted],
        result: PipelineResult,
    ) -> list[DetectedItem]:
        """Accept catalog hits for High items; return the unresolved ones."""
        if not items:
            return []
        batch = await self.chain.lookup_many(items, kind, retries=self.lookup_retries)
        result.warnings.extend(w.to_dict() for w in batch.warnings)

        unresolved = []
        for lookup in batch.results:
            if lookup.resolved and lookup.candidate is not None:
                accepted.append(
                    _Accepted(
                        item=lookup.item,
                        source=MatchSource.CATALOG_MATCH,
                        fields=CollectableFields.from_candidate(lookup.candidate, kind),
                    )
                )
            else:
                unresolved.append(lookup.item)
        return unresolved

    async def _enrich(
        self,
        items: Sequence[DetectedItem],
        kind: ShelfKind,
        mode: EnrichmentMode,
        result: PipelineResult,
    ) -> list[tuple[DetectedItem, EnrichedItem]]:
        if not items:
            return []
        try:
            enriched = list(await self.enricher.enrich(items, kind, mode))
        except Exception as e:
            logger.warning(f"{mode.value} enrichment failed, using fallback records: {e}")
            enriched = []

        pairs = []
        for index, item in enumerate(items):
            record = enriched[index] if index < len(enriched) else None
            if record is None:
                record = EnrichedItem.fallback_for(item, kind, mode)
            if record.fallback:
                result.warn("enrichment-fallback", record.notes or "Enrichment failed", title=item.title)
            if record.kind != kind:
                record = record.model_copy(update={"kind": kind})
            pairs.append((item, record))
        return pairs

    def _filter_enriched(
        self,
        enriched: Sequence[tuple[DetectedItem, EnrichedItem]],
        accepted: list[_Accepted],
        parked: list[_Parked],
    ) -> None:
        for detected, record in enriched:
            if self.router.is_below_floor(record.confidence):
                parked.append(
                    _Parked(
                        payload={
                            **record.model_dump(mode="json"),
                            "detected": detected.model_dump(mode="json"),
                            "reason": "low-enrichment-confidence",
                        },
                        confidence=record.confidence,
                        reason="low-enrichment-confidence",
                    )
                )
            else:
                accepted.append(
                    _Accepted(
                        item=detected,
                        source=MatchSource.ENRICHMENT,
                        fields=CollectableFields.from_item(record, source=f"enrichment-{record.mode.value}"),
                    )
                )

    async def _persist(
        self,
        accepted: Sequence[_Accepted],
        target: ShelfTarget,
        result: PipelineResult,
    ) -> None:
        # Detected lightweight fingerprint -> record placed earlier in this run
        placed: dict[str, CollectableRecord] = {}
        for entry in accepted:
            try:
                record, shelf_item, created = await asyncio.to_thread(
                    self._place, entry, target, placed
                )
            except Exception as e:
                logger.error(f"Failed to persist '{entry.item.title}': {e}")
                result.warn("persist-error", str(e), title=entry.item.title)
                continue

            if not created:
                logger.info(f"'{entry.item.title}' is already on shelf {target.shelf_id}")
                continue

            result.added_count += 1
            result.added.append(
                {
                    "title": record.title,
                    "detectedTitle": entry.item.title,
                    "collectableId": record.id,
                    "shelfItemId": shelf_item.id,
                    "source": entry.source.value,
                }
            )

    def _place(
        self,
        entry: _Accepted,
        target: ShelfTarget,
        placed: dict[str, CollectableRecord],
    ) -> tuple[CollectableRecord, ShelfItem, bool]:
        """Create or reuse the collectable for an entry and attach it to the shelf."""
        key = entry.item.lightweight_fingerprint()
        record = placed.get(key) if key else None
        if record is None:
            record = entry.record
        if record is None:
            if entry.fields is None:
                raise ValueError(f"No collectable fields for '{entry.item.title}'")
            record = self.persistence.upsert(entry.fields)

        fuzzy = entry.item.fuzzy_fingerprint()
        if fuzzy and fuzzy not in record.fuzzy_fingerprints:
            record = self.persistence.add_fuzzy_fingerprint(record.id, fuzzy) or record
        if key:
            placed[key] = record

        shelf_item, created = self.persistence.attach_to_shelf(
            target.user_id, target.shelf_id, record.id
        )
        return record, shelf_item, created

    async def _queue_for_review(
        self,
        parked: Sequence[_Parked],
        target: ShelfTarget,
        result: PipelineResult,
    ) -> None:
        dropped = 0
        for entry in parked:
            if not self.review_queue.available:
                dropped += 1
                continue
            try:
                review_item = await asyncio.to_thread(
                    self.review_queue.enqueue,
                    target.user_id,
                    target.shelf_id,
                    entry.payload,
                    entry.confidence,
                )
            except Exception as e:
                logger.error(f"Failed to queue '{entry.payload.get('title')}' for review: {e}")
                result.warn("review-error", str(e), title=entry.payload.get("title"))
                continue

            if review_item is None:
                dropped += 1
                continue

            result.needs_review_count += 1
            result.needs_review.append(
                {
                    "reviewId": review_item.id,
                    "title": entry.payload.get("title"),
                    "confidence": entry.confidence,
                    "reason": entry.reason,
                }
            )

        if dropped:
            logger.warning(f"Review queue unavailable; dropped {dropped} items")
            result.warn("review-unavailable", f"Review queue unavailable; {dropped} items dropped")
