"""Assemble pipeline components from configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from shelf_agent.catalog.chain import CatalogResolutionChain, build_default_chain
from shelf_agent.catalog.registry import SettingsRegistry, get_default_registry
from shelf_agent.db.engine import get_session_factory
from shelf_agent.db.repositories import SessionFactory, SqlPersistenceGateway, SqlReviewQueue
from shelf_agent.pipeline.gateways import (
    EnrichmentAdapter,
    ExtractionAdapter,
    PersistenceGateway,
    ReviewQueueGateway,
)
from shelf_agent.pipeline.jobs import JobTracker
from shelf_agent.pipeline.matching import MatchingService
from shelf_agent.pipeline.orchestrator import PipelineOrchestrator
from shelf_agent.pipeline.review import ReviewService
from shelf_agent.pipeline.router import ConfidenceRouter

logger = logging.getLogger(__name__)


@dataclass
class PipelineComponents:
    """Everything the web and CLI layers need, built once per process."""

    registry: SettingsRegistry
    tracker: JobTracker
    chain: CatalogResolutionChain
    persistence: PersistenceGateway
    review_queue: ReviewQueueGateway
    matching: MatchingService
    orchestrator: PipelineOrchestrator
    review_service: ReviewService


def build_pipeline(
    registry: SettingsRegistry | None = None,
    session_factory: SessionFactory | None = None,
    extractor: ExtractionAdapter | None = None,
    enricher: EnrichmentAdapter | None = None,
    chain: CatalogResolutionChain | None = None,
    persistence: PersistenceGateway | None = None,
    review_queue: ReviewQueueGateway | None = None,
    tracker: JobTracker | None = None,
) -> PipelineComponents:
    """
    Build the full set of pipeline components.

    Anything not supplied is created from the settings registry, the
    default database session factory and the AI provider configured in
    the environment.

    Args:
        registry: Settings registry (defaults to the process-wide one).
        session_factory: SQLAlchemy session factory for the SQL gateways.
        extractor: Extraction adapter override.
        enricher: Enrichment adapter override.
        chain: Catalog chain override.
        persistence: Persistence gateway override.
        review_queue: Review queue override.
        tracker: Job tracker override.

    Returns:
        PipelineComponents sharing one tracker, chain and persistence layer.
    """
    registry = registry or get_default_registry()

    if extractor is None or enricher is None:
        from shelf_agent.services.ai import AIEnricher, VisionExtractor, get_ai_client_from_env

        client = get_ai_client_from_env()
        if client is None:
            logger.warning("No AI provider configured; extraction will fail and enrichment falls back")
        else:
            logger.info(f"Using AI provider {client.provider.value} ({client.model})")
        extractor = extractor or VisionExtractor(client)
        enricher = enricher or AIEnricher(client)

    if persistence is None or review_queue is None:
        session_factory = session_factory or get_session_factory()
        persistence = persistence or SqlPersistenceGateway(session_factory)
        review_queue = review_queue or SqlReviewQueue(session_factory)

    chain = chain or build_default_chain(registry)
    if tracker is None:
        tracker = JobTracker(
            ttl_seconds=registry.jobs.ttl_seconds,
            sweep_interval_seconds=registry.jobs.sweep_interval_seconds,
        )
    matching = MatchingService(
        persistence,
        chain=chain,
        search_threshold=registry.matching.search_threshold,
        auto_match_threshold=registry.matching.auto_match_threshold,
        suggestion_limit=registry.matching.suggestion_limit,
    )
    router = ConfidenceRouter(
        max_threshold=registry.confidence.max_threshold,
        min_threshold=registry.confidence.min_threshold,
    )
    orchestrator = PipelineOrchestrator(
        extractor=extractor,
        enricher=enricher,
        matching=matching,
        chain=chain,
        persistence=persistence,
        review_queue=review_queue,
        router=router,
        tracker=tracker,
    )
    return PipelineComponents(
        registry=registry,
        tracker=tracker,
        chain=chain,
        persistence=persistence,
        review_queue=review_queue,
        matching=matching,
        orchestrator=orchestrator,
        review_service=ReviewService(review_queue, matching, persistence),
    )
