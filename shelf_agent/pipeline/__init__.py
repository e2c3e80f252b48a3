"""
Shelf Agent Pipeline
====================

Confidence routing, record matching, the job tracker and the staged
orchestrator that turns a shelf photo into collectables and review items.

Wiring against the database and AI providers lives in
shelf_agent.pipeline.factory.
"""

from shelf_agent.pipeline.gateways import (
    EnrichmentAdapter,
    ExtractionAdapter,
    ExtractionError,
    PersistenceGateway,
    ReviewQueueGateway,
)
from shelf_agent.pipeline.jobs import JobAccessDeniedError, JobNotFoundError, JobStatus, JobTracker
from shelf_agent.pipeline.router import ConfidenceRouter, RoutedItems

__all__ = [
    "ConfidenceRouter",
    "EnrichmentAdapter",
    "ExtractionAdapter",
    "ExtractionError",
    "JobAccessDeniedError",
    "JobNotFoundError",
    "JobStatus",
    "JobTracker",
    "PersistenceGateway",
    "ReviewQueueGateway",
    "RoutedItems",
]
