"""FastAPI dependencies for caller identity and shared pipeline components.

Components are built once in the application lifespan and stored on
``app.state``; routes reach them through these dependencies so tests can
swap them with ``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from shelf_agent.pipeline.factory import PipelineComponents
from shelf_agent.pipeline.jobs import JobTracker
from shelf_agent.pipeline.matching import MatchingService
from shelf_agent.pipeline.orchestrator import PipelineOrchestrator
from shelf_agent.pipeline.review import ReviewService


def get_current_user(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Dependency resolving the calling user from the X-User-Id header.

    Raises:
        HTTPException: 401 if the header is missing or blank.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_components(request: Request) -> PipelineComponents:
    """Dependency returning the components built at startup."""
    components = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(status_code=503, detail="Pipeline is not initialized")
    return components


def get_tracker(components: Annotated[PipelineComponents, Depends(get_components)]) -> JobTracker:
    return components.tracker


def get_orchestrator(
    components: Annotated[PipelineComponents, Depends(get_components)],
) -> PipelineOrchestrator:
    return components.orchestrator


def get_matching(components: Annotated[PipelineComponents, Depends(get_components)]) -> MatchingService:
    return components.matching


def get_review_service(
    components: Annotated[PipelineComponents, Depends(get_components)],
) -> ReviewService:
    return components.review_service


CurrentUser = Annotated[str, Depends(get_current_user)]
