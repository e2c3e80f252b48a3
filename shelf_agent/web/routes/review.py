"""Review queue routes."""

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from shelf_agent.pipeline.review import (
    ReviewItemNotFoundError,
    ReviewQueueUnavailableError,
    ReviewService,
)
from shelf_agent.web.dependencies import CurrentUser, get_review_service

router = APIRouter(prefix="/shelves/{shelf_id}/review", tags=["review"])


class CompleteReviewRequest(BaseModel):
    """User corrections applied over the parked payload."""

    edits: dict[str, Any] = Field(default_factory=dict)


@router.get("")
async def list_review_items(
    shelf_id: str,
    user_id: CurrentUser,
    service: ReviewService = Depends(get_review_service),
) -> JSONResponse:
    """Pending review items for a shelf."""
    items = await asyncio.to_thread(service.review_queue.list_pending, user_id, shelf_id)
    return JSONResponse({
        "items": [item.model_dump(mode="json") for item in items],
        "available": service.review_queue.available,
    })


@router.post("/{review_id}/complete")
async def complete_review_item(
    shelf_id: str,
    review_id: str,
    user_id: CurrentUser,
    body: CompleteReviewRequest | None = None,
    service: ReviewService = Depends(get_review_service),
) -> JSONResponse:
    """Resolve a review item into a collectable on the shelf."""
    try:
        completion = await asyncio.to_thread(
            service.complete,
            review_id,
            user_id,
            edits=body.edits if body else None,
            shelf_id=shelf_id,
        )
    except ReviewItemNotFoundError:
        raise HTTPException(status_code=404, detail="Review item not found")
    except ReviewQueueUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return JSONResponse(completion.to_dict())


@router.post("/{review_id}/dismiss")
async def dismiss_review_item(
    shelf_id: str,
    review_id: str,
    user_id: CurrentUser,
    service: ReviewService = Depends(get_review_service),
) -> JSONResponse:
    """Dismiss a review item."""
    try:
        dismissed = await asyncio.to_thread(service.dismiss, review_id, user_id, shelf_id=shelf_id)
    except ReviewItemNotFoundError:
        raise HTTPException(status_code=404, detail="Review item not found")
    except ReviewQueueUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return JSONResponse({"dismissed": dismissed})
