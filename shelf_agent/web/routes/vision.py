"""Shelf photo processing routes and the job status surface."""

import base64
import binascii
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from shelf_agent.core.enums import ShelfKind
from shelf_agent.pipeline.jobs import JobAccessDeniedError, JobNotFoundError, JobTracker
from shelf_agent.pipeline.orchestrator import PipelineOrchestrator, ShelfTarget
from shelf_agent.web.dependencies import CurrentUser, get_orchestrator, get_tracker

logger = logging.getLogger(__name__)

router = APIRouter(tags=["vision"])


class VisionRequest(BaseModel):
    """Body for submitting a shelf photo."""

    model_config = ConfigDict(populate_by_name=True)

    image_base64: str = Field(alias="imageBase64")
    kind: ShelfKind | str = ShelfKind.OTHER
    run_async: bool = Field(default=True, alias="async")


def _decode_image(data: str) -> bytes:
    # Accept data URIs as sent by browsers.
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        image = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="image_base64 is not valid base64")
    if not image:
        raise HTTPException(status_code=400, detail="image_base64 is empty")
    return image


def _job_or_error(tracker: JobTracker, job_id: str, user_id: str):
    try:
        return tracker.get(job_id, user_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except JobAccessDeniedError:
        raise HTTPException(status_code=403, detail="Job belongs to another user")


@router.post("/shelves/{shelf_id}/vision")
async def submit_shelf_photo(
    shelf_id: str,
    body: VisionRequest,
    user_id: CurrentUser,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
    tracker: JobTracker = Depends(get_tracker),
) -> JSONResponse:
    """
    Process a shelf photo.

    With async (the default) a background job is started and 202 is
    returned immediately; otherwise the pipeline runs inline and the
    terminal job snapshot is returned.
    """
    image = _decode_image(body.image_base64)
    target = ShelfTarget(user_id=user_id, shelf_id=shelf_id, kind=body.kind)

    if body.run_async:
        job = orchestrator.submit(image, target)
        logger.info(f"Queued vision job {job.job_id} for shelf {shelf_id}")
        return JSONResponse(
            {"jobId": job.job_id, "status": "processing"},
            status_code=202,
        )

    job = tracker.create(user_id, shelf_id)
    await orchestrator.execute(job.job_id, image, target)
    return JSONResponse(tracker.get(job.job_id, user_id).to_dict())


@router.get("/vision/{job_id}/status")
async def job_status(
    job_id: str,
    user_id: CurrentUser,
    tracker: JobTracker = Depends(get_tracker),
) -> JSONResponse:
    """Current snapshot of a job owned by the caller."""
    return JSONResponse(_job_or_error(tracker, job_id, user_id).to_dict())


@router.post("/vision/{job_id}/abort")
async def abort_job(
    job_id: str,
    user_id: CurrentUser,
    tracker: JobTracker = Depends(get_tracker),
) -> JSONResponse:
    """Request cancellation; false when the job already finished."""
    try:
        aborted = tracker.abort(job_id, user_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except JobAccessDeniedError:
        raise HTTPException(status_code=403, detail="Job belongs to another user")
    return JSONResponse({"aborted": aborted, "jobId": job_id})
