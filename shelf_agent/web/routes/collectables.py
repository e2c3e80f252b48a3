"""Collectable search route."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from shelf_agent.core.enums import ShelfKind
from shelf_agent.core.schema import ItemDescription
from shelf_agent.pipeline.matching import MatchingService
from shelf_agent.web.dependencies import CurrentUser, get_matching

router = APIRouter(prefix="/collectables", tags=["collectables"])


class SearchRequest(BaseModel):
    """Search input for manual matching."""

    title: str = Field(min_length=1)
    creator: str | None = None
    kind: ShelfKind | str = ShelfKind.OTHER
    year: int | None = None
    include_api: bool = True


@router.post("/search")
async def search_collectables(
    body: SearchRequest,
    _user_id: CurrentUser,
    matching: MatchingService = Depends(get_matching),
) -> JSONResponse:
    """
    Suggest existing collectables, falling back to the catalog chain.

    Returns:
        JSON with suggestions and which sources were searched.
    """
    item = ItemDescription(title=body.title, creator=body.creator, kind=body.kind, year=body.year)
    result = await matching.search(item, item.kind, include_api=body.include_api)
    return JSONResponse(result.to_dict())
