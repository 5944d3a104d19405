"""Finished video asset endpoints."""

from datetime import datetime

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict

from storyreel.api.deps import RepositoryDep
from storyreel.domain.enums import StoryStyle

router = APIRouter(prefix="/assets", tags=["Assets"])


class AssetResponse(BaseModel):
    """A finished video asset."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    style: StoryStyle
    thumbnail_url: str | None
    created_at: datetime
    preview_uri: str | None
    source_story_id: int | None


@router.get("", response_model=list[AssetResponse], summary="List assets")
async def list_assets(repository: RepositoryDep, q: str | None = None) -> list[AssetResponse]:
    """List assets, optionally filtered by a title substring."""
    assets = await repository.list_assets(q)
    return [AssetResponse.model_validate(a) for a in assets]


@router.delete("/{asset_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete asset")
async def delete_asset(asset_id: int, repository: RepositoryDep) -> None:
    """Delete an asset. Its source story is kept."""
    await repository.delete_asset(asset_id)
