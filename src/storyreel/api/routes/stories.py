"""Story, shot and export endpoints."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from storyreel.api.deps import RepositoryDep
from storyreel.domain.enums import (
    ExportDestination,
    ShotStatus,
    StoryStyle,
    TransitionType,
    VideoTaskState,
)
from storyreel.domain.models import OperationResult
from storyreel.logging import get_logger
from storyreel.services.repository import StoryRepository

router = APIRouter(prefix="/stories", tags=["Stories"])
logger = get_logger(__name__)


class ShotResponse(BaseModel):
    """One shot of a story."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    story_id: int
    position: int
    title: str
    prompt: str
    narration: str
    thumbnail_url: str | None
    status: ShotStatus
    transition: TransitionType
    video_url: str | None
    audio_url: str | None
    video_status: VideoTaskState


class StoryResponse(BaseModel):
    """A story with its ordered shots."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    synopsis: str
    style: StoryStyle
    created_at: datetime
    video_state: VideoTaskState
    preview_url: str | None
    preview_urls: list[str]
    preview_audio_urls: list[str]
    shots: list[ShotResponse]


class CreateStoryRequest(BaseModel):
    """Request to generate a story from a synopsis."""

    synopsis: str = Field(..., min_length=1, max_length=5000)
    style: StoryStyle = StoryStyle.CINEMATIC


class UpdateShotRequest(BaseModel):
    """Editable shot fields."""

    prompt: str = Field(..., min_length=1)
    narration: str
    transition: TransitionType


class ShotVideoOutcome(BaseModel):
    """Result of one shot in a generate-all request."""

    ok: bool
    error: str | None = None
    shot: ShotResponse | None = None


class BatchVideoResponse(BaseModel):
    """Per-shot results of a generate-all request."""

    story_id: int
    results: dict[str, ShotVideoOutcome]


class ExportRequest(BaseModel):
    """Request to export a story's video."""

    destination: ExportDestination = ExportDestination.LIBRARY


class ExportResponse(BaseModel):
    """Reference to an exported file."""

    model_config = ConfigDict(from_attributes=True)

    path: str
    display_name: str
    relative_folder: str
    destination: str
    mime_type: str


async def _ensure_story(repository: StoryRepository, story_id: int) -> None:
    if await repository.get_story(story_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Story {story_id} not found",
        )


def _unwrap(result: OperationResult, failure_status: int = status.HTTP_502_BAD_GATEWAY):
    if not result.ok:
        raise HTTPException(status_code=failure_status, detail=result.error)
    return result.value


@router.get("", response_model=list[StoryResponse], summary="List stories")
async def list_stories(repository: RepositoryDep) -> list[StoryResponse]:
    """List stories, newest first."""
    stories = await repository.list_stories()
    return [StoryResponse.model_validate(s) for s in stories]


@router.post(
    "",
    response_model=StoryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create story",
    description="Generate a storyboard for the synopsis and persist the resulting story.",
)
async def create_story(request: CreateStoryRequest, repository: RepositoryDep) -> StoryResponse:
    logger.info("story_create_requested", style=request.style.value)
    story = _unwrap(await repository.create_story(request.synopsis, request.style))
    return StoryResponse.model_validate(story)


@router.get("/{story_id}", response_model=StoryResponse, summary="Get story")
async def get_story(story_id: int, repository: RepositoryDep) -> StoryResponse:
    story = await repository.get_story(story_id)
    if story is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Story {story_id} not found",
        )
    return StoryResponse.model_validate(story)


@router.post(
    "/{story_id}/video",
    response_model=ShotResponse,
    summary="Generate story video",
    description="Generate a video from the first shot that has an image.",
)
async def request_story_video(story_id: int, repository: RepositoryDep) -> ShotResponse:
    await _ensure_story(repository, story_id)
    return ShotResponse.model_validate(_unwrap(await repository.request_video(story_id)))


@router.post(
    "/{story_id}/videos",
    response_model=BatchVideoResponse,
    summary="Generate all shot videos",
    description="Generate a video for every shot with an image. Failures are reported per shot.",
)
async def request_all_shot_videos(story_id: int, repository: RepositoryDep) -> BatchVideoResponse:
    await _ensure_story(repository, story_id)
    summary = _unwrap(await repository.request_videos_for_all_shots(story_id))
    return BatchVideoResponse(
        story_id=story_id,
        results={
            shot_id: ShotVideoOutcome(
                ok=result.ok,
                error=result.error,
                shot=ShotResponse.model_validate(result.value) if result.value else None,
            )
            for shot_id, result in summary.items()
        },
    )


@router.patch("/{story_id}/shots/{shot_id}", response_model=ShotResponse, summary="Edit shot")
async def update_shot(
    story_id: int,
    shot_id: str,
    request: UpdateShotRequest,
    repository: RepositoryDep,
) -> ShotResponse:
    result = await repository.update_shot_details(
        story_id, shot_id, request.prompt, request.narration, request.transition
    )
    return ShotResponse.model_validate(_unwrap(result, status.HTTP_404_NOT_FOUND))


@router.post(
    "/{story_id}/shots/{shot_id}/video",
    response_model=ShotResponse,
    summary="Generate shot video",
)
async def request_shot_video(story_id: int, shot_id: str, repository: RepositoryDep) -> ShotResponse:
    await _ensure_story(repository, story_id)
    result = await repository.request_video_for_shot(story_id, shot_id)
    return ShotResponse.model_validate(_unwrap(result))


@router.post(
    "/{story_id}/shots/{shot_id}/regenerate",
    response_model=ShotResponse,
    summary="Regenerate shot image",
)
async def regenerate_shot(story_id: int, shot_id: str, repository: RepositoryDep) -> ShotResponse:
    await _ensure_story(repository, story_id)
    result = await repository.regenerate_shot(story_id, shot_id)
    return ShotResponse.model_validate(_unwrap(result))


@router.post(
    "/{story_id}/export",
    response_model=ExportResponse,
    summary="Export story video",
    description="Assemble shot clips and narration into one file in shared storage.",
)
async def export_story(
    story_id: int,
    repository: RepositoryDep,
    request: ExportRequest | None = None,
) -> ExportResponse:
    await _ensure_story(repository, story_id)
    destination = request.destination if request else ExportDestination.LIBRARY
    result = await repository.export_story(story_id, destination)
    return ExportResponse.model_validate(_unwrap(result, status.HTTP_422_UNPROCESSABLE_ENTITY))
