"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from storyreel import __version__
from storyreel.api.deps import RepositoryDep
from storyreel.config import settings
from storyreel.errors import AssemblyFailed
from storyreel.logging import get_logger
from storyreel.services.assembly import resolve_ffmpeg
from storyreel.utils.async_utils import run_blocking

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    pipeline_client: str


class ReadinessResponse(BaseModel):
    """Readiness of the store, the generation service and ffmpeg."""

    ready: bool
    database: bool
    pipeline: bool
    ffmpeg: bool
    story_count: int | None = None


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Basic health check endpoint that verifies the API is running.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=__version__,
        pipeline_client=settings.pipeline_client,
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Verifies the story store, the generation service and the ffmpeg binary.",
)
async def readiness_check(repository: RepositoryDep) -> ReadinessResponse:
    """Readiness check including dependencies.

    Assembly needs ffmpeg, so a missing binary makes the service not ready
    even though story generation would still work.
    """
    story_count: int | None = None
    try:
        story_count = await run_blocking(repository.store.count_stories)
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))

    pipeline_ok = await repository.client.health_check()
    if not pipeline_ok:
        logger.warning("pipeline_health_check_failed", client=repository.client.name)

    try:
        await run_blocking(resolve_ffmpeg, settings.ffmpeg_path)
        ffmpeg_ok = True
    except AssemblyFailed as e:
        logger.warning("ffmpeg_unavailable", error=str(e))
        ffmpeg_ok = False

    database_ok = story_count is not None
    return ReadinessResponse(
        ready=database_ok and pipeline_ok and ffmpeg_ok,
        database=database_ok,
        pipeline=pipeline_ok,
        ffmpeg=ffmpeg_ok,
        story_count=story_count,
    )


@router.get(
    "/health/live",
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
)
async def liveness_check() -> dict[str, str]:
    """Liveness probe: the process is up and serving requests."""
    return {"status": "alive"}
