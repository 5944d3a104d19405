"""Storyboard pipeline orchestration.

Drives one storyboard job end to end:
1. submit synopsis + style
2. poll at a fixed interval up to a bounded attempt count
3. download and parse the storyboard artifact
4. resolve each scene into a shot blueprint (thumbnail URL, prompt, transition)

Nothing is persisted here; the caller commits the returned blueprint.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError

from storyreel.adapters.pipeline.base import PipelineClient
from storyreel.domain.enums import PipelineTaskStatus, ShotStatus, StoryStyle, TransitionType
from storyreel.domain.models import (
    PipelineStatusReport,
    ShotBlueprint,
    StoryBlueprint,
    story_title_from_synopsis,
    utcnow,
)
from storyreel.errors import ArtifactMissing, PipelineFailed, PipelineTimeout
from storyreel.logging import get_logger, job_context

logger = get_logger(__name__)

PROMPT_SEPARATOR = "；"
PROMPT_KEY_SEPARATOR = "："

StatusCallback = Callable[[str, PipelineStatusReport], Awaitable[None]]


class SceneSpec(BaseModel):
    """One scene of the storyboard artifact."""

    scene_title: str
    narration: str
    bgm_suggestion: str | None = None
    prompt: dict[str, str] = Field(default_factory=dict)


class StoryboardSpec(BaseModel):
    """Storyboard artifact; scene order defines shot order."""

    scenes: list[SceneSpec]


def parse_storyboard(raw: bytes) -> StoryboardSpec:
    """Parse storyboard JSON bytes.

    Raises:
        PipelineFailed: If the artifact is not valid storyboard JSON.
    """
    try:
        return StoryboardSpec.model_validate(json.loads(raw.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        raise PipelineFailed(f"Invalid storyboard json: {e}") from e


def build_prompt(scene: SceneSpec) -> str:
    """Join structured prompt fields, or fall back to the narration."""
    if not scene.prompt:
        return scene.narration
    return PROMPT_SEPARATOR.join(
        f"{key}{PROMPT_KEY_SEPARATOR}{value}" for key, value in scene.prompt.items()
    )


def transition_for_index(index: int) -> TransitionType:
    """Deterministic default transition, cycling through the enum in scene order."""
    transitions = list(TransitionType)
    return transitions[index % len(transitions)]


class StoryboardOrchestrator:
    """Submit, poll and resolve a storyboard pipeline job."""

    def __init__(
        self,
        client: PipelineClient,
        poll_interval: float = 1.0,
        max_attempts: int = 60,
    ) -> None:
        self.client = client
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts

    async def run(
        self,
        synopsis: str,
        style: StoryStyle,
        on_status: StatusCallback | None = None,
    ) -> StoryBlueprint:
        """Run a storyboard job to completion.

        Args:
            synopsis: Story synopsis text.
            style: Requested visual style.
            on_status: Optional hook awaited with every polled status.

        Returns:
            StoryBlueprint with ordered shots and the job id.

        Raises:
            RemoteError: On transport failures.
            PipelineFailed: If the job fails or its storyboard is invalid.
            PipelineTimeout: If the job does not complete within the attempt bound.
            ArtifactMissing: If the completed job names no storyboard file.
        """
        job_id = await self.client.submit_storyboard(synopsis, style)
        if on_status:
            await on_status(job_id, PipelineStatusReport(overall_status=PipelineTaskStatus.QUEUED))

        with job_context(job_id=job_id):
            report = await self._poll_until_complete(job_id, on_status)

        if not report.storyboard_file:
            raise ArtifactMissing(f"Job {job_id} completed without a storyboard file")

        raw = await self.client.fetch_artifact(job_id, report.storyboard_file)
        storyboard = parse_storyboard(raw)

        shots = [
            self._build_shot(job_id, index, scene, report)
            for index, scene in enumerate(storyboard.scenes)
        ]
        preview_audio_urls = [self.client.artifact_url(job_id, f) for f in report.audio_files]
        created_at = utcnow()

        logger.info(
            "storyboard_resolved",
            job_id=job_id,
            scene_count=len(shots),
            image_count=len(report.image_files),
            audio_count=len(report.audio_files),
        )

        return StoryBlueprint(
            story_id=int(created_at.timestamp() * 1000),
            job_id=job_id,
            title=story_title_from_synopsis(synopsis),
            synopsis=synopsis,
            style=style,
            created_at=created_at,
            shots=shots,
            preview_audio_urls=preview_audio_urls,
        )

    async def _poll_until_complete(
        self,
        job_id: str,
        on_status: StatusCallback | None,
    ) -> PipelineStatusReport:
        for attempt in range(self.max_attempts):
            report = await self.client.poll_storyboard(job_id)
            logger.debug(
                "storyboard_poll_status",
                job_id=job_id,
                status=report.overall_status.value,
                attempt=attempt + 1,
            )
            if on_status:
                await on_status(job_id, report)

            if report.overall_status == PipelineTaskStatus.FAILED:
                logger.error("storyboard_failed", job_id=job_id, error=report.error)
                raise PipelineFailed(f"Pipeline failed: {report.error or 'unknown error'}")
            if report.overall_status == PipelineTaskStatus.COMPLETED:
                return report

            if attempt + 1 < self.max_attempts:
                await asyncio.sleep(self.poll_interval)

        logger.error("storyboard_timeout", job_id=job_id, attempts=self.max_attempts)
        raise PipelineTimeout(
            f"Pipeline {job_id} did not complete after {self.max_attempts} polls"
        )

    def _build_shot(
        self,
        job_id: str,
        index: int,
        scene: SceneSpec,
        report: PipelineStatusReport,
    ) -> ShotBlueprint:
        image = report.image_files[index] if index < len(report.image_files) else None
        audio = report.audio_files[index] if index < len(report.audio_files) else None
        return ShotBlueprint(
            id=str(uuid4()),
            title=scene.scene_title,
            prompt=build_prompt(scene),
            narration=scene.narration,
            thumbnail_url=self.client.artifact_url(job_id, image) if image else None,
            audio_url=self.client.artifact_url(job_id, audio) if audio else None,
            transition=transition_for_index(index),
            status=ShotStatus.READY,
        )
