"""Per-shot video synthesis orchestration."""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import PurePosixPath
from urllib.parse import urlparse

from storyreel.adapters.pipeline.base import PipelineClient, guess_content_type
from storyreel.domain.enums import ShotVideoStatus
from storyreel.domain.models import ShotVideoResult
from storyreel.errors import ArtifactMissing, VideoFailed, VideoTimeout
from storyreel.logging import get_logger

logger = get_logger(__name__)

SubmittedCallback = Callable[[str], Awaitable[None]]

DEFAULT_IMAGE_NAME = "shot.png"


def image_file_name(url: str) -> str:
    """Last path segment of an image URL, used as the upload file name."""
    name = PurePosixPath(urlparse(url).path).name
    return name or DEFAULT_IMAGE_NAME


class ShotVideoOrchestrator:
    """Turn one shot thumbnail into a video clip via the remote service."""

    def __init__(
        self,
        client: PipelineClient,
        poll_interval: float = 1.0,
        max_attempts: int = 120,
    ) -> None:
        self.client = client
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts

    async def run(
        self,
        thumbnail_url: str,
        job_id: str,
        on_submitted: SubmittedCallback | None = None,
    ) -> ShotVideoResult:
        """Download the thumbnail, submit a video job and wait for its output.

        The effective job id is the one the service issues for the video job,
        or the storyboard job id when none is returned. The output URL is
        resolved against it.

        Raises:
            RemoteError: On transport failures.
            VideoFailed: If the job reports failure.
            VideoTimeout: If the job does not finish within the attempt bound.
            ArtifactMissing: If the job is ready but names no video file.
        """
        image_bytes = await self.client.fetch_url(thumbnail_url)
        file_name = image_file_name(thumbnail_url)
        content_type = guess_content_type(file_name)

        video_job_id = await self.client.submit_shot_video(
            job_id, image_bytes, file_name, content_type
        )
        effective_job_id = video_job_id or job_id
        logger.info(
            "shot_video_submitted",
            job_id=job_id,
            video_job_id=effective_job_id,
            image_size=len(image_bytes),
            content_type=content_type,
        )
        if on_submitted:
            await on_submitted(effective_job_id)

        for attempt in range(self.max_attempts):
            report = await self.client.poll_shot_video(effective_job_id)
            logger.debug(
                "shot_video_poll_status",
                video_job_id=effective_job_id,
                status=report.video_status.value,
                attempt=attempt + 1,
            )

            if report.video_status == ShotVideoStatus.FAILED:
                logger.error("shot_video_failed", video_job_id=effective_job_id, error=report.error)
                raise VideoFailed(f"Video generation failed: {report.error or 'unknown error'}")
            if report.video_status == ShotVideoStatus.READY:
                if not report.video_file:
                    raise ArtifactMissing(
                        f"Video job {effective_job_id} is ready without a video file"
                    )
                video_url = self.client.artifact_url(effective_job_id, report.video_file)
                logger.info("shot_video_ready", video_job_id=effective_job_id, video_url=video_url)
                return ShotVideoResult(video_url=video_url, job_id=effective_job_id)

            if attempt + 1 < self.max_attempts:
                await asyncio.sleep(self.poll_interval)

        logger.error("shot_video_timeout", video_job_id=effective_job_id, attempts=self.max_attempts)
        raise VideoTimeout(
            f"Video job {effective_job_id} did not finish after {self.max_attempts} polls"
        )
