"""Base interface for the remote storyboard/video generation service."""

from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from urllib.parse import quote, urlparse

from storyreel.domain.enums import StoryStyle
from storyreel.domain.models import PipelineStatusReport, ShotVideoReport

OCTET_STREAM = "application/octet-stream"

_IMAGE_CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


def is_absolute_url(value: str) -> bool:
    """Check whether a file reference is already a fully-qualified URL."""
    return value.startswith(("http://", "https://"))


def guess_content_type(name: str) -> str:
    """Infer an image content type from a file name or URL."""
    suffix = PurePosixPath(urlparse(name).path).suffix.lower()
    return _IMAGE_CONTENT_TYPES.get(suffix, OCTET_STREAM)


def extract_job_id(url: str) -> str | None:
    """Extract the job id from an artifact URL of the form .../download/{job_id}/{file}."""
    segments = [s for s in urlparse(url).path.split("/") if s]
    try:
        index = segments.index("download")
    except ValueError:
        return None
    if index + 1 < len(segments):
        return segments[index + 1]
    return None


class PipelineClient(ABC):
    """Abstract client for the remote generation service.

    Implementations:
    - HttpPipelineClient: talks to the real service over HTTP
    - StubPipelineClient: completes every job in-process for offline runs and tests
    """

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    @property
    @abstractmethod
    def name(self) -> str:
        """Client name identifier."""
        ...

    def artifact_url(self, job_id: str, file_name: str) -> str:
        """Resolve a service file name into a fully-qualified download URL.

        File names that are already absolute URLs are returned unchanged.
        """
        if is_absolute_url(file_name):
            return file_name
        return f"{self.base_url}/download/{quote(job_id)}/{quote(file_name)}"

    @abstractmethod
    async def submit_storyboard(self, synopsis: str, style: StoryStyle) -> str:
        """Start a storyboard pipeline job.

        Returns:
            The job id to poll.
        """
        ...

    @abstractmethod
    async def poll_storyboard(self, job_id: str) -> PipelineStatusReport:
        """Fetch the current status of a storyboard pipeline job."""
        ...

    @abstractmethod
    async def fetch_artifact(self, job_id: str, file_name: str) -> bytes:
        """Download a named artifact produced by a job."""
        ...

    @abstractmethod
    async def fetch_url(self, url: str) -> bytes:
        """Download an already-resolved URL."""
        ...

    @abstractmethod
    async def submit_shot_video(
        self,
        job_id: str,
        image_bytes: bytes,
        file_name: str,
        content_type: str,
    ) -> str | None:
        """Start a video job for one shot image.

        Returns:
            The new video job id, or None if the service did not issue one.
        """
        ...

    @abstractmethod
    async def poll_shot_video(self, video_job_id: str) -> ShotVideoReport:
        """Fetch the current status of a shot video job."""
        ...

    @abstractmethod
    async def regenerate_shot_image(self, job_id: str, scene_index: int, prompt: str) -> str:
        """Re-render one scene image.

        Returns:
            File name (or absolute URL) of the new image.
        """
        ...

    async def health_check(self) -> bool:
        """Check if the service is reachable.

        Returns:
            True if the service is operational, False otherwise
        """
        return True

    async def close(self) -> None:
        """Release network resources."""
        return None
