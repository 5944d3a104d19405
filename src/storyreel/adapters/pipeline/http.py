"""HTTP client for the storyboard/video generation service."""

from typing import Any

import httpx

from storyreel.adapters.pipeline.base import PipelineClient
from storyreel.config import settings
from storyreel.domain.enums import PipelineTaskStatus, ShotVideoStatus, StoryStyle
from storyreel.domain.models import PipelineStatusReport, ShotVideoReport
from storyreel.errors import RemoteError
from storyreel.logging import get_logger

logger = get_logger(__name__)


class HttpPipelineClient(PipelineClient):
    """Async HTTP bindings for the generation service.

    Usage::

        client = HttpPipelineClient(base_url="http://pipeline:8001")
        job_id = await client.submit_storyboard("雨夜的摄影师", StoryStyle.CINEMATIC)
        report = await client.poll_storyboard(job_id)
        await client.close()

    Every call raises RemoteError on transport failures and non-2xx responses.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        download_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(base_url or settings.pipeline_base_url)
        self.timeout = timeout if timeout is not None else settings.pipeline_timeout
        self.download_timeout = (
            download_timeout if download_timeout is not None else settings.download_timeout
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            transport=transport,
            follow_redirects=True,
        )

    @property
    def name(self) -> str:
        return "http"

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            raise RemoteError(
                f"HTTP {exc.response.status_code} from {method} {url}",
                status_code=exc.response.status_code,
                body=exc.response.text,
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} {url} failed: {exc}") from exc

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request(method, url, **kwargs)
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteError(
                f"Invalid JSON from {method} {url}",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        if not isinstance(data, dict):
            raise RemoteError(f"Unexpected payload from {method} {url}", body=data)
        return data

    @staticmethod
    def _parse_pipeline_status(data: dict[str, Any]) -> PipelineStatusReport:
        return PipelineStatusReport(
            overall_status=PipelineTaskStatus.from_raw(data.get("overall_status")),
            storyboard_file=data.get("storyboard_file") or None,
            image_files=list(data.get("images") or []),
            audio_files=list(data.get("audios") or []),
            video_status=data.get("video_status"),
            video_file=data.get("video") or None,
            error=data.get("error"),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit_storyboard(self, synopsis: str, style: StoryStyle) -> str:
        logger.info("storyboard_submit", synopsis=synopsis[:50], style=style.label)
        data = await self._request_json(
            "POST",
            "/start_pipeline/",
            json={"story": synopsis, "style": style.label},
        )
        job_id = data.get("task_id")
        if not job_id:
            raise RemoteError("No task_id returned from start_pipeline", body=data)
        logger.info("storyboard_submitted", job_id=job_id, status=data.get("status"))
        return str(job_id)

    async def poll_storyboard(self, job_id: str) -> PipelineStatusReport:
        data = await self._request_json("GET", f"/status/{job_id}/")
        return self._parse_pipeline_status(data)

    async def fetch_artifact(self, job_id: str, file_name: str) -> bytes:
        return await self.fetch_url(self.artifact_url(job_id, file_name))

    async def fetch_url(self, url: str) -> bytes:
        logger.debug("artifact_download", url=url[:120])
        response = await self._request("GET", url, timeout=self.download_timeout)
        return response.content

    async def submit_shot_video(
        self,
        job_id: str,
        image_bytes: bytes,
        file_name: str,
        content_type: str,
    ) -> str | None:
        logger.info(
            "shot_video_submit",
            job_id=job_id,
            file_name=file_name,
            content_type=content_type,
            image_size=len(image_bytes),
        )
        data = await self._request_json(
            "POST",
            "/start_video/",
            files={"file": (file_name, image_bytes, content_type)},
            data={"task_id": job_id},
            timeout=self.download_timeout,
        )
        video_job_id = data.get("task_id")
        return str(video_job_id) if video_job_id else None

    async def poll_shot_video(self, video_job_id: str) -> ShotVideoReport:
        data = await self._request_json("GET", f"/status/{video_job_id}/")
        return ShotVideoReport(
            video_status=ShotVideoStatus.from_raw(data.get("video_status")),
            video_file=data.get("video") or None,
            error=data.get("error"),
        )

    async def regenerate_shot_image(self, job_id: str, scene_index: int, prompt: str) -> str:
        data = await self._request_json(
            "POST",
            "/regenerate_shot/",
            json={"task_id": job_id, "scene_index": scene_index, "prompt": prompt},
            timeout=self.download_timeout,
        )
        image = data.get("image")
        if not image:
            raise RemoteError("No image returned from regenerate_shot", body=data)
        return str(image)

    async def health_check(self) -> bool:
        """Check if the pipeline service answers its health endpoint."""
        try:
            response = await self._client.get("/pipeline_health", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error("pipeline_health_check_failed", error=str(e))
            return False
