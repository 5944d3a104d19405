"""Stub pipeline client for testing and offline runs."""

import json
from uuid import uuid4

from storyreel.adapters.pipeline.base import PipelineClient
from storyreel.domain.enums import PipelineTaskStatus, ShotVideoStatus, StoryStyle
from storyreel.domain.models import PipelineStatusReport, ShotVideoReport
from storyreel.logging import get_logger

logger = get_logger(__name__)

_SCENE_LABELS = ["开场", "冲突", "转折", "结局"]


class StubPipelineClient(PipelineClient):
    """Client that completes every job immediately without network calls."""

    def __init__(self, base_url: str = "http://stub.pipeline") -> None:
        super().__init__(base_url)
        self._jobs: dict[str, tuple[str, StoryStyle]] = {}
        self._video_jobs: set[str] = set()

    @property
    def name(self) -> str:
        return "stub"

    async def submit_storyboard(self, synopsis: str, style: StoryStyle) -> str:
        job_id = uuid4().hex
        self._jobs[job_id] = (synopsis, style)
        logger.info("stub_storyboard_submitted", job_id=job_id)
        return job_id

    async def poll_storyboard(self, job_id: str) -> PipelineStatusReport:
        if job_id not in self._jobs:
            return PipelineStatusReport(
                overall_status=PipelineTaskStatus.FAILED,
                error=f"Unknown job {job_id}",
            )
        return PipelineStatusReport(
            overall_status=PipelineTaskStatus.COMPLETED,
            storyboard_file="storyboard.json",
            image_files=[f"scene_{i + 1}.png" for i in range(len(_SCENE_LABELS))],
            audio_files=[f"scene_{i + 1}.wav" for i in range(len(_SCENE_LABELS))],
        )

    def _storyboard(self, job_id: str) -> bytes:
        synopsis, style = self._jobs[job_id]
        scenes = [
            {
                "scene_title": f"{label} · {style.label}",
                "narration": f"旁白{label}：{synopsis}",
                "bgm_suggestion": None,
                "prompt": {"画面": f"场景{label}: {synopsis}"},
            }
            for label in _SCENE_LABELS
        ]
        return json.dumps({"scenes": scenes}, ensure_ascii=False).encode("utf-8")

    async def fetch_artifact(self, job_id: str, file_name: str) -> bytes:
        if file_name == "storyboard.json" and job_id in self._jobs:
            return self._storyboard(job_id)
        return f"STUB_ARTIFACT_{job_id}_{file_name}".encode()

    async def fetch_url(self, url: str) -> bytes:
        return b"STUB_URL_" + url.encode()[:200]

    async def submit_shot_video(
        self,
        job_id: str,
        image_bytes: bytes,
        file_name: str,
        content_type: str,
    ) -> str | None:
        video_job_id = uuid4().hex
        self._video_jobs.add(video_job_id)
        logger.info("stub_shot_video_submitted", job_id=job_id, video_job_id=video_job_id)
        return video_job_id

    async def poll_shot_video(self, video_job_id: str) -> ShotVideoReport:
        if video_job_id not in self._video_jobs:
            return ShotVideoReport(
                video_status=ShotVideoStatus.FAILED,
                error=f"Unknown video job {video_job_id}",
            )
        return ShotVideoReport(video_status=ShotVideoStatus.READY, video_file="video.mp4")

    async def regenerate_shot_image(self, job_id: str, scene_index: int, prompt: str) -> str:
        return f"scene_{scene_index + 1}_{uuid4().hex[:8]}.png"
