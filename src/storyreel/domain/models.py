"""Domain models - pure Python classes independent of database."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import ClassVar, Generic, TypeVar

from storyreel.domain.enums import (
    PipelineTaskStatus,
    ShotStatus,
    ShotVideoStatus,
    StoryStyle,
    TaskKind,
    TransitionType,
    VideoTaskState,
    VideoTaskStatus,
)

T = TypeVar("T")

DEFAULT_STORY_TITLE = "新故事"
STORY_TITLE_LENGTH = 18


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)


def story_title_from_synopsis(synopsis: str) -> str:
    """Derive a story title from the first characters of its synopsis."""
    title = synopsis[:STORY_TITLE_LENGTH]
    return title if title.strip() else DEFAULT_STORY_TITLE


@dataclass
class Shot:
    """One scene of a story."""

    id: str
    story_id: int
    title: str
    prompt: str
    narration: str
    thumbnail_url: str | None = None
    status: ShotStatus = ShotStatus.NOT_GENERATED
    transition: TransitionType = TransitionType.CROSSFADE
    video_url: str | None = None
    audio_url: str | None = None
    video_status: VideoTaskState = VideoTaskState.IDLE
    position: int = 0

    def __post_init__(self) -> None:
        if self.video_status == VideoTaskState.READY and self.video_url is None:
            raise ValueError(f"Shot {self.id} is ready but has no video_url")
        if self.video_status != VideoTaskState.READY and self.video_url is not None:
            raise ValueError(f"Shot {self.id} has a video_url but video_status={self.video_status}")


@dataclass
class Story:
    """A story and its ordered shots."""

    id: int
    title: str
    synopsis: str
    style: StoryStyle
    created_at: datetime
    video_state: VideoTaskState = VideoTaskState.IDLE
    preview_url: str | None = None
    preview_urls: list[str] = field(default_factory=list)
    preview_audio_urls: list[str] = field(default_factory=list)
    shots: list[Shot] = field(default_factory=list)

    def find_shot(self, shot_id: str) -> Shot | None:
        """Return the shot with the given id, if it belongs to this story."""
        return next((shot for shot in self.shots if shot.id == shot_id), None)


@dataclass
class AssetItem:
    """A finished, browsable video derived from a story."""

    id: int
    title: str
    style: StoryStyle
    thumbnail_url: str | None
    created_at: datetime
    preview_uri: str | None = None
    source_story_id: int | None = None


@dataclass
class _TaskBase:
    id: str
    created_at: datetime
    updated_at: datetime
    message: str | None = None
    story_id: int | None = None
    shot_id: str | None = None
    title: str | None = None
    video_url: str | None = None


@dataclass
class PipelineTask(_TaskBase):
    """Observability record of a storyboard pipeline job."""

    kind: ClassVar[TaskKind] = TaskKind.PIPELINE
    status: PipelineTaskStatus = PipelineTaskStatus.QUEUED


@dataclass
class VideoTask(_TaskBase):
    """Observability record of a shot video job."""

    kind: ClassVar[TaskKind] = TaskKind.VIDEO
    status: VideoTaskStatus = VideoTaskStatus.GENERATING


Task = PipelineTask | VideoTask


# =============================================================================
# Remote service payloads
# =============================================================================


@dataclass
class PipelineStatusReport:
    """Parsed storyboard job status."""

    overall_status: PipelineTaskStatus
    storyboard_file: str | None = None
    image_files: list[str] = field(default_factory=list)
    audio_files: list[str] = field(default_factory=list)
    video_status: str | None = None
    video_file: str | None = None
    error: str | None = None


@dataclass
class ShotVideoReport:
    """Parsed shot video job status."""

    video_status: ShotVideoStatus
    video_file: str | None = None
    error: str | None = None


# =============================================================================
# Orchestrator results
# =============================================================================


@dataclass
class ShotBlueprint:
    """A shot resolved from a storyboard, not yet persisted."""

    id: str
    title: str
    prompt: str
    narration: str
    thumbnail_url: str | None
    transition: TransitionType
    status: ShotStatus = ShotStatus.READY
    audio_url: str | None = None


@dataclass
class StoryBlueprint:
    """A complete story resolved from a finished pipeline job."""

    story_id: int
    job_id: str
    title: str
    synopsis: str
    style: StoryStyle
    created_at: datetime
    shots: list[ShotBlueprint]
    preview_url: str | None = None
    preview_urls: list[str] = field(default_factory=list)
    preview_audio_urls: list[str] = field(default_factory=list)


@dataclass
class ShotVideoResult:
    """Output of a finished shot video job."""

    video_url: str
    job_id: str


@dataclass
class ExportedMedia:
    """Reference to an exported video in shared storage."""

    path: str
    display_name: str
    relative_folder: str
    destination: str
    mime_type: str = "video/mp4"


@dataclass
class OperationResult(Generic[T]):
    """Outcome of a repository operation: a value or a human-readable error."""

    ok: bool
    value: T | None = None
    error: str | None = None

    @classmethod
    def success(cls, value: T | None = None) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "OperationResult[T]":
        return cls(ok=False, error=error)
