"""Domain enumerations."""

from enum import StrEnum


class StoryStyle(StrEnum):
    """Visual style requested for a story."""

    CINEMATIC = "cinematic"
    ANIMATION = "animation"
    REALISTIC = "realistic"

    @property
    def label(self) -> str:
        """Label the generation service expects on the wire."""
        return _STYLE_LABELS[self]

    @classmethod
    def from_label(cls, label: str) -> "StoryStyle":
        """Parse a wire label, defaulting to cinematic."""
        for style, style_label in _STYLE_LABELS.items():
            if style_label == label:
                return style
        return cls.CINEMATIC


_STYLE_LABELS = {
    StoryStyle.CINEMATIC: "Movie",
    StoryStyle.ANIMATION: "Animation",
    StoryStyle.REALISTIC: "Realistic",
}


class ShotStatus(StrEnum):
    """Image generation status of a shot."""

    NOT_GENERATED = "not_generated"
    GENERATING = "generating"
    READY = "ready"


class TransitionType(StrEnum):
    """Transition applied when entering a shot. Order matters for default cycling."""

    KEN_BURNS = "ken_burns"
    CROSSFADE = "crossfade"
    VOLUME_MIX = "volume_mix"


class VideoTaskState(StrEnum):
    """Video state of a story or shot."""

    IDLE = "idle"
    GENERATING = "generating"
    READY = "ready"
    ERROR = "error"


class TaskKind(StrEnum):
    """Kind of remote job a task record tracks."""

    PIPELINE = "pipeline"
    VIDEO = "video"


class PipelineTaskStatus(StrEnum):
    """Overall status of a storyboard pipeline job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_raw(cls, value: str | None) -> "PipelineTaskStatus":
        """Parse a service status string; unknown values count as processing."""
        if value:
            try:
                return cls(value.lower())
            except ValueError:
                pass
        return cls.PROCESSING


class VideoTaskStatus(StrEnum):
    """Lifecycle of a shot video task record."""

    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


class ShotVideoStatus(StrEnum):
    """Status of a shot video job as reported by the service."""

    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"

    @classmethod
    def from_raw(cls, value: str | None) -> "ShotVideoStatus":
        """Parse a service status string; unknown values count as processing."""
        if value:
            try:
                return cls(value.lower())
            except ValueError:
                pass
        return cls.PROCESSING


class ExportDestination(StrEnum):
    """Shared storage category an export lands in."""

    LIBRARY = "library"
    DOWNLOADS = "downloads"
