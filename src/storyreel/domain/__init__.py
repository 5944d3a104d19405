"""Domain models and enumerations."""

from storyreel.domain.enums import (
    ExportDestination,
    PipelineTaskStatus,
    ShotStatus,
    ShotVideoStatus,
    StoryStyle,
    TaskKind,
    TransitionType,
    VideoTaskState,
    VideoTaskStatus,
)
from storyreel.domain.models import (
    AssetItem,
    ExportedMedia,
    OperationResult,
    PipelineStatusReport,
    PipelineTask,
    Shot,
    ShotBlueprint,
    ShotVideoReport,
    ShotVideoResult,
    Story,
    StoryBlueprint,
    Task,
    VideoTask,
)

__all__ = [
    "AssetItem",
    "ExportDestination",
    "ExportedMedia",
    "OperationResult",
    "PipelineStatusReport",
    "PipelineTask",
    "PipelineTaskStatus",
    "Shot",
    "ShotBlueprint",
    "ShotStatus",
    "ShotVideoReport",
    "ShotVideoResult",
    "ShotVideoStatus",
    "Story",
    "StoryBlueprint",
    "StoryStyle",
    "Task",
    "TaskKind",
    "TransitionType",
    "VideoTask",
    "VideoTaskState",
    "VideoTaskStatus",
]
