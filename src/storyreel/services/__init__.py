"""Application services."""

from storyreel.services.assembly import MediaAssemblyEngine
from storyreel.services.media_library import MediaLibrary
from storyreel.services.repository import (
    StoryRepository,
    create_story_repository,
    get_pipeline_client,
)
from storyreel.services.shot_video import ShotVideoOrchestrator
from storyreel.services.storyboard import StoryboardOrchestrator
from storyreel.services.task_registry import TaskRegistry

__all__ = [
    "MediaAssemblyEngine",
    "MediaLibrary",
    "ShotVideoOrchestrator",
    "StoryboardOrchestrator",
    "StoryRepository",
    "TaskRegistry",
    "create_story_repository",
    "get_pipeline_client",
]
