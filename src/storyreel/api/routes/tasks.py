"""Task registry endpoints."""

from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel

from storyreel.api.deps import RepositoryDep
from storyreel.domain.models import Task

router = APIRouter(prefix="/tasks", tags=["Tasks"])


class TaskResponse(BaseModel):
    """Observability record of one remote job."""

    id: str
    kind: str
    status: str
    message: str | None = None
    created_at: datetime
    updated_at: datetime
    story_id: int | None = None
    shot_id: str | None = None
    title: str | None = None
    video_url: str | None = None

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            kind=task.kind.value,
            status=task.status.value,
            message=task.message,
            created_at=task.created_at,
            updated_at=task.updated_at,
            story_id=task.story_id,
            shot_id=task.shot_id,
            title=task.title,
            video_url=task.video_url,
        )


@router.get("", response_model=list[TaskResponse], summary="List tasks")
async def list_tasks(repository: RepositoryDep, story_id: int | None = None) -> list[TaskResponse]:
    """List task records, most recently updated first."""
    if story_id is not None:
        tasks = await repository.registry.list_for_story(story_id)
    else:
        tasks = await repository.list_tasks()
    return [TaskResponse.from_task(t) for t in tasks]
