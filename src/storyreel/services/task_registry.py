"""Registry of remote job records for observability and resume."""

from collections.abc import AsyncIterator

from storyreel.db.store import TASKS, StoryStore
from storyreel.domain.models import Task
from storyreel.logging import get_logger
from storyreel.utils.async_utils import run_blocking

logger = get_logger(__name__)


class TaskRegistry:
    """Keyed log of Pipeline and Video task records.

    Records are upserted whole by id, so repeated or interleaved updates for the
    same job replace each other instead of accumulating. The registry is not
    authoritative for media state: losing it never corrupts a story.
    """

    def __init__(self, store: StoryStore) -> None:
        self.store = store

    async def upsert(self, task: Task) -> None:
        await run_blocking(self.store.upsert_task, task)
        logger.debug(
            "task_upserted",
            task_id=task.id,
            kind=task.kind.value,
            status=task.status.value,
            story_id=task.story_id,
            shot_id=task.shot_id,
        )

    async def get(self, task_id: str) -> Task | None:
        return await run_blocking(self.store.get_task, task_id)

    async def list_all(self) -> list[Task]:
        return await run_blocking(self.store.list_tasks)

    async def list_for_story(self, story_id: int) -> list[Task]:
        return await run_blocking(self.store.list_tasks, story_id)

    def observe_all(self) -> AsyncIterator[list[Task]]:
        """Stream the full task list, re-emitted after every task write."""
        return self.store.observe([TASKS], self.store.list_tasks)
