"""Keyed entity store for stories, shots, tasks and assets.

All methods are blocking; async callers dispatch them through
``storyreel.utils.run_blocking``. Every committed write notifies subscribers of
the tables it touched, which drives the ``observe`` streams.
"""

import asyncio
import dataclasses
import threading
from collections.abc import AsyncIterator, Callable, Generator, Iterable
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from storyreel.db.models import AssetModel, ShotModel, StoryModel, TaskModel
from storyreel.db.session import session_scope
from storyreel.domain.enums import (
    PipelineTaskStatus,
    ShotStatus,
    StoryStyle,
    TaskKind,
    TransitionType,
    VideoTaskState,
    VideoTaskStatus,
)
from storyreel.domain.models import AssetItem, PipelineTask, Shot, Story, Task, VideoTask
from storyreel.errors import NotFound
from storyreel.utils.async_utils import run_blocking

T = TypeVar("T")

STORIES = "stories"
SHOTS = "shots"
TASKS = "tasks"
ASSETS = "assets"


# =============================================================================
# Conversions
# =============================================================================


def _shot_to_model(shot: Shot) -> ShotModel:
    return ShotModel(
        id=shot.id,
        story_id=shot.story_id,
        position=shot.position,
        title=shot.title,
        prompt=shot.prompt,
        narration=shot.narration,
        thumbnail_url=shot.thumbnail_url,
        status=shot.status.value,
        transition=shot.transition.value,
        video_url=shot.video_url,
        audio_url=shot.audio_url,
        video_status=shot.video_status.value,
    )


def _shot_to_domain(model: ShotModel) -> Shot:
    return Shot(
        id=model.id,
        story_id=model.story_id,
        title=model.title,
        prompt=model.prompt,
        narration=model.narration,
        thumbnail_url=model.thumbnail_url,
        status=ShotStatus(model.status),
        transition=TransitionType(model.transition),
        video_url=model.video_url,
        audio_url=model.audio_url,
        video_status=VideoTaskState(model.video_status),
        position=model.position,
    )


def _story_to_model(story: Story) -> StoryModel:
    return StoryModel(
        id=story.id,
        title=story.title,
        synopsis=story.synopsis,
        style=story.style.value,
        created_at=story.created_at,
        video_state=story.video_state.value,
        preview_url=story.preview_url,
        preview_urls=list(story.preview_urls),
        preview_audio_urls=list(story.preview_audio_urls),
    )


def _story_to_domain(model: StoryModel, shots: list[Shot]) -> Story:
    return Story(
        id=model.id,
        title=model.title,
        synopsis=model.synopsis,
        style=StoryStyle(model.style),
        created_at=model.created_at,
        video_state=VideoTaskState(model.video_state),
        preview_url=model.preview_url,
        preview_urls=list(model.preview_urls or []),
        preview_audio_urls=list(model.preview_audio_urls or []),
        shots=shots,
    )


def _task_to_model(task: Task) -> TaskModel:
    return TaskModel(
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


def _task_to_domain(model: TaskModel) -> Task:
    common = {
        "id": model.id,
        "created_at": model.created_at,
        "updated_at": model.updated_at,
        "message": model.message,
        "story_id": model.story_id,
        "shot_id": model.shot_id,
        "title": model.title,
        "video_url": model.video_url,
    }
    if TaskKind(model.kind) == TaskKind.PIPELINE:
        return PipelineTask(status=PipelineTaskStatus(model.status), **common)
    return VideoTask(status=VideoTaskStatus(model.status), **common)


def _asset_to_model(asset: AssetItem) -> AssetModel:
    return AssetModel(
        id=asset.id,
        title=asset.title,
        style=asset.style.value,
        thumbnail_url=asset.thumbnail_url,
        created_at=asset.created_at,
        preview_uri=asset.preview_uri,
        source_story_id=asset.source_story_id,
    )


def _asset_to_domain(model: AssetModel) -> AssetItem:
    return AssetItem(
        id=model.id,
        title=model.title,
        style=StoryStyle(model.style),
        thumbnail_url=model.thumbnail_url,
        created_at=model.created_at,
        preview_uri=model.preview_uri,
        source_story_id=model.source_story_id,
    )


# =============================================================================
# Change notification
# =============================================================================


class ChangeNotifier:
    """Fan out table-change events to asyncio subscribers on any thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[tuple[asyncio.AbstractEventLoop, asyncio.Queue[frozenset[str]]]] = []

    def subscribe(self) -> asyncio.Queue[frozenset[str]]:
        """Register a queue on the running loop that receives changed table sets."""
        queue: asyncio.Queue[frozenset[str]] = asyncio.Queue()
        with self._lock:
            self._subscribers.append((asyncio.get_running_loop(), queue))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[frozenset[str]]) -> None:
        with self._lock:
            self._subscribers = [(lp, q) for lp, q in self._subscribers if q is not queue]

    def notify(self, tables: Iterable[str]) -> None:
        changed = frozenset(tables)
        if not changed:
            return
        with self._lock:
            subscribers = list(self._subscribers)
        for loop, queue in subscribers:
            if not loop.is_closed():
                loop.call_soon_threadsafe(queue.put_nowait, changed)


# =============================================================================
# Writer
# =============================================================================


class StoreWriter:
    """Write operations bound to one open transaction."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.touched: set[str] = set()

    def upsert_story(self, story: Story) -> None:
        self.session.merge(_story_to_model(story))
        self.session.flush()
        self.touched.add(STORIES)

    def upsert_shot(self, shot: Shot) -> None:
        self.session.merge(_shot_to_model(shot))
        self.touched.add(SHOTS)

    def upsert_shots(self, shots: Iterable[Shot]) -> None:
        for shot in shots:
            self.upsert_shot(shot)

    def reserve_story_id(self, candidate: int) -> int:
        """Return ``candidate``, or the first id after it with no stored story."""
        while self.session.get(StoryModel, candidate) is not None:
            candidate += 1
        return candidate

    def upsert_task(self, task: Task) -> None:
        self.session.merge(_task_to_model(task))
        self.touched.add(TASKS)

    def upsert_asset(self, asset: AssetItem) -> None:
        self.session.merge(_asset_to_model(asset))
        self.touched.add(ASSETS)

    def delete_asset(self, asset_id: int) -> None:
        self.session.execute(delete(AssetModel).where(AssetModel.id == asset_id))
        self.touched.add(ASSETS)


# =============================================================================
# Store
# =============================================================================


class StoryStore:
    """Keyed store over the four collections with change notification."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self.notifier = ChangeNotifier()

    @contextmanager
    def transaction(self) -> Generator[StoreWriter, None, None]:
        """Group writes atomically. Subscribers are notified after commit."""
        with session_scope(self._session_factory) as session:
            writer = StoreWriter(session)
            yield writer
        self.notifier.notify(writer.touched)

    # ------------------------------------------------------------------
    # Single-statement writes
    # ------------------------------------------------------------------

    def upsert_story(self, story: Story) -> None:
        with self.transaction() as tx:
            tx.upsert_story(story)

    def upsert_shot(self, shot: Shot) -> None:
        with self.transaction() as tx:
            tx.upsert_shot(shot)

    def upsert_task(self, task: Task) -> None:
        with self.transaction() as tx:
            tx.upsert_task(task)

    def upsert_asset(self, asset: AssetItem) -> None:
        with self.transaction() as tx:
            tx.upsert_asset(asset)

    def delete_asset(self, asset_id: int) -> None:
        with self.transaction() as tx:
            tx.delete_asset(asset_id)

    def _update_shot(self, shot_id: str, **changes: object) -> Shot:
        """Apply ``changes`` to the stored row, leaving every other field as stored."""
        with self.transaction() as tx:
            model = tx.session.get(ShotModel, shot_id)
            if model is None:
                raise NotFound(f"Shot {shot_id} not found")
            shot = dataclasses.replace(_shot_to_domain(model), **changes)
            tx.upsert_shot(shot)
        return shot

    def update_shot_video(
        self,
        shot_id: str,
        video_url: str | None,
        video_status: VideoTaskState,
    ) -> Shot:
        """Set a shot's video fields, validating the video_url invariant."""
        return self._update_shot(shot_id, video_url=video_url, video_status=video_status)

    def update_shot_image(
        self,
        shot_id: str,
        status: ShotStatus,
        thumbnail_url: str | None,
    ) -> Shot:
        return self._update_shot(shot_id, status=status, thumbnail_url=thumbnail_url)

    def update_shot_details(
        self,
        shot_id: str,
        prompt: str,
        narration: str,
        transition: TransitionType,
    ) -> Shot:
        return self._update_shot(
            shot_id, prompt=prompt, narration=narration, transition=transition
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read(self, query: Callable[[Session], T]) -> T:
        with session_scope(self._session_factory) as session:
            return query(session)

    @staticmethod
    def _load_stories(session: Session, story_models: list[StoryModel]) -> list[Story]:
        if not story_models:
            return []
        ids = [m.id for m in story_models]
        shot_rows = session.scalars(
            select(ShotModel)
            .where(ShotModel.story_id.in_(ids))
            .order_by(ShotModel.story_id, ShotModel.position)
        ).all()
        by_story: dict[int, list[Shot]] = {story_id: [] for story_id in ids}
        for row in shot_rows:
            by_story[row.story_id].append(_shot_to_domain(row))
        return [_story_to_domain(m, by_story[m.id]) for m in story_models]

    def get_story(self, story_id: int) -> Story | None:
        """Story joined with its ordered shots."""

        def query(session: Session) -> Story | None:
            model = session.get(StoryModel, story_id)
            if model is None:
                return None
            return self._load_stories(session, [model])[0]

        return self._read(query)

    def list_stories(self) -> list[Story]:
        def query(session: Session) -> list[Story]:
            models = session.scalars(select(StoryModel).order_by(StoryModel.created_at.desc())).all()
            return self._load_stories(session, list(models))

        return self._read(query)

    def get_shot(self, shot_id: str) -> Shot | None:
        def query(session: Session) -> Shot | None:
            model = session.get(ShotModel, shot_id)
            return _shot_to_domain(model) if model else None

        return self._read(query)

    def count_stories(self) -> int:
        return self._read(lambda s: s.scalar(select(func.count()).select_from(StoryModel)) or 0)

    def get_task(self, task_id: str) -> Task | None:
        def query(session: Session) -> Task | None:
            model = session.get(TaskModel, task_id)
            return _task_to_domain(model) if model else None

        return self._read(query)

    def list_tasks(self, story_id: int | None = None) -> list[Task]:
        def query(session: Session) -> list[Task]:
            stmt = select(TaskModel).order_by(TaskModel.updated_at.desc())
            if story_id is not None:
                stmt = stmt.where(TaskModel.story_id == story_id)
            return [_task_to_domain(m) for m in session.scalars(stmt).all()]

        return self._read(query)

    def list_assets(self, query_text: str | None = None) -> list[AssetItem]:
        def query(session: Session) -> list[AssetItem]:
            stmt = select(AssetModel).order_by(AssetModel.created_at.desc())
            if query_text:
                stmt = stmt.where(AssetModel.title.ilike(f"%{query_text}%"))
            return [_asset_to_domain(m) for m in session.scalars(stmt).all()]

        return self._read(query)

    def get_asset(self, asset_id: int) -> AssetItem | None:
        def query(session: Session) -> AssetItem | None:
            model = session.get(AssetModel, asset_id)
            return _asset_to_domain(model) if model else None

        return self._read(query)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    async def observe(self, tables: Iterable[str], query: Callable[[], T]) -> AsyncIterator[T]:
        """Emit ``query()`` now and again after every commit touching ``tables``."""
        watched = frozenset(tables)
        queue = self.notifier.subscribe()
        try:
            yield await run_blocking(query)
            while True:
                changed = await queue.get()
                if changed & watched:
                    yield await run_blocking(query)
        finally:
            self.notifier.unsubscribe(queue)
