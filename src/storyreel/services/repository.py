"""Story repository: the single write path for stories, shots, tasks and assets.

Orchestrators and the assembly engine only return values. This module turns
their results into entity mutations, records task progress, and converts
expected failures into ``OperationResult`` values instead of exceptions.
"""

import asyncio
import dataclasses
import functools
from collections import defaultdict
from collections.abc import AsyncIterator
from pathlib import Path

from storyreel.adapters.pipeline import (
    HttpPipelineClient,
    PipelineClient,
    StubPipelineClient,
    extract_job_id,
)
from storyreel.config import settings
from storyreel.db.session import build_session_factory, get_engine
from storyreel.db.store import ASSETS, SHOTS, STORIES, StoryStore
from storyreel.domain.enums import (
    ExportDestination,
    PipelineTaskStatus,
    ShotStatus,
    StoryStyle,
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
    Story,
    StoryBlueprint,
    Task,
    VideoTask,
    story_title_from_synopsis,
    utcnow,
)
from storyreel.errors import ArtifactMissing, NotFound, StoryreelError
from storyreel.logging import get_logger, job_context
from storyreel.services.assembly import MediaAssemblyEngine
from storyreel.services.media_library import MediaLibrary
from storyreel.services.shot_video import ShotVideoOrchestrator
from storyreel.services.storyboard import StoryboardOrchestrator
from storyreel.services.task_registry import TaskRegistry
from storyreel.utils.async_utils import run_blocking

logger = get_logger(__name__)

SEED_SYNOPSIS = "一位孤独的摄影师在雨夜的城市中寻找遗失的记忆。"
SEED_STYLE = StoryStyle.CINEMATIC


def video_task_id(job_id: str, shot_id: str) -> str:
    """Registry key of a shot's video job.

    Every shot of a storyboard shares the storyboard job id, so the shot id is
    part of the key.
    """
    return f"{job_id}/{shot_id}"


class StoryRepository:
    """Coordinates orchestrators, the store and the task registry.

    Public write operations return ``OperationResult`` and never raise on an
    expected (``StoryreelError``) failure. Writes touching one story are
    serialized by a per-story lock; remote calls run outside the lock so that
    shot video jobs of the same story can be in flight together.
    """

    def __init__(
        self,
        store: StoryStore,
        client: PipelineClient,
        storyboard: StoryboardOrchestrator,
        shot_video: ShotVideoOrchestrator,
        assembly: MediaAssemblyEngine,
        registry: TaskRegistry | None = None,
        video_max_concurrency: int | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.storyboard = storyboard
        self.shot_video = shot_video
        self.assembly = assembly
        self.registry = registry or TaskRegistry(store)
        self.video_max_concurrency = video_max_concurrency or settings.video_max_concurrency
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._create_lock = asyncio.Lock()

    async def close(self) -> None:
        await self.client.close()

    # =========================================================================
    # Read path
    # =========================================================================

    def observe_stories(self) -> AsyncIterator[list[Story]]:
        return self.store.observe([STORIES, SHOTS], self.store.list_stories)

    def observe_story(self, story_id: int) -> AsyncIterator[Story | None]:
        return self.store.observe([STORIES, SHOTS], functools.partial(self.store.get_story, story_id))

    def observe_assets(self, query: str | None = None) -> AsyncIterator[list[AssetItem]]:
        return self.store.observe([ASSETS], functools.partial(self.store.list_assets, query))

    def observe_tasks(self) -> AsyncIterator[list[Task]]:
        return self.registry.observe_all()

    async def get_story(self, story_id: int) -> Story | None:
        return await run_blocking(self.store.get_story, story_id)

    async def list_stories(self) -> list[Story]:
        return await run_blocking(self.store.list_stories)

    async def list_assets(self, query: str | None = None) -> list[AssetItem]:
        return await run_blocking(self.store.list_assets, query)

    async def list_tasks(self) -> list[Task]:
        return await self.registry.list_all()

    async def _require_story(self, story_id: int) -> Story:
        story = await self.get_story(story_id)
        if story is None:
            raise NotFound(f"Story {story_id} not found")
        return story

    async def _require_shot(self, story_id: int, shot_id: str) -> tuple[Story, Shot]:
        story = await self._require_story(story_id)
        shot = story.find_shot(shot_id)
        if shot is None:
            raise NotFound(f"Shot {shot_id} not found in story {story_id}")
        return story, shot

    # =========================================================================
    # Story creation
    # =========================================================================

    async def create_story(self, synopsis: str, style: StoryStyle) -> OperationResult[Story]:
        """Generate a storyboard and persist it as a new story.

        The story, its shots, the completed pipeline task and (when a preview
        exists) the asset are written in one transaction. A failed run leaves
        only a failed pipeline task behind.
        """
        title = story_title_from_synopsis(synopsis)
        submitted: dict[str, PipelineTask] = {}

        async def record_status(job_id: str, report: PipelineStatusReport) -> None:
            now = utcnow()
            task = submitted.get(job_id)
            if task is None:
                task = PipelineTask(id=job_id, created_at=now, updated_at=now, title=title)
            task = dataclasses.replace(task, status=report.overall_status, updated_at=now)
            submitted[job_id] = task
            await self.registry.upsert(task)

        logger.info("story_create_started", style=style.value, synopsis_length=len(synopsis))
        try:
            blueprint = await self.storyboard.run(synopsis, style, on_status=record_status)
        except StoryreelError as e:
            logger.error("story_create_failed", error=str(e), error_type=type(e).__name__)
            for task in submitted.values():
                await self.registry.upsert(
                    dataclasses.replace(
                        task,
                        status=PipelineTaskStatus.FAILED,
                        message=str(e),
                        updated_at=utcnow(),
                    )
                )
            return OperationResult.failure(str(e))

        pipeline_task = submitted.get(blueprint.job_id) or PipelineTask(
            id=blueprint.job_id,
            created_at=blueprint.created_at,
            updated_at=blueprint.created_at,
            title=title,
        )
        pipeline_task = dataclasses.replace(
            pipeline_task,
            status=PipelineTaskStatus.COMPLETED,
            story_id=blueprint.story_id,
            updated_at=utcnow(),
        )

        story = self._story_from_blueprint(blueprint)
        async with self._create_lock:
            story = await run_blocking(self._write_new_story, story, pipeline_task)

        logger.info(
            "story_created",
            story_id=story.id,
            job_id=blueprint.job_id,
            shot_count=len(story.shots),
        )
        return OperationResult.success(story)

    @staticmethod
    def _story_from_blueprint(blueprint: StoryBlueprint) -> Story:
        shots = [
            Shot(
                id=bp.id,
                story_id=blueprint.story_id,
                title=bp.title,
                prompt=bp.prompt,
                narration=bp.narration,
                thumbnail_url=bp.thumbnail_url,
                status=bp.status,
                transition=bp.transition,
                audio_url=bp.audio_url,
                position=index,
            )
            for index, bp in enumerate(blueprint.shots)
        ]
        return Story(
            id=blueprint.story_id,
            title=blueprint.title,
            synopsis=blueprint.synopsis,
            style=blueprint.style,
            created_at=blueprint.created_at,
            video_state=VideoTaskState.READY if blueprint.preview_url else VideoTaskState.IDLE,
            preview_url=blueprint.preview_url,
            preview_urls=list(blueprint.preview_urls),
            preview_audio_urls=list(blueprint.preview_audio_urls),
            shots=shots,
        )

    def _write_new_story(self, story: Story, pipeline_task: PipelineTask) -> Story:
        """Persist a new story under a free id and return it as stored."""
        with self.store.transaction() as tx:
            story_id = tx.reserve_story_id(story.id)
            if story_id != story.id:
                story = dataclasses.replace(
                    story,
                    id=story_id,
                    shots=[dataclasses.replace(s, story_id=story_id) for s in story.shots],
                )
                pipeline_task = dataclasses.replace(pipeline_task, story_id=story_id)
            tx.upsert_story(story)
            tx.upsert_shots(story.shots)
            tx.upsert_task(pipeline_task)
            if story.preview_url:
                thumbnail = next(
                    (s.thumbnail_url for s in story.shots if s.thumbnail_url), story.preview_url
                )
                tx.upsert_asset(
                    AssetItem(
                        id=story.id,
                        title=story.title,
                        style=story.style,
                        thumbnail_url=thumbnail,
                        created_at=story.created_at,
                        preview_uri=story.preview_url,
                        source_story_id=story.id,
                    )
                )
        return story

    async def ensure_seed_data(self) -> OperationResult[Story | None]:
        """Create the demo story when the store is empty."""
        if await run_blocking(self.store.count_stories) > 0:
            return OperationResult.success(None)
        logger.info("seed_story_creating")
        return await self.create_story(SEED_SYNOPSIS, SEED_STYLE)

    # =========================================================================
    # Shot editing
    # =========================================================================

    async def regenerate_shot(self, story_id: int, shot_id: str) -> OperationResult[Shot]:
        """Re-render a shot image from its current prompt.

        The shot is ``generating`` while the remote call runs. On failure it is
        restored to ``ready`` with its previous thumbnail.
        """
        try:
            _, current = await self._require_shot(story_id, shot_id)
            job_id = extract_job_id(current.thumbnail_url or "")
            if job_id is None:
                raise ArtifactMissing(f"Shot {shot_id} has no job to regenerate from")
            async with self._locks[story_id]:
                await run_blocking(
                    self.store.update_shot_image,
                    shot_id,
                    ShotStatus.GENERATING,
                    current.thumbnail_url,
                )
        except StoryreelError as e:
            return OperationResult.failure(str(e))

        try:
            image = await self.client.regenerate_shot_image(job_id, current.position, current.prompt)
        except StoryreelError as e:
            logger.error("shot_regenerate_failed", story_id=story_id, shot_id=shot_id, error=str(e))
            async with self._locks[story_id]:
                await run_blocking(
                    self.store.update_shot_image, shot_id, ShotStatus.READY, current.thumbnail_url
                )
            return OperationResult.failure(str(e))

        try:
            async with self._locks[story_id]:
                updated = await run_blocking(
                    self.store.update_shot_image,
                    shot_id,
                    ShotStatus.READY,
                    self.client.artifact_url(job_id, image),
                )
        except StoryreelError as e:
            return OperationResult.failure(str(e))
        logger.info("shot_regenerated", story_id=story_id, shot_id=shot_id)
        return OperationResult.success(updated)

    async def update_shot_details(
        self,
        story_id: int,
        shot_id: str,
        prompt: str,
        narration: str,
        transition: TransitionType,
    ) -> OperationResult[Shot]:
        async with self._locks[story_id]:
            try:
                _, current = await self._require_shot(story_id, shot_id)
            except StoryreelError as e:
                return OperationResult.failure(str(e))
            updated = await run_blocking(
                self.store.update_shot_details, current.id, prompt, narration, transition
            )
        return OperationResult.success(updated)

    # =========================================================================
    # Video generation
    # =========================================================================

    async def request_video(self, story_id: int) -> OperationResult[Shot]:
        """Generate a story-level video from the first shot that has an image."""
        try:
            story = await self._require_story(story_id)
            shot = next((s for s in story.shots if s.thumbnail_url), None)
            if shot is None:
                raise ArtifactMissing(f"Story {story_id} has no shot image to generate a video from")
        except StoryreelError as e:
            return OperationResult.failure(str(e))

        await self._set_story_video_state(story_id, VideoTaskState.GENERATING)
        try:
            updated = await self._generate_shot_video(story, shot)
        except StoryreelError as e:
            await self._set_story_video_state(story_id, VideoTaskState.ERROR)
            return OperationResult.failure(str(e))
        return OperationResult.success(updated)

    async def request_video_for_shot(self, story_id: int, shot_id: str) -> OperationResult[Shot]:
        try:
            story, shot = await self._require_shot(story_id, shot_id)
            if not shot.thumbnail_url:
                raise ArtifactMissing(f"Shot {shot_id} has no image to generate a video from")
            updated = await self._generate_shot_video(story, shot)
        except StoryreelError as e:
            return OperationResult.failure(str(e))
        return OperationResult.success(updated)

    async def request_videos_for_all_shots(
        self, story_id: int
    ) -> OperationResult[dict[str, OperationResult[Shot]]]:
        """Generate videos for every shot with an image, concurrently.

        Each shot succeeds or fails on its own; the returned mapping holds one
        result per attempted shot id. Shots without an image are skipped.
        """
        try:
            story = await self._require_story(story_id)
        except StoryreelError as e:
            return OperationResult.failure(str(e))

        shots = [s for s in story.shots if s.thumbnail_url]
        semaphore = asyncio.Semaphore(self.video_max_concurrency)

        async def generate(shot: Shot) -> OperationResult[Shot]:
            async with semaphore:
                try:
                    return OperationResult.success(await self._generate_shot_video(story, shot))
                except StoryreelError as e:
                    return OperationResult.failure(str(e))

        results = await asyncio.gather(*(generate(shot) for shot in shots))
        summary = {shot.id: result for shot, result in zip(shots, results, strict=True)}
        logger.info(
            "shot_videos_batch_completed",
            story_id=story_id,
            attempted=len(shots),
            succeeded=sum(1 for r in results if r.ok),
            skipped=len(story.shots) - len(shots),
        )
        return OperationResult.success(summary)

    async def _generate_shot_video(self, story: Story, shot: Shot) -> Shot:
        """Run one shot video job, recording shot state and task progress.

        Raises the orchestrator's error after recording the failure.
        """
        thumbnail_url = shot.thumbnail_url or ""
        job_id = extract_job_id(thumbnail_url)
        if job_id is None:
            raise ArtifactMissing(f"Cannot derive a job id from {thumbnail_url!r}")

        created_at = utcnow()
        task = VideoTask(
            id=video_task_id(job_id, shot.id),
            created_at=created_at,
            updated_at=created_at,
            story_id=story.id,
            shot_id=shot.id,
            title=shot.title,
        )
        await self.registry.upsert(task)
        async with self._locks[story.id]:
            await run_blocking(self.store.update_shot_video, shot.id, None, VideoTaskState.GENERATING)

        async def record_submission(video_job_id: str) -> None:
            await self.registry.upsert(
                dataclasses.replace(task, message=f"video job {video_job_id}", updated_at=utcnow())
            )

        try:
            with job_context(story_id=story.id, shot_id=shot.id):
                result = await self.shot_video.run(
                    thumbnail_url, job_id, on_submitted=record_submission
                )
        except StoryreelError as e:
            logger.warning(
                "shot_video_request_failed", story_id=story.id, shot_id=shot.id, error=str(e)
            )
            async with self._locks[story.id]:
                await run_blocking(self.store.update_shot_video, shot.id, None, VideoTaskState.ERROR)
            await self.registry.upsert(
                dataclasses.replace(
                    task, status=VideoTaskStatus.FAILED, message=str(e), updated_at=utcnow()
                )
            )
            raise

        async with self._locks[story.id]:
            updated = await run_blocking(
                self.store.update_shot_video, shot.id, result.video_url, VideoTaskState.READY
            )
        await self.registry.upsert(
            dataclasses.replace(
                task,
                status=VideoTaskStatus.READY,
                video_url=result.video_url,
                message=f"video job {result.job_id}",
                updated_at=utcnow(),
            )
        )
        await self.finalize_video(story.id, result.video_url)
        return updated

    async def _set_story_video_state(self, story_id: int, state: VideoTaskState) -> None:
        async with self._locks[story_id]:
            story = await self.get_story(story_id)
            if story is not None:
                await run_blocking(
                    self.store.upsert_story, dataclasses.replace(story, video_state=state)
                )

    async def finalize_video(self, story_id: int, preview_url: str) -> OperationResult[AssetItem]:
        """Mark a story's video ready and publish it as an asset.

        The asset id is the story id, so a newer video overwrites the asset's
        thumbnail and preview instead of adding another asset.
        """
        async with self._locks[story_id]:
            try:
                story = await self._require_story(story_id)
            except StoryreelError as e:
                return OperationResult.failure(str(e))

            asset = AssetItem(
                id=story.id,
                title=story.title,
                style=story.style,
                thumbnail_url=preview_url,
                created_at=utcnow(),
                preview_uri=preview_url,
                source_story_id=story.id,
            )
            await run_blocking(
                self._write_finalized,
                dataclasses.replace(story, video_state=VideoTaskState.READY, preview_url=preview_url),
                asset,
            )
        logger.info("story_video_finalized", story_id=story_id, preview_url=preview_url)
        return OperationResult.success(asset)

    def _write_finalized(self, story: Story, asset: AssetItem) -> None:
        with self.store.transaction() as tx:
            tx.upsert_story(story)
            tx.upsert_asset(asset)

    # =========================================================================
    # Export and assets
    # =========================================================================

    @staticmethod
    def _video_segments(story: Story) -> list[str]:
        ready = [
            s.video_url for s in story.shots if s.video_status == VideoTaskState.READY and s.video_url
        ]
        if ready:
            return ready
        if story.preview_urls:
            return list(story.preview_urls)
        return [story.preview_url] if story.preview_url else []

    @staticmethod
    def _audio_segments(story: Story) -> list[str]:
        audio = [s.audio_url for s in story.shots if s.audio_url]
        return audio or list(story.preview_audio_urls)

    async def export_story(
        self,
        story_id: int,
        destination: ExportDestination = ExportDestination.LIBRARY,
    ) -> OperationResult[ExportedMedia]:
        """Assemble the story's clips and narration and publish the result."""
        try:
            story = await self._require_story(story_id)
            exported = await self.assembly.export(
                self._video_segments(story),
                story.title,
                destination,
                audio_segments=self._audio_segments(story) or None,
            )
        except StoryreelError as e:
            logger.error("story_export_failed", story_id=story_id, error=str(e))
            return OperationResult.failure(str(e))
        return OperationResult.success(exported)

    async def merge_preview_audio(self, story_id: int) -> OperationResult[Path | None]:
        """Merge the story's narration into one preview track, if possible."""
        try:
            story = await self._require_story(story_id)
        except StoryreelError as e:
            return OperationResult.failure(str(e))
        return OperationResult.success(
            await self.assembly.merge_audio_only(self._audio_segments(story))
        )

    async def delete_asset(self, asset_id: int) -> OperationResult[None]:
        """Remove an asset. The story it came from is left untouched."""
        await run_blocking(self.store.delete_asset, asset_id)
        logger.info("asset_deleted", asset_id=asset_id)
        return OperationResult.success(None)


# =============================================================================
# Wiring
# =============================================================================


def get_pipeline_client() -> PipelineClient:
    """Get the configured generation service client."""
    if settings.pipeline_client == "stub":
        return StubPipelineClient()
    return HttpPipelineClient()


def create_story_repository(
    store: StoryStore | None = None,
    client: PipelineClient | None = None,
) -> StoryRepository:
    """Build a repository wired from settings."""
    store = store or StoryStore(build_session_factory(get_engine()))
    client = client or get_pipeline_client()
    return StoryRepository(
        store=store,
        client=client,
        storyboard=StoryboardOrchestrator(
            client,
            poll_interval=settings.storyboard_poll_interval,
            max_attempts=settings.storyboard_max_attempts,
        ),
        shot_video=ShotVideoOrchestrator(
            client,
            poll_interval=settings.video_poll_interval,
            max_attempts=settings.video_max_attempts,
        ),
        assembly=MediaAssemblyEngine(
            work_dir=settings.work_dir,
            library=MediaLibrary(settings.export_root),
            preview_dir=settings.preview_dir,
            ffmpeg_path=settings.ffmpeg_path,
            fetcher=client.fetch_url,
            timeout=settings.ffmpeg_timeout,
            audio_codec=settings.export_audio_codec,
        ),
    )
