"""Tests for the task registry and store observation."""

import asyncio
import dataclasses
from datetime import UTC, datetime, timedelta

import pytest

from storyreel.domain.enums import PipelineTaskStatus, TaskKind, VideoTaskStatus
from storyreel.domain.models import PipelineTask, VideoTask
from storyreel.services.task_registry import TaskRegistry


def _pipeline_task(task_id: str = "job-1", **overrides) -> PipelineTask:
    now = datetime.now(UTC)
    fields = {"id": task_id, "created_at": now, "updated_at": now, "title": "雨夜"}
    fields.update(overrides)
    return PipelineTask(**fields)


class TestTaskRegistry:
    @pytest.mark.asyncio
    async def test_upsert_same_id_replaces(self, store) -> None:
        registry = TaskRegistry(store)
        task = _pipeline_task()

        await registry.upsert(task)
        await registry.upsert(
            dataclasses.replace(
                task,
                status=PipelineTaskStatus.COMPLETED,
                updated_at=task.updated_at + timedelta(seconds=1),
            )
        )

        tasks = await registry.list_all()
        assert len(tasks) == 1
        assert tasks[0].status == PipelineTaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_round_trips_kind_and_status(self, store) -> None:
        registry = TaskRegistry(store)
        now = datetime.now(UTC)
        await registry.upsert(_pipeline_task("p"))
        await registry.upsert(
            VideoTask(
                id="v",
                created_at=now,
                updated_at=now,
                status=VideoTaskStatus.FAILED,
                message="timeout",
                story_id=7,
                shot_id="shot-1",
            )
        )

        video = await registry.get("v")
        assert isinstance(video, VideoTask)
        assert video.kind == TaskKind.VIDEO
        assert video.status == VideoTaskStatus.FAILED
        assert video.message == "timeout"

        pipeline = await registry.get("p")
        assert isinstance(pipeline, PipelineTask)
        assert await registry.get("missing") is None

    @pytest.mark.asyncio
    async def test_list_for_story(self, store) -> None:
        registry = TaskRegistry(store)
        await registry.upsert(_pipeline_task("a", story_id=1))
        await registry.upsert(_pipeline_task("b", story_id=2))

        tasks = await registry.list_for_story(1)
        assert [t.id for t in tasks] == ["a"]

    @pytest.mark.asyncio
    async def test_observe_all_emits_after_each_write(self, store) -> None:
        registry = TaskRegistry(store)
        stream = registry.observe_all()

        try:
            assert await asyncio.wait_for(anext(stream), timeout=2) == []

            await registry.upsert(_pipeline_task("job-1"))
            snapshot = await asyncio.wait_for(anext(stream), timeout=2)
            assert [t.id for t in snapshot] == ["job-1"]

            await registry.upsert(_pipeline_task("job-1", status=PipelineTaskStatus.FAILED))
            snapshot = await asyncio.wait_for(anext(stream), timeout=2)
            assert len(snapshot) == 1
            assert snapshot[0].status == PipelineTaskStatus.FAILED
        finally:
            await stream.aclose()
