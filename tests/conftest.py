"""Pytest configuration and fixtures."""

import os
import tempfile
from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Set test environment before importing app modules
_storage = Path(tempfile.mkdtemp(prefix="storyreel-test-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_storage / 'storyreel.db'}"
os.environ["PIPELINE_CLIENT"] = "stub"
os.environ["STORYBOARD_POLL_INTERVAL"] = "0"
os.environ["VIDEO_POLL_INTERVAL"] = "0"
os.environ["WORK_DIR"] = str(_storage / "work")
os.environ["PREVIEW_DIR"] = str(_storage / "previews")
os.environ["EXPORT_ROOT"] = str(_storage / "exports")
os.environ["LOG_LEVEL"] = "WARNING"


@pytest.fixture(scope="session")
def test_client() -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app."""
    from storyreel.main import app

    with TestClient(app) as client:
        yield client


@pytest.fixture
def store(tmp_path: Path):
    """A fresh file-backed story store, so worker threads get their own connections."""
    from storyreel.db.session import build_engine, build_session_factory, init_db
    from storyreel.db.store import StoryStore

    engine = build_engine(f"sqlite:///{tmp_path / 'store.db'}")
    init_db(engine)
    yield StoryStore(build_session_factory(engine))
    engine.dispose()


@pytest.fixture
def stub_client():
    """Get a stub pipeline client."""
    from storyreel.adapters.pipeline.stub import StubPipelineClient

    return StubPipelineClient()


@pytest.fixture
def library(tmp_path: Path):
    """Media library rooted in a temporary directory."""
    from storyreel.services.media_library import MediaLibrary

    return MediaLibrary(tmp_path / "exports")


@pytest.fixture
def assembly(tmp_path: Path, library, stub_client):
    """Assembly engine with temporary work and preview directories."""
    from storyreel.services.assembly import MediaAssemblyEngine

    return MediaAssemblyEngine(
        work_dir=tmp_path / "work",
        library=library,
        preview_dir=tmp_path / "previews",
        fetcher=stub_client.fetch_url,
        timeout=30,
    )


@pytest.fixture
def repository(store, stub_client, assembly):
    """Story repository over the stub client with zero poll intervals."""
    from storyreel.services.repository import StoryRepository
    from storyreel.services.shot_video import ShotVideoOrchestrator
    from storyreel.services.storyboard import StoryboardOrchestrator

    return StoryRepository(
        store=store,
        client=stub_client,
        storyboard=StoryboardOrchestrator(stub_client, poll_interval=0, max_attempts=5),
        shot_video=ShotVideoOrchestrator(stub_client, poll_interval=0, max_attempts=5),
        assembly=assembly,
        video_max_concurrency=2,
    )


@pytest.fixture
def make_story():
    """Build a story with ``n`` ready shots whose thumbnails belong to job ``job-1``."""
    from storyreel.domain.enums import ShotStatus, StoryStyle, TransitionType
    from storyreel.domain.models import Shot, Story

    def _make(
        n: int = 3,
        story_id: int = 1_700_000_000_000,
        title: str = "雨夜的摄影师",
        shot_prefix: str = "shot",
    ) -> Story:
        shots = [
            Shot(
                id=f"{shot_prefix}-{i + 1}",
                story_id=story_id,
                title=f"Scene {i + 1}",
                prompt=f"prompt {i + 1}",
                narration=f"narration {i + 1}",
                thumbnail_url=f"http://stub.pipeline/download/job-1/scene_{i + 1}.png",
                status=ShotStatus.READY,
                transition=list(TransitionType)[i % 3],
                audio_url=f"http://stub.pipeline/download/job-1/scene_{i + 1}.wav",
                position=i,
            )
            for i in range(n)
        ]
        return Story(
            id=story_id,
            title=title,
            synopsis=title,
            style=StoryStyle.CINEMATIC,
            created_at=datetime(2024, 1, 1, tzinfo=UTC),
            shots=shots,
        )

    return _make
