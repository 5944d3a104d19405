"""Tests for health endpoints and the HTTP surface."""

from unittest.mock import patch

from fastapi.testclient import TestClient

from storyreel.config import settings
from storyreel.main import create_app
from storyreel.services.repository import SEED_SYNOPSIS


def test_health_endpoint(test_client: TestClient) -> None:
    """Test the basic health endpoint."""
    response = test_client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["pipeline_client"] == "stub"


def test_liveness_endpoint(test_client: TestClient) -> None:
    """Test the liveness probe endpoint."""
    response = test_client.get("/health/live")

    assert response.status_code == 200
    assert response.json()["status"] == "alive"


def test_readiness_endpoint(test_client: TestClient) -> None:
    response = test_client.get("/health/ready")

    assert response.status_code == 200
    data = response.json()
    assert data["database"] is True
    assert data["pipeline"] is True
    assert isinstance(data["story_count"], int)
    assert data["ready"] == data["ffmpeg"]


def test_root_endpoint(test_client: TestClient) -> None:
    """Test the root endpoint."""
    response = test_client.get("/")

    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "storyreel"
    assert data["docs"] == "/docs"


class TestStoryEndpoints:
    def test_create_and_fetch_story(self, test_client: TestClient) -> None:
        response = test_client.post(
            "/api/v1/stories", json={"synopsis": "雨夜的摄影师", "style": "cinematic"}
        )

        assert response.status_code == 201
        story = response.json()
        assert len(story["shots"]) == 4
        assert [shot["position"] for shot in story["shots"]] == [0, 1, 2, 3]
        assert story["video_state"] == "idle"

        fetched = test_client.get(f"/api/v1/stories/{story['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["title"] == story["title"]

        listed = test_client.get("/api/v1/stories").json()
        assert story["id"] in [s["id"] for s in listed]

        tasks = test_client.get("/api/v1/tasks", params={"story_id": story["id"]}).json()
        assert [t["status"] for t in tasks] == ["completed"]
        assert tasks[0]["kind"] == "pipeline"

    def test_empty_synopsis_rejected(self, test_client: TestClient) -> None:
        response = test_client.post("/api/v1/stories", json={"synopsis": ""})

        assert response.status_code == 422

    def test_unknown_story_is_404(self, test_client: TestClient) -> None:
        assert test_client.get("/api/v1/stories/1").status_code == 404
        assert test_client.post("/api/v1/stories/1/videos").status_code == 404
        assert test_client.post("/api/v1/stories/1/export").status_code == 404

    def test_edit_shot(self, test_client: TestClient) -> None:
        story = test_client.post("/api/v1/stories", json={"synopsis": "海边的灯塔"}).json()
        shot_id = story["shots"][1]["id"]

        response = test_client.patch(
            f"/api/v1/stories/{story['id']}/shots/{shot_id}",
            json={"prompt": "lighthouse at dusk", "narration": "…", "transition": "crossfade"},
        )

        assert response.status_code == 200
        assert response.json()["prompt"] == "lighthouse at dusk"
        assert response.json()["transition"] == "crossfade"

        missing = test_client.patch(
            f"/api/v1/stories/{story['id']}/shots/nope",
            json={"prompt": "x", "narration": "", "transition": "ken_burns"},
        )
        assert missing.status_code == 404


class TestAssetEndpoints:
    def test_shot_video_creates_asset(self, test_client: TestClient) -> None:
        story = test_client.post("/api/v1/stories", json={"synopsis": "森林里的狐狸"}).json()
        shot_id = story["shots"][0]["id"]

        response = test_client.post(f"/api/v1/stories/{story['id']}/shots/{shot_id}/video")

        assert response.status_code == 200
        assert response.json()["video_status"] == "ready"

        assets = test_client.get("/api/v1/assets", params={"q": "森林"}).json()
        assert [a["id"] for a in assets] == [story["id"]]
        assert assets[0]["preview_uri"] == response.json()["video_url"]

        deleted = test_client.delete(f"/api/v1/assets/{story['id']}")
        assert deleted.status_code == 204
        assert test_client.get("/api/v1/assets", params={"q": "森林"}).json() == []
        assert test_client.get(f"/api/v1/stories/{story['id']}").status_code == 200


class TestCreateApp:
    def test_injected_repository_is_seeded_on_startup(self, repository) -> None:
        with patch.object(settings, "seed_demo_story", True):
            with TestClient(create_app(repository)) as client:
                stories = client.get("/api/v1/stories").json()

        assert len(stories) == 1
        assert stories[0]["synopsis"] == SEED_SYNOPSIS
