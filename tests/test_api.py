"""
Tests for the HTTP API.
"""
import time

import pytest
from fastapi.testclient import TestClient

from longvideo.api.main import app
from longvideo.orchestration import create_task, start_next_batch
from longvideo.persistence import InMemoryTaskRepository
from longvideo.services.long_video_service import LongVideoService, set_long_video_service


@pytest.fixture
def client(service):
    set_long_video_service(service)
    with TestClient(app) as test_client:
        yield test_client
    set_long_video_service(None)


@pytest.fixture
def unconfigured_client():
    set_long_video_service(LongVideoService(InMemoryTaskRepository(), None))
    with TestClient(app) as test_client:
        yield test_client
    set_long_video_service(None)


def _create(client, story="A lighthouse keeper befriends a storm.", **overrides):
    payload = {"duration_minutes": 1, "story": story}
    payload.update(overrides)
    return client.post("/api/long-video/tasks", json=payload)


def _wait_for_terminal(client, task_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/long-video/tasks/{task_id}").json()
        if body["status"] in ("completed", "failed"):
            return body
        time.sleep(0.02)
    raise AssertionError(f"task {task_id} did not finish")


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["generation_ready"] is True
        assert data["service"] == "long-video-api"

    def test_liveness(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    def test_config_status_hides_keys(self, client):
        response = client.get("/health/config")

        assert response.status_code == 200
        data = response.json()
        assert "vectorengine" in data["apis"]
        assert data["capabilities"]["emergency_merge"] is True
        assert "test-key" not in response.text

    def test_degraded_without_keys(self, unconfigured_client):
        data = unconfigured_client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["generation_ready"] is False


class TestCreateTask:

    def test_create_returns_accepted(self, client):
        response = _create(client, user_id="user-1")

        assert response.status_code == 202
        data = response.json()
        assert data["task_id"].startswith("long_video_")
        assert data["total_segments"] == 8
        assert data["total_batches"] == 2

    def test_task_runs_to_completion(self, client):
        task_id = _create(client).json()["task_id"]

        data = _wait_for_terminal(client, task_id)

        assert data["status"] == "completed"
        assert data["progress"] == 100
        assert data["final_video_url"] == "https://cdn.test/merged/final.mp4"
        assert len(data["segments"]) == 8
        assert all(s["status"] == "completed" for s in data["segments"])

    @pytest.mark.parametrize("payload", [
        {"duration_minutes": 0, "story": "story"},
        {"duration_minutes": 500, "story": "story"},
        {"duration_minutes": 1, "story": ""},
        {"duration_minutes": 1, "story": "   "},
        {"duration_minutes": 1, "story": "story", "options": {"bgm_type": "jazz"}},
        {"duration_minutes": 1, "story": "story", "options": {"subtitle_style": "comic"}},
        {"duration_minutes": 1},
    ])
    def test_invalid_requests(self, client, payload):
        response = client.post("/api/long-video/tasks", json=payload)

        assert response.status_code == 422

    def test_not_configured(self, unconfigured_client):
        response = _create(unconfigured_client)

        assert response.status_code == 503
        assert response.json()["code"] == "SERVICE_UNAVAILABLE"


class TestQueries:

    def test_missing_task(self, client):
        response = client.get("/api/long-video/tasks/long_video_0_missing00")

        assert response.status_code == 404
        assert response.json()["code"] == "TASK_NOT_FOUND"

    def test_stats(self, client):
        task_id = _create(client).json()["task_id"]
        _wait_for_terminal(client, task_id)

        response = client.get(f"/api/long-video/tasks/{task_id}/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["completed_segments"] == 8
        assert data["estimated_minutes_remaining"] == 0

    def test_list_by_user(self, client):
        mine = _create(client, user_id="me").json()["task_id"]
        other = _create(client, user_id="someone-else").json()["task_id"]
        _wait_for_terminal(client, mine)
        _wait_for_terminal(client, other)

        data = client.get("/api/long-video/tasks", params={"user_id": "me"}).json()

        assert data["total"] == 1
        assert data["tasks"][0]["id"] == mine

    def test_merge_options(self, client):
        data = client.get("/api/long-video/merge-options").json()

        assert "none" in data["bgm_options"]
        assert "cinematic" in data["subtitle_styles"]


class TestActions:

    def test_regenerate_busy_segment(self, client, task_repository):
        task = create_task(1, "story")
        start_next_batch(task)
        task_repository.save(task)

        response = client.post(f"/api/long-video/tasks/{task.id}/segments/1/regenerate", json={"stage": "video"})

        assert response.status_code == 409
        assert response.json()["code"] == "SEGMENT_BUSY"

    def test_regenerate_unknown_segment(self, client, task_repository):
        task = create_task(1, "story")
        task_repository.save(task)

        response = client.post(f"/api/long-video/tasks/{task.id}/segments/99/regenerate")

        assert response.status_code == 404
        assert response.json()["code"] == "SEGMENT_NOT_FOUND"

    def test_regenerate_audio(self, client):
        task_id = _create(client).json()["task_id"]
        _wait_for_terminal(client, task_id)

        response = client.post(f"/api/long-video/tasks/{task_id}/segments/2/regenerate", json={"stage": "audio"})

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == 2
        assert data["status"] == "completed"
        assert data["audio_url"].endswith(".mp3")

    def test_invalid_stage(self, client):
        response = client.post(
            "/api/long-video/tasks/long_video_0_missing00/segments/1/regenerate",
            json={"stage": "everything"},
        )

        assert response.status_code == 422

    def test_merge(self, client, cloud_merge):
        task_id = _create(client).json()["task_id"]
        _wait_for_terminal(client, task_id)
        cloud_merge.url = "https://cdn.test/merged/v2.mp4"

        response = client.post(f"/api/long-video/tasks/{task_id}/merge")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["mode"] == "cloud"
        assert client.get(f"/api/long-video/tasks/{task_id}").json()["final_video_url"] == data["video_url"]

    def test_merge_without_completed_segments(self, client, task_repository):
        task = create_task(1, "story")
        task_repository.save(task)

        response = client.post(f"/api/long-video/tasks/{task.id}/merge")

        assert response.status_code == 409
        assert response.json()["code"] == "ALL_SEGMENTS_FAILED"

    def test_delete(self, client):
        task_id = _create(client).json()["task_id"]
        _wait_for_terminal(client, task_id)

        response = client.delete(f"/api/long-video/tasks/{task_id}")

        assert response.status_code == 200
        assert response.json() == {"task_id": task_id, "deleted": True}
        assert client.get(f"/api/long-video/tasks/{task_id}").status_code == 404
        assert client.delete(f"/api/long-video/tasks/{task_id}").status_code == 404
