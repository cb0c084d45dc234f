import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import textblocker.api.services.state as state
from textblocker.api.main import app
from textblocker.api.services.queue import JobQueue
from textblocker.core.config.settings import DEFAULT_LANGUAGES, DEFAULT_YTDLP_FORMAT, BlockerSettings
from textblocker.core.errors import FetchError
from textblocker.core.sources.youtube import RemoteVideo


class FailingFetcher:
    def get_video_info(self, url):
        raise FetchError("Failed to read video info: private video")

    def get_playlist_videos(self, url):
        return [RemoteVideo(id="a", title="A", url="https://www.youtube.com/watch?v=a")]


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(state, "load_settings", lambda: BlockerSettings())
    previous_settings, previous_queue = state._settings, state._queue
    state._settings = BlockerSettings()
    # Worker never started: submitted jobs stay pending.
    state._queue = JobQueue(lambda: None, fetcher_factory=FailingFetcher)
    try:
        yield TestClient(app)
    finally:
        state._settings, state._queue = previous_settings, previous_queue


@pytest.fixture
def clip(tmp_path: Path) -> Path:
    p = tmp_path / "clip.mp4"
    p.write_bytes(b"x")
    return p


def test_health_endpoint(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_get_and_update_config(client):
    res = client.get("/config")
    assert res.status_code == 200
    cfg = res.json()
    assert cfg["sample_fps"] == 1.0

    cfg["sample_fps"] = 3.0
    cfg["quality"] = "FAST"
    res = client.post("/config", json=cfg)
    assert res.status_code == 200
    assert res.json()["sample_fps"] == 3.0
    assert res.json()["quality"] == "fast"
    assert state.get_settings().sample_fps == 3.0


def test_update_config_accepts_partial_body(client):
    res = client.post("/config", json={"sample_fps": 2.5})
    assert res.status_code == 200
    cfg = res.json()
    assert cfg["sample_fps"] == 2.5
    assert cfg["languages"] == DEFAULT_LANGUAGES
    assert cfg["ytdlp_format"] == DEFAULT_YTDLP_FORMAT


def test_update_config_rejects_invalid_values(client):
    cfg = client.get("/config").json()
    cfg["scene_threshold"] = 99
    assert client.post("/config", json=cfg).status_code == 422


def test_presets(client):
    res = client.get("/config/presets")
    assert [p["id"] for p in res.json()["presets"]][0] == "default"

    res = client.post("/config/presets/high_quality")
    assert res.status_code == 200
    assert res.json()["sample_fps"] == 2.0
    assert client.post("/config/presets/nope").status_code == 404


def test_submit_and_list_jobs(client, clip):
    res = client.post("/jobs/file", json={"path": str(clip)})
    assert res.status_code == 200
    job = res.json()
    assert job["phase"] == "pending"
    assert job["title"] == "clip"
    assert job["status_text"] == "Pending"
    assert job["overall_progress"] == 0.0

    listed = client.get("/jobs").json()
    assert [j["id"] for j in listed] == [job["id"]]
    assert client.get(f"/jobs/{job['id']}").json()["id"] == job["id"]
    assert client.get("/jobs/unknown").status_code == 404


def test_submit_missing_file(client, tmp_path):
    res = client.post("/jobs/file", json={"path": str(tmp_path / "nope.mp4")})
    assert res.status_code == 400


def test_submit_folder(client, tmp_path):
    (tmp_path / "a.mp4").write_bytes(b"")
    (tmp_path / "b.m4v").write_bytes(b"")
    res = client.post("/jobs/folder", json={"path": str(tmp_path)})
    assert res.status_code == 200
    assert len(res.json()) == 2


def test_remote_submission_errors_and_playlist(client):
    res = client.post("/jobs/youtube", json={"url": "https://youtu.be/private"})
    assert res.status_code == 502
    assert "private video" in res.json()["detail"]

    res = client.post("/jobs/playlist", json={"url": "https://youtube.com/playlist?list=x"})
    assert res.status_code == 200
    assert res.json()[0]["kind"] == "remote-playlist-item"


def test_cancel_delete_and_clear(client, clip):
    a = client.post("/jobs/file", json={"path": str(clip)}).json()
    b = client.post("/jobs/file", json={"path": str(clip)}).json()

    res = client.post(f"/jobs/{a['id']}/cancel")
    assert res.json() == {"cancelled": True}
    assert client.get(f"/jobs/{a['id']}").json()["phase"] == "cancelled"
    assert client.post("/jobs/unknown/cancel").status_code == 404

    assert client.delete(f"/jobs/{b['id']}").json() == {"removed": True}
    assert client.delete(f"/jobs/{b['id']}").status_code == 404

    assert client.delete("/jobs/finished").json() == {"removed": 1}
    assert client.get("/jobs").json() == []


def test_job_events_websocket(client, clip):
    job = client.post("/jobs/file", json={"path": str(clip)}).json()
    with client.websocket_connect("/jobs/events") as ws:
        first = ws.receive_json()
        assert first["type"] == "snapshot"
        assert [j["id"] for j in first["jobs"]] == [job["id"]]

        ws.send_json({"type": "ping", "t": 1})
        assert ws.receive_json()["type"] == "pong"

        client.post(f"/jobs/{job['id']}/cancel")
        update = ws.receive_json()
        assert update["type"] == "job"
        assert update["job"]["phase"] == "cancelled"


def test_job_events_websocket_unsubscribes_on_disconnect(client):
    queue = state._queue
    with client.websocket_connect("/jobs/events") as ws:
        assert ws.receive_json()["type"] == "snapshot"
        assert len(queue._listeners) == 1

    deadline = time.time() + 2
    while queue._listeners and time.time() < deadline:
        time.sleep(0.01)
    assert queue._listeners == []
