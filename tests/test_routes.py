from __future__ import annotations

import asyncio
import time
from pathlib import Path
from types import SimpleNamespace

from fastapi.testclient import TestClient

from controllers.session_controller import update_settings
from main import create_app
from services.providers.placeholder_provider import PlaceholderProvider
from services.tracker.session_store import SessionStore
from tests.fakes import StaticProvider, YieldingRepository
from utils.config import TrackerConfig


def _client(provider=None, **config) -> TestClient:
    app = create_app(TrackerConfig(task_timeout_seconds=2.0, **config), provider=provider or StaticProvider())
    return TestClient(app)


def _wait_for_idle(client: TestClient, session_id: str, timeout: float = 2.0) -> dict:
    deadline = time.time() + timeout
    while True:
        data = client.get(f"/sessions/{session_id}").json()
        if not data["queuedTasks"] or time.time() > deadline:
            return data
        time.sleep(0.01)


def test_session_lifecycle() -> None:
    with _client() as client:
        created = client.post("/sessions")
        assert created.status_code == 200
        session = created.json()
        sid = session["sessionId"]
        assert session["generationHistory"] == []
        assert session["currentSettings"]["quality"] == "standard"

        updated = client.put(f"/sessions/{sid}/settings", json={"aspectRatio": "16:9", "quality": "high"})
        assert updated.status_code == 200
        settings = updated.json()["currentSettings"]
        assert settings["aspectRatio"] == "16:9"
        assert settings["quality"] == "high"
        assert settings["width"] == 1024

        assert client.delete(f"/sessions/{sid}").json() == {"session_id": sid, "deleted": True}
        assert client.get(f"/sessions/{sid}").status_code == 404
        assert client.delete(f"/sessions/{sid}").status_code == 404


def test_invalid_settings_are_rejected() -> None:
    with _client() as client:
        sid = client.post("/sessions").json()["sessionId"]
        assert client.put(f"/sessions/{sid}/settings", json={"width": 0}).status_code == 400
        assert client.put(f"/sessions/{sid}/settings", json={"quality": "ultra"}).status_code == 400
        assert client.put("/sessions/missing/settings", json={"style": "ink"}).status_code == 404


def test_concurrent_partial_updates_are_both_applied() -> None:
    async def scenario():
        store = SessionStore(YieldingRepository())
        request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(session_store=store)))
        sid = (await store.create_session()).session_id
        await asyncio.gather(
            update_settings(request, sid, {"width": 640}),
            update_settings(request, sid, {"style": "watercolor"}),
        )
        return await store.get_session(sid)

    settings = asyncio.run(scenario()).current_settings
    assert settings.width == 640
    assert settings.style == "watercolor"


def test_submit_task_and_read_history() -> None:
    with _client() as client:
        sid = client.post("/sessions").json()["sessionId"]
        submitted = client.post(f"/sessions/{sid}/tasks", json={"prompt": "sunset", "parameters": {"width": 512}})
        assert submitted.status_code == 200
        task_id = submitted.json()["task_id"]

        session = _wait_for_idle(client, sid)
        assert session["queuedTasks"] == []

        history = client.get(f"/sessions/{sid}/history", params={"limit": 5}).json()
        assert history["total"] == 1
        assert history["history"][0]["id"] == task_id
        assert history["history"][0]["prompt"] == "sunset"
        assert history["history"][0]["parameters"] == {"width": 512}

        status = client.get("/queue").json()
        assert status["queued"] == 0 and status["processing"] == 0


def test_submit_errors_map_to_http_statuses() -> None:
    with _client() as client:
        sid = client.post("/sessions").json()["sessionId"]
        assert client.post("/sessions/missing/tasks", json={"prompt": "sunset"}).status_code == 404
        assert client.post(f"/sessions/{sid}/tasks", json={"prompt": "hi"}).status_code == 400
        bad_params = client.post(f"/sessions/{sid}/tasks", json={"prompt": "sunset", "parameters": {"height": -1}})
        assert bad_params.status_code == 400
        assert client.get(f"/sessions/{sid}").json()["queuedTasks"] == []


def test_cancel_unknown_task_reports_false() -> None:
    with _client() as client:
        sid = client.post("/sessions").json()["sessionId"]
        response = client.post(f"/sessions/{sid}/tasks/nope/cancel")
        assert response.status_code == 200
        assert response.json()["cancelled"] is False


def test_thumbnail_for_inline_history_image() -> None:
    with _client(PlaceholderProvider()) as client:
        sid = client.post("/sessions").json()["sessionId"]
        task_id = client.post(f"/sessions/{sid}/tasks", json={"prompt": "sunset"}).json()["task_id"]
        _wait_for_idle(client, sid)

        thumb = client.get(f"/sessions/{sid}/history/{task_id}/thumbnail")
        assert thumb.status_code == 200
        assert thumb.headers["content-type"] == "image/png"
        assert client.get(f"/sessions/{sid}/history/other/thumbnail").status_code == 404


def test_thumbnail_unavailable_for_hosted_images() -> None:
    with _client() as client:
        sid = client.post("/sessions").json()["sessionId"]
        task_id = client.post(f"/sessions/{sid}/tasks", json={"prompt": "sunset"}).json()["task_id"]
        _wait_for_idle(client, sid)
        assert client.get(f"/sessions/{sid}/history/{task_id}/thumbnail").status_code == 404


def test_websocket_streams_task_updates() -> None:
    with _client() as client:
        sid = client.post("/sessions").json()["sessionId"]
        with client.websocket_connect(f"/ws/{sid}") as websocket:
            restored = websocket.receive_json()
            assert restored["type"] == "session_restored"
            assert restored["sessionId"] == sid

            task_id = client.post(f"/sessions/{sid}/tasks", json={"prompt": "sunset"}).json()["task_id"]
            updates = [websocket.receive_json() for _ in range(3)]
            assert [update["type"] for update in updates] == ["task_update"] * 3
            assert [update["data"]["status"] for update in updates] == ["queued", "processing", "completed"]
            assert all(update["data"]["taskId"] == task_id for update in updates)
            assert updates[-1]["data"]["result"]["prompt"] == "sunset"

            websocket.send_json({"type": "ping", "request_id": 7})
            assert websocket.receive_json() == {"type": "pong", "request_id": 7}

            websocket.send_json({"type": "nonsense", "request_id": 8})
            error = websocket.receive_json()
            assert error["type"] == "error"
            assert error["request_id"] == 8


def test_websocket_rejects_unknown_session() -> None:
    with _client() as client:
        with client.websocket_connect("/ws/missing") as websocket:
            message = websocket.receive_json()
            assert message["type"] == "error"
            assert message["data"]["code"] == "session_not_found"


def test_health_and_persistence(tmp_path: Path) -> None:
    with _client(database_dir=str(tmp_path)) as client:
        assert client.get("/health").json() == {"ok": True, "provider": "static", "persistent": True}
        sid = client.post("/sessions").json()["sessionId"]

    with _client(database_dir=str(tmp_path)) as client:
        assert client.get(f"/sessions/{sid}").status_code == 200
