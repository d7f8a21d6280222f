import pytest
from fastapi.testclient import TestClient

import config
from conftest import FakeCamera, FakeDetector, FakeEstimator, FakeLLM
from flowstate import database
from flowstate.engine import SessionEngine
from flowstate.server import create_app


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(config, "SIMULATION_INTERVAL", 60)
    monkeypatch.setattr(database, "engine", None)

    def factory(emit):
        return SessionEngine(camera=FakeCamera(), estimator=FakeEstimator(),
                             detector=FakeDetector(), llm=FakeLLM(), emit=emit)

    app = create_app(engine_factory=factory, database_uri="sqlite://")
    with TestClient(app) as c:
        yield c


def start(client, **overrides):
    body = {"study_goal": "reading", "energy_level": "medium", "duration_minutes": 25}
    body.update(overrides)
    return client.post("/api/session", json=body)


def test_status(client):
    data = client.get("/api/status").json()
    assert data["version"] == config.VERSION
    assert data["camera_enabled"] is False
    assert data["posture_backend"] == "landmarks"


def test_no_session_is_conflict(client):
    assert client.get("/api/session").status_code == 409
    assert client.post("/api/session/end").status_code == 409
    assert client.post("/api/camera", json={"enabled": True}).status_code == 409


@pytest.mark.parametrize("overrides", [
    {"study_goal": "napping"},
    {"energy_level": "extreme"},
    {"duration_minutes": 500},
    {"duration_minutes": -1},
])
def test_invalid_session_request(client, overrides):
    assert start(client, **overrides).status_code == 422


def test_session_flow(client):
    resp = start(client)
    assert resp.status_code == 200
    assert resp.json()["session"]["clock"] == "25:00"

    snap = client.get("/api/session").json()
    assert snap["session"]["study_goal"] == "reading"

    summary = client.post("/api/session/end").json()
    assert summary["insight"]
    assert summary["session_id"] is not None

    sessions = client.get("/api/sessions").json()
    assert len(sessions) == 1
    assert sessions[0]["study_goal"] == "reading"


def test_exit_session(client):
    start(client)
    assert client.delete("/api/session").json() == {"status": "reset"}
    assert client.get("/api/session").status_code == 409


def test_camera_toggle(client):
    start(client)
    on = client.post("/api/camera", json={"enabled": True}).json()
    assert on["ok"] is True
    assert on["camera_enabled"] is True

    off = client.post("/api/camera", json={"enabled": False}).json()
    assert off["ok"] is True
    assert off["camera_enabled"] is False


def test_mode_switch(client):
    assert client.post("/api/mode", json={"mode": "environment"}).json()["mode"] == "environment"
    assert client.post("/api/mode", json={"mode": "sleep"}).status_code == 422


def test_chat_streams_server_sent_events(client):
    resp = client.post("/api/chat", json={"message": "Any tips?"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert 'data: {"content": "Try a "}' in resp.text
    assert resp.text.endswith("data: [DONE]\n\n")

    history = client.get("/api/chat").json()
    assert history[0]["content"] == config.CHAT_GREETING
    assert history[-1] == {"role": "assistant", "content": "Try a short break."}


def test_chat_rejects_empty_message(client):
    assert client.post("/api/chat", json={"message": ""}).status_code == 422


def test_websocket_sends_status_then_telemetry(client):
    with client.websocket_connect("/ws") as ws:
        first = ws.receive_json()
        second = ws.receive_json()
    assert first["event"] == "system_status"
    assert second["event"] == "telemetry_update"
    assert second["data"]["session"] is None
