from fastapi.testclient import TestClient

from fakes import ScriptedService, VALID_ANALYSIS, make_png, ok, status
from main import create_app
from utils.app_config import AppConfig, InferenceConfig


def _app(tmp_path, steps):
    service = ScriptedService(steps)
    config = AppConfig(
        app_id="api-test",
        database_dir=tmp_path / "db",
        inference=InferenceConfig(api_key="k", max_attempts=1),
    )
    return create_app(config, service.client()), service


def test_health_reports_ready_anonymous_identity(tmp_path):
    app, _service = _app(tmp_path, [])
    with TestClient(app) as client:
        health = client.get("/health").json()
        session = client.get("/session").json()

    assert health["ok"] is True
    assert health["state"] == "ready"
    assert session["anonymous"] is True
    assert session["uid"] == health["uid"]


def test_upload_analyzes_and_appears_in_history(tmp_path):
    app, service = _app(tmp_path, [ok()])
    image = make_png()
    with TestClient(app) as client:
        with client.websocket_connect("/ws/history") as ws:
            initial = ws.receive_json()
            response = client.post("/analyses", files={"file": ("bug.png", image, "image/png")})
            pushed = ws.receive_json()
        history = client.get("/analyses").json()
        stored = client.get(f"/analyses/{response.json()['record_id']}/image")

    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "success"
    assert body["result"]["scientificName"] == VALID_ANALYSIS["scientificName"]
    assert body["persist_error"] is None
    assert initial["type"] == "history.snapshot" and initial["count"] == 0
    assert pushed["count"] == 1
    assert pushed["analyses"][0]["id"] == body["record_id"]
    assert history["count"] == 1
    assert "imageUrl" not in history["analyses"][0]
    assert stored.status_code == 200
    assert stored.content == image
    assert len(service.requests) == 1


def test_failed_inference_maps_to_bad_gateway(tmp_path):
    app, _service = _app(tmp_path, [status(500)])
    with TestClient(app) as client:
        response = client.post("/analyses", files={"file": ("bug.png", make_png(), "image/png")})
        history = client.get("/analyses").json()

    assert response.status_code == 502
    assert "status: 500" in response.json()["detail"]
    assert history["count"] == 0


def test_oversized_upload_is_rejected(tmp_path):
    app, service = _app(tmp_path, [])
    with TestClient(app) as client:
        response = client.post(
            "/analyses", files={"file": ("big.jpg", b"\xff" * (6 * 1024 * 1024), "image/jpeg")}
        )

    assert response.status_code == 413
    assert service.requests == []


def test_unsupported_type_is_rejected(tmp_path):
    app, _service = _app(tmp_path, [])
    with TestClient(app) as client:
        response = client.post("/analyses", files={"file": ("bug.gif", b"GIF89a", "image/gif")})
    assert response.status_code == 415


def test_unknown_analysis_image_is_not_found(tmp_path):
    app, _service = _app(tmp_path, [])
    with TestClient(app) as client:
        response = client.get("/analyses/missing/image")
    assert response.status_code == 404
