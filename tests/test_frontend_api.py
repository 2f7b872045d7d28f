from __future__ import annotations

import base64
import json
import threading

from starlette.testclient import TestClient

from conftest import RECEIPT_RESULT, FakeResponse, FakeSession, GatedSession, gemini_body
from image_insight.domain.models import AppConfiguration
from image_insight.frontend import create_app
from image_insight.orchestrator.flow import InsightSession
from image_insight.store import ConfigurationStore, MemoryDocumentStore


def _app(settings, *, gemini=None, hooks=None, config=None):
    store = MemoryDocumentStore()
    config_store = ConfigurationStore(store, app_id=settings.app_id, user_id="u1")
    if config is not None:
        config_store.save(config)
    session = InsightSession(
        settings,
        config_store=config_store,
        http_session=gemini or FakeSession(),
        webhook_session=hooks or FakeSession(),
        sleep=lambda _: None,
    )
    session.attach_store()
    return create_app(session, serve_static=False, allow_origins=["*"]), session


def test_full_flow_over_http(settings, png_bytes):
    gemini = FakeSession(
        [
            FakeResponse(200, gemini_body(json.dumps(RECEIPT_RESULT))),
            FakeResponse(200, gemini_body("Groceries for 2,19.")),
            FakeResponse(200, gemini_body(json.dumps({"subject": "Receipt", "body": "Hi"}))),
        ]
    )
    hooks = FakeSession([FakeResponse(200)])
    app, _ = _app(
        settings,
        gemini=gemini,
        hooks=hooks,
        config=AppConfiguration(api_key="VALID", webhook_url="https://hooks.test/in"),
    )
    client = TestClient(app)

    assert client.get("/api/health").json()["status"] == "ok"

    upload = client.post(
        "/api/image",
        content=png_bytes,
        headers={"content-type": "application/octet-stream", "x-filename": "receipt.png"},
    )
    assert upload.status_code == 200
    assert upload.json()["mimeType"] == "image/png"

    analyze = client.post("/api/analyze")
    assert analyze.status_code == 200
    body = analyze.json()
    assert body["ok"] is True
    assert body["state"]["result"] == RECEIPT_RESULT
    assert body["state"]["webhook"]["state"] == "success"
    inline = gemini.calls[0]["json"]["contents"][0]["parts"][1]["inlineData"]
    assert base64.b64decode(inline["data"]) == png_bytes

    summary = client.post("/api/summarize").json()
    assert summary["state"]["summary"] == "Groceries for 2,19."

    email = client.post("/api/draft-email").json()
    assert email["state"]["emailDraft"] == {"subject": "Receipt", "body": "Hi"}
    assert len(hooks.calls) == 1


def test_analyze_without_key_is_rejected(settings, png_bytes):
    gemini = FakeSession()
    app, _ = _app(settings, gemini=gemini)
    client = TestClient(app)
    client.post("/api/image", content=png_bytes, headers={"content-type": "image/png"})

    resp = client.post("/api/analyze")
    assert resp.status_code == 400
    assert "API key" in resp.json()["error"]
    assert gemini.calls == []


def test_busy_analysis_returns_conflict(settings):
    gemini = GatedSession([FakeResponse(200, gemini_body(json.dumps(RECEIPT_RESULT)))])
    app, session = _app(settings, gemini=gemini, config=AppConfiguration(api_key="VALID"))
    client = TestClient(app)
    client.post("/api/image", json={"data": "data:image/jpeg;base64,aGVsbG8=", "mimeType": None})
    assert session.image.mime_type == "image/jpeg"

    worker = threading.Thread(target=session.analyze, daemon=True)
    worker.start()
    assert gemini.entered.wait(5)
    assert client.get("/api/state").json()["canAnalyze"] is False
    assert client.post("/api/analyze").status_code == 409

    gemini.release.set()
    worker.join(5)
    assert client.get("/api/state").json()["canAnalyze"] is True
    assert len(gemini.calls) == 1


def test_invalid_upload_is_rejected(settings):
    app, session = _app(settings)
    client = TestClient(app)

    assert client.post("/api/image", content=b"not an image", headers={"content-type": "image/png"}).status_code == 400
    assert client.post("/api/image", json={"data": "%%%"}).status_code == 400
    assert session.image is None


def test_config_roundtrip(settings):
    app, session = _app(settings)
    client = TestClient(app)

    client.post("/api/config/open")
    doc = AppConfiguration(api_key="K", webhook_url="https://hooks.test/in").to_document()
    doc["fieldMappings"]["summary"] = "Resumen"
    saved = client.put("/api/config", json=doc)
    assert saved.status_code == 200
    assert saved.json()["savedMessageSeconds"] == 2.0

    current = client.get("/api/config").json()
    assert current["config"] == doc
    assert current["showSavedMessage"] is True
    assert session.config_store.get().to_document() == doc


def test_config_rejects_non_object_body(settings):
    app, _ = _app(settings)
    client = TestClient(app)
    assert client.put("/api/config", content=b"[1, 2]", headers={"content-type": "application/json"}).status_code == 400
