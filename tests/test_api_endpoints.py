from __future__ import annotations

from fastapi.testclient import TestClient

from fakes import FakeEmailSource, FakeNotifier
from jobdigest import fastapi_run
from jobdigest.bootstrap import build_context
from jobdigest.config.settings import settings


def _make_client(engine):
    ctx = build_context(settings, engine=engine, notifier=FakeNotifier(), source=FakeEmailSource([]))
    fastapi_run.app.dependency_overrides[fastapi_run.get_context] = lambda: ctx
    return TestClient(fastapi_run.app), ctx


def test_health(engine):
    client, _ = _make_client(engine)
    try:
        assert client.get("/health").json() == {"ok": True, "message": "ready"}
        assert client.get("/health/db").json() == {"ok": True}
    finally:
        fastapi_run.app.dependency_overrides.clear()


def test_trigger_and_status(engine):
    client, ctx = _make_client(engine)
    try:
        res = client.post("/api/runs/alert-scan", json={"min_relevance": 0.7})
        assert res.status_code == 202
        body = res.json()
        assert body["kind"] == "alert-scan"
        assert body["status"] == "queued"
        run_id = body["run_id"]

        # Single-flight
        res = client.post("/api/runs/alert-scan")
        assert res.status_code == 409
        assert res.json()["detail"]["run_id"] == run_id

        res = client.get("/api/status")
        assert res.status_code == 200
        status = res.json()
        assert status["stats"]["queued"] == 1
        assert status["current"]["alert-scan"]["id"] == run_id
        assert status["current"]["alert-scan"]["trigger"] == "api"
        assert status["current"]["daily-summary"] is None
    finally:
        fastapi_run.app.dependency_overrides.clear()


def test_trigger_rejects_unknown_kind_and_bad_payload(engine):
    client, _ = _make_client(engine)
    try:
        assert client.post("/api/runs/full-rescan").status_code == 404
        assert client.post("/api/runs/alert-scan", json={"min_relevance": 1.5}).status_code == 422
        assert client.post("/api/runs/daily-summary", json={"unexpected": 1}).status_code == 422
    finally:
        fastapi_run.app.dependency_overrides.clear()
