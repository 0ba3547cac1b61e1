from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from matviews.db import get_db
from matviews.jobs.adapter import JobAdapter, get_job_adapter
from matviews.main import app
from matviews.models.mat_views import MatViewRun, RunOperation, RunStatus


class RecordingAdapter(JobAdapter):
    name = "recording"

    def __init__(self):
        self.enqueued = []

    def enqueue(self, job_class, queue, args=(), kwargs=None):
        self.enqueued.append((job_class.__name__, queue, list(args), dict(kwargs or {})))
        return f"job-{len(self.enqueued)}"


@pytest.fixture
def adapter():
    return RecordingAdapter()


@pytest.fixture
def client(session_factory, adapter):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_job_adapter] = lambda: adapter
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_list_and_get_definitions(client, stored_definition):
    listing = client.get("/api/v1/definitions")
    assert listing.status_code == 200
    assert [d["name"] for d in listing.json()] == ["mv_users"]

    detail = client.get(f"/api/v1/definitions/{stored_definition.id}")
    assert detail.status_code == 200
    assert detail.json()["refresh_strategy"] == "regular"
    assert detail.json()["unique_index_columns"] == ["id"]


def test_unknown_definition_is_404(client):
    assert client.get("/api/v1/definitions/404").status_code == 404
    assert client.post("/api/v1/definitions/404/refresh").status_code == 404


def test_create_enqueues_job(client, adapter, stored_definition):
    response = client.post(f"/api/v1/definitions/{stored_definition.id}/create?force=true")

    assert response.status_code == 202
    body = response.json()
    assert body["job"] == "CreateViewJob"
    assert body["adapter"] == "recording"
    assert body["options"] == {"force": True}
    assert adapter.enqueued == [("CreateViewJob", "default", [stored_definition.id], {"force": True})]


def test_refresh_defaults_row_count_strategy(client, adapter, stored_definition):
    response = client.post(f"/api/v1/definitions/{stored_definition.id}/refresh")

    assert response.status_code == 202
    assert adapter.enqueued[0][3] == {"row_count_strategy": "estimated"}


def test_refresh_rejects_unknown_row_count_strategy(client, adapter, stored_definition):
    response = client.post(f"/api/v1/definitions/{stored_definition.id}/refresh?row_count_strategy=approx")

    assert response.status_code == 422
    assert adapter.enqueued == []


def test_delete_enqueues_job(client, adapter, stored_definition):
    response = client.post(f"/api/v1/definitions/{stored_definition.id}/delete?cascade=true")

    assert response.status_code == 202
    assert adapter.enqueued == [("DeleteViewJob", "default", [stored_definition.id], {"cascade": True, "if_exists": True})]


def test_delete_passes_if_exists(client, adapter, stored_definition):
    response = client.post(f"/api/v1/definitions/{stored_definition.id}/delete?if_exists=false")

    assert response.status_code == 202
    assert response.json()["options"] == {"cascade": False, "if_exists": False}
    assert adapter.enqueued[0][3] == {"cascade": False, "if_exists": False}


def test_runs_are_filtered_and_serialized(client, db_session, stored_definition):
    now = datetime.now(timezone.utc)
    db_session.add_all([
        MatViewRun(
            mat_view_definition_id=stored_definition.id,
            operation=RunOperation.REFRESH,
            status=RunStatus.SUCCESS,
            started_at=now,
            finished_at=now,
            duration_ms=15,
            meta={"request": {}, "response": {"row_count_before": 1, "row_count_after": 2}},
        ),
        MatViewRun(
            mat_view_definition_id=stored_definition.id,
            operation=RunOperation.CREATE,
            status=RunStatus.FAILED,
            started_at=now,
            meta={},
            error={"class": "InvalidDefinitionError", "message": "bad", "backtrace": []},
        ),
    ])
    db_session.commit()

    everything = client.get("/api/v1/runs").json()
    assert [r["operation"] for r in everything] == ["create", "refresh"]

    failed = client.get("/api/v1/runs", params={"status": "failed"}).json()
    assert len(failed) == 1
    assert failed[0]["error_message"] == "bad"

    refreshes = client.get("/api/v1/runs", params={"operation": "refresh", "definition_id": stored_definition.id}).json()
    assert len(refreshes) == 1
    assert refreshes[0]["row_count_after"] == 2

    run_id = refreshes[0]["id"]
    detail = client.get(f"/api/v1/runs/{run_id}")
    assert detail.status_code == 200
    assert detail.json()["duration_ms"] == 15
    assert client.get("/api/v1/runs/9999").status_code == 404
