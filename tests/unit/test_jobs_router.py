from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from apps.api_gateway.main import app
from apps.api_gateway.routers import jobs as jobs_router
from pawmatch_media.jobs.conversion_job import execute_job
from pawmatch_media.queue.client import ConversionQueue
from pawmatch_media.services.job_service import JobService
from pawmatch_media.storage import blob, paths


@pytest.fixture()
def client(session_factory, fake_redis, blob_dir, monkeypatch):
    queue = ConversionQueue(client=fake_redis)
    svc = JobService(session_factory=session_factory, queue=queue)

    def _execute(job_id, *, session_factory):
        return execute_job(job_id, session_factory=session_factory, queue=queue)

    monkeypatch.setattr(jobs_router, "execute_job", _execute)
    app.dependency_overrides[jobs_router.job_service_dep] = lambda: svc
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_create_job_runs_in_background(client, add_pet, fake_redis) -> None:
    add_pet("d-1", "dog", has_jpeg=True)
    add_pet("d-2", "dog", has_jpeg=True, has_webp=True)

    r = client.post("/v1/jobs", json={"kind": "image"})
    assert r.status_code == 202
    body = r.json()
    assert body["status"] == "pending"
    job_id = body["job_id"]

    job = client.get(f"/v1/jobs/{job_id}").json()
    assert job["status"] == "completed"
    assert job["progress_percent"] == 100
    assert job["kind"] == "image"

    progress = client.get(f"/v1/jobs/{job_id}/progress").json()
    assert progress["total_items"] == 1
    assert progress["success_count"] == 1
    assert progress["estimated_remaining_ms"] is None

    stats = client.get(f"/v1/jobs/{job_id}/statistics").json()
    assert stats["success_rate"] == 100
    assert stats["error_rate"] == 0

    summary = client.get("/v1/jobs/summary").json()
    assert summary["completed_jobs"] == 1
    assert summary["active_jobs"] == 0
    assert summary["total_processed"] == 1
    assert summary["last_sync_time"] is not None


def test_create_job_without_run_stays_pending(client) -> None:
    r = client.post("/v1/jobs", json={"kind": "full", "pet_type": "cat", "run": False})
    assert r.status_code == 202
    job = client.get(f"/v1/jobs/{r.json()['job_id']}").json()
    assert job["status"] == "pending"
    assert job["metadata"] == {"pet_type": "cat"}


def test_create_job_rejects_unknown_kind(client) -> None:
    r = client.post("/v1/jobs", json={"kind": "everything"})
    assert r.status_code == 422


@pytest.mark.parametrize("suffix", ["", "/progress", "/statistics"])
def test_unknown_job_is_404(client, suffix: str) -> None:
    r = client.get(f"/v1/jobs/sync_missing{suffix}")
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "not_found"


def test_reconcile_endpoint(client, add_pet) -> None:
    add_pet("d-1", "dog", has_jpeg=False, with_original=True)
    blob.put_bytes(paths.webp_key("dog", "d-1"), b"webp")

    report_only = client.post("/v1/reconcile", json={"auto_fix": False}).json()
    assert report_only["checked"] == 1
    assert report_only["consistent"] is False
    assert report_only["discrepancies"][0]["actual"] == {"has_jpeg": True, "has_webp": True}
    assert report_only["fixed"] == 0

    fixed = client.post("/v1/reconcile", json={"auto_fix": True}).json()
    assert fixed["fixed"] == 1

    clean = client.post("/v1/reconcile", json={}).json()
    assert clean["consistent"] is True


def test_dead_letters_endpoint(client, fake_redis) -> None:
    fake_redis.lpush("q:convert:dlq", '{"petId": "d-1", "retryCount": 3}')
    r = client.get("/v1/dead-letters", params={"limit": 10})
    assert r.status_code == 200
    assert r.json()["items"] == [{"petId": "d-1", "retryCount": 3}]
