import pytest
from fastapi.testclient import TestClient
from redis.exceptions import RedisError

from book_importer.api.dependencies.db import get_session
from book_importer.api.dependencies.imports import (
    get_enqueue_import,
    get_request_cancel,
    get_submission_service,
    get_upload_blob_store,
)
from book_importer.api.routers import imports as imports_router
from book_importer.api.routers import jobs as jobs_router
from book_importer.db.models.import_job import ImportStatus
from book_importer.main import app
from book_importer.services.import_submission import ImportSubmissionService

from conftest import StubQuota, csv_bytes, make_isbns

HEADERS = {"X-User-Id": "user-1", "X-User-Name": "Ada Reader", "X-Library-Id": "lib-1"}


@pytest.fixture()
def enqueued():
    return []


@pytest.fixture()
def cancelled():
    return []


@pytest.fixture()
def client(db_session, blob_store, enqueued, cancelled, monkeypatch):
    def override_get_session():
        yield db_session

    monkeypatch.setattr(imports_router, "fetch_progress", lambda job_id: {})
    monkeypatch.setattr(imports_router, "publish_progress", lambda job, message=None: None)
    monkeypatch.setattr(jobs_router, "fetch_progress", lambda job_id: {})

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_upload_blob_store] = lambda: blob_store
    app.dependency_overrides[get_enqueue_import] = lambda: (
        lambda job_id, resume_failed=False: enqueued.append((job_id, resume_failed))
    )
    app.dependency_overrides[get_request_cancel] = lambda: cancelled.append
    yield TestClient(app)
    app.dependency_overrides.clear()


def _upload(client, data, filename="books.csv", headers=HEADERS):
    return client.post(
        "/api/imports",
        files={"file": (filename, data, "text/csv")},
        headers=headers,
    )


def test_submit_creates_job_and_enqueues(client, enqueued, blob_store):
    resp = _upload(client, csv_bytes(make_isbns(3)))

    assert resp.status_code == 202
    body = resp.json()
    assert body["status"] == "pending"
    assert body["total_isbn_count"] == 3
    assert body["total_chunks"] == 1
    assert body["progress_percent"] == 0.0
    assert body["is_terminal"] is False
    assert body["requested_by_name"] == "Ada Reader"
    assert enqueued == [(body["id"], False)]
    assert len(blob_store.blobs) == 1


def test_submit_keeps_job_when_enqueue_fails(client, store):
    def broken_enqueue(job_id, resume_failed=False):
        raise ConnectionError("broker down")

    app.dependency_overrides[get_enqueue_import] = lambda: broken_enqueue

    resp = _upload(client, csv_bytes(make_isbns(2)))

    assert resp.status_code == 202
    assert store.get(resp.json()["id"]).status == ImportStatus.PENDING.value


def test_submit_rejects_non_csv(client, enqueued):
    resp = _upload(client, b"isbn\n9780306406157\n", filename="books.txt")
    assert resp.status_code == 400
    assert "CSV" in resp.json()["detail"]
    assert enqueued == []


def test_submit_requires_library(client):
    resp = _upload(client, csv_bytes(make_isbns(1)), headers={"X-User-Id": "user-1"})
    assert resp.status_code == 400


def test_submit_over_quota(client, store, blob_store, settings):
    app.dependency_overrides[get_submission_service] = lambda: ImportSubmissionService(
        store, blob_store, StubQuota(allowed=False), settings
    )
    resp = _upload(client, csv_bytes(make_isbns(2)))
    assert resp.status_code == 402
    assert blob_store.blobs == {}


def test_submit_rejects_oversized_upload(client, store, blob_store, settings, enqueued):
    small = settings.model_copy(update={"import_max_upload_bytes": 64})
    app.dependency_overrides[get_submission_service] = lambda: ImportSubmissionService(
        store, blob_store, StubQuota(), small
    )

    resp = _upload(client, csv_bytes(make_isbns(50)))

    assert resp.status_code == 400
    assert "File size" in resp.json()["detail"]
    assert blob_store.blobs == {}
    assert enqueued == []


def test_status_reports_last_checkpoint(client, store, create_job):
    job = create_job(make_isbns(4), chunk_size=2)
    store.checkpoint(
        job,
        status=ImportStatus.PROCESSING.value,
        processed_chunks=1,
        current_position=2,
        success_count=1,
        failed_count=1,
        failed_isbns=[make_isbns(4)[1]],
    )

    resp = client.get(f"/api/imports/{job.id}/status")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "processing"
    assert body["processed_chunks"] == 1
    assert body["total_chunks"] == 2
    assert body["progress_percent"] == 50.0
    assert body["failed_isbns"] == [make_isbns(4)[1]]


def test_status_unknown_job(client):
    assert client.get("/api/imports/nope/status").status_code == 404


def test_retry_failed_job_resumes(client, store, create_job, enqueued):
    job = create_job(make_isbns(2))
    store.checkpoint(job, status=ImportStatus.FAILED.value, error_message="boom")

    resp = client.post(f"/api/imports/{job.id}/retry")

    assert resp.status_code == 202
    assert enqueued == [(job.id, True)]


def test_retry_completed_job_conflicts(client, store, create_job, enqueued):
    job = create_job(make_isbns(2))
    store.checkpoint(job, status=ImportStatus.COMPLETED.value)

    assert client.post(f"/api/imports/{job.id}/retry").status_code == 409
    assert enqueued == []


def test_cancel_running_job(client, store, create_job, cancelled):
    job = create_job(make_isbns(2))
    store.checkpoint(job, status=ImportStatus.PROCESSING.value)

    resp = client.post(f"/api/imports/{job.id}/cancel")

    assert resp.status_code == 202
    assert cancelled == [job.id]


def test_cancel_when_redis_is_down(client, create_job):
    job = create_job(make_isbns(2))

    def unavailable(job_id):
        raise RedisError("connection refused")

    app.dependency_overrides[get_request_cancel] = lambda: unavailable

    assert client.post(f"/api/imports/{job.id}/cancel").status_code == 503


def test_cancel_finished_job_conflicts(client, store, create_job, cancelled):
    job = create_job(make_isbns(2))
    store.checkpoint(job, status=ImportStatus.COMPLETED.value)

    assert client.post(f"/api/imports/{job.id}/cancel").status_code == 409
    assert cancelled == []


def test_list_jobs_for_callers_library(client, store, create_job):
    mine = create_job(make_isbns(1))
    failed = create_job(make_isbns(1, start=1))
    create_job(make_isbns(1), library_id="lib-2")
    store.checkpoint(failed, status=ImportStatus.FAILED.value)

    resp = client.get("/api/jobs", headers=HEADERS)
    assert resp.status_code == 200
    assert {job["id"] for job in resp.json()} == {mine.id, failed.id}

    resp = client.get("/api/jobs", params={"status": "failed"}, headers=HEADERS)
    assert [job["id"] for job in resp.json()] == [failed.id]


def test_list_jobs_requires_library(client):
    assert client.get("/api/jobs").status_code == 400


def test_liveness(client):
    assert client.get("/health/live").json()["status"] == "ok"
