from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from book_importer.db.models.import_job import ImportJob, ImportStatus
from book_importer.services.import_processor import ProcessOutcome
from book_importer.workers.tasks import notify_completion
from book_importer.workers.tasks import process_import as tasks

from conftest import DictCatalog, StubLookup, make_isbns


@pytest.fixture()
def worker_session(session_factory, monkeypatch):
    monkeypatch.setattr(tasks, "get_fresh_session", session_factory)


def test_dispatch_enqueues_unfinished_jobs(
    worker_session, store, db_session, create_job, monkeypatch
):
    sent = []
    monkeypatch.setattr(
        tasks.process_import, "apply_async", lambda args, queue: sent.append((args, queue))
    )
    pending = create_job(make_isbns(1))
    stalled = create_job(make_isbns(1, start=1))
    done = create_job(make_isbns(1, start=2))
    store.checkpoint(stalled, status=ImportStatus.PROCESSING.value)
    store.checkpoint(done, status=ImportStatus.COMPLETED.value, notification_sent=True)
    db_session.execute(
        update(ImportJob)
        .where(ImportJob.id == stalled.id)
        .values(updated_at=datetime.now(timezone.utc) - timedelta(days=1))
    )
    db_session.commit()

    dispatched = tasks.dispatch_pending_imports()

    assert set(dispatched) == {pending.id, stalled.id}
    assert {args[0] for args, _ in sent} == {pending.id, stalled.id}
    assert {queue for _, queue in sent} == {"imports"}


def test_process_import_task_runs_processor(
    worker_session, store, blob_store, notifier, create_job, monkeypatch
):
    job = create_job(make_isbns(3))
    cleared = []

    def build(session, settings=None):
        return tasks.ImportProcessor(
            tasks.ImportJobStore(session), blob_store, StubLookup(), DictCatalog(), notifier
        )

    monkeypatch.setattr(tasks, "build_processor", build)
    monkeypatch.setattr(tasks, "is_cancel_requested", lambda job_id: False)
    monkeypatch.setattr(tasks, "clear_cancel", cleared.append)

    result = tasks.process_import(job.id)

    assert result == {"job_id": job.id, "outcome": ProcessOutcome.COMPLETED.value}
    assert cleared == [job.id]
    assert store.get(job.id).status == ImportStatus.COMPLETED.value


def test_process_import_task_unknown_job(worker_session, monkeypatch):
    monkeypatch.setattr(tasks, "clear_cancel", lambda job_id: None)
    monkeypatch.setattr(
        tasks,
        "build_processor",
        lambda session, settings=None: tasks.ImportProcessor(
            tasks.ImportJobStore(session), None, StubLookup(), DictCatalog(), None
        ),
    )

    assert tasks.process_import("missing")["outcome"] == "not_found"


def test_notification_skipped_without_webhook(monkeypatch):
    settings = notify_completion.get_settings().model_copy(
        update={"notification_webhook_url": None}
    )
    monkeypatch.setattr(notify_completion, "get_settings", lambda: settings)

    result = notify_completion.notify_import_completion({"job_id": "job-1"})

    assert result["success"] is False


def test_notification_posts_to_webhook(monkeypatch):
    settings = notify_completion.get_settings().model_copy(
        update={
            "notification_webhook_url": "https://hooks.test/imports",
            "notification_webhook_secret": "s3cret",
        }
    )
    calls = []

    def fake_deliver(url, payload, secret=None):
        calls.append((url, payload, secret))
        return {"status": 200, "response_time_ms": 5, "success": True, "error": None}

    monkeypatch.setattr(notify_completion, "get_settings", lambda: settings)
    monkeypatch.setattr(notify_completion, "deliver_webhook", fake_deliver)

    result = notify_completion.notify_import_completion({"job_id": "job-1"})

    assert result["success"] is True
    assert calls == [("https://hooks.test/imports", {"job_id": "job-1"}, "s3cret")]
