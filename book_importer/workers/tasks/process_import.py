"""Celery tasks that drive book imports and re-dispatch unfinished ones."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from book_importer.core.config import Settings, get_settings
from book_importer.core.errors import JobNotFoundError
from book_importer.db.session import SessionLocal, get_fresh_session
from book_importer.services.catalog import SqlCatalogUpsert
from book_importer.services.import_processor import ImportProcessor
from book_importer.services.job_store import ImportJobStore
from book_importer.services.metadata_lookup import get_metadata_lookup
from book_importer.services.notifications import CeleryCompletionNotifier
from book_importer.services.progress_tracker import (
    clear_cancel,
    is_cancel_requested,
    publish_progress,
)
from book_importer.storage.blob_store import get_blob_store
from book_importer.workers.celery_app import IMPORTS_QUEUE, celery_app

logger = logging.getLogger(__name__)


def build_processor(session: Session, settings: Settings | None = None) -> ImportProcessor:
    """Wire the processor to the production collaborators."""
    settings = settings or get_settings()
    return ImportProcessor(
        store=ImportJobStore(session),
        blob_store=get_blob_store(settings),
        lookup=get_metadata_lookup(settings),
        catalog=SqlCatalogUpsert(SessionLocal),
        notifier=CeleryCompletionNotifier(),
        lookup_batch_limit=settings.lookup_batch_limit,
        upsert_workers=settings.import_upsert_workers,
        failed_isbns_limit=settings.import_failed_isbns_limit,
        checkpoint_retries=settings.import_checkpoint_retries,
        on_checkpoint=publish_progress,
    )


@celery_app.task(bind=True, name="book_importer.workers.tasks.process_import")
def process_import(self, job_id: str, resume_failed: bool = False) -> dict[str, Any]:
    """Run or resume one import job until it completes, is cancelled or fails."""
    session = get_fresh_session()
    processor = build_processor(session)
    try:
        outcome = processor.process(
            job_id,
            should_cancel=lambda: is_cancel_requested(job_id),
            resume_failed=resume_failed,
        )
        logger.info(f"Import task for job {job_id} finished: {outcome.value}")
        return {"job_id": job_id, "outcome": outcome.value}
    except JobNotFoundError:
        logger.error(f"Import job {job_id} not found")
        return {"job_id": job_id, "outcome": "not_found"}
    finally:
        clear_cancel(job_id)
        close = getattr(processor.lookup, "close", None)
        if close is not None:
            close()
        session.close()


@celery_app.task(bind=True, name="book_importer.workers.tasks.dispatch_pending_imports")
def dispatch_pending_imports(self) -> list[str]:
    """Enqueue pending, stalled and un-notified imports.

    A job that is already being processed by a live worker loses nothing if it
    is enqueued again: the second invocation is rejected at its first
    checkpoint.
    """
    settings = get_settings()
    stale_before = datetime.now(timezone.utc) - timedelta(
        seconds=settings.import_stale_after_seconds
    )
    session = get_fresh_session()
    try:
        jobs = ImportJobStore(session).list_dispatchable(stale_before)
        job_ids = [job.id for job in jobs]
    finally:
        session.close()

    for job_id in job_ids:
        process_import.apply_async(args=(job_id,), queue=IMPORTS_QUEUE)
    if job_ids:
        logger.info(f"Dispatched {len(job_ids)} import job(s): {', '.join(job_ids)}")
    return job_ids
