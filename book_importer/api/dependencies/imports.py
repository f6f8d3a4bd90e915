"""Request context and collaborators for the import endpoints."""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from book_importer.api.dependencies.db import get_job_store, get_session
from book_importer.core.config import get_settings
from book_importer.services.import_submission import ImportSubmissionService, RequestingUser
from book_importer.services.job_store import ImportJobStore
from book_importer.services.progress_tracker import request_cancel
from book_importer.services.quota import CatalogQuotaChecker
from book_importer.storage.blob_store import BlobStore, get_blob_store
from book_importer.workers.celery_app import IMPORTS_QUEUE
from book_importer.workers.tasks.process_import import process_import

EnqueueImport = Callable[[str, bool], None]
RequestCancel = Callable[[str], None]


def get_requesting_user(
    x_user_id: str | None = Header(None),
    x_user_name: str | None = Header(None),
    x_library_id: str | None = Header(None),
) -> RequestingUser | None:
    """Resolve the caller from gateway headers; None when unauthenticated."""
    if not x_user_id:
        return None
    return RequestingUser(
        user_id=x_user_id,
        display_name=x_user_name,
        library_id=x_library_id,
    )


def get_upload_blob_store() -> BlobStore:
    return get_blob_store(get_settings())


def get_submission_service(
    db: Session = Depends(get_session),
    store: ImportJobStore = Depends(get_job_store),
    blob_store: BlobStore = Depends(get_upload_blob_store),
) -> ImportSubmissionService:
    settings = get_settings()
    quota = CatalogQuotaChecker(db, max_books=settings.library_max_books)
    return ImportSubmissionService(store, blob_store, quota, settings)


def _enqueue_import(job_id: str, resume_failed: bool = False) -> None:
    process_import.apply_async(
        args=(job_id,),
        kwargs={"resume_failed": resume_failed},
        queue=IMPORTS_QUEUE,
    )


def get_enqueue_import() -> EnqueueImport:
    return _enqueue_import


def get_request_cancel() -> RequestCancel:
    return request_cancel
