"""Endpoints for submitting book imports and tracking them."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from book_importer.api.dependencies.db import get_job_store
from book_importer.api.dependencies.imports import (
    EnqueueImport,
    RequestCancel,
    get_enqueue_import,
    get_request_cancel,
    get_requesting_user,
    get_submission_service,
)
from book_importer.api.routers.job_helpers import serialize_job
from book_importer.api.schemas.job import ImportJobStatus
from book_importer.core.errors import (
    BlobStorageError,
    ImportValidationError,
    JobNotFoundError,
    QuotaExceededError,
)
from book_importer.db.models.import_job import ImportJob, ImportStatus
from book_importer.services.import_submission import (
    CsvUpload,
    ImportSubmissionService,
    RequestingUser,
)
from book_importer.services.job_status import get_job_status
from book_importer.services.job_store import ImportJobStore
from book_importer.services.progress_tracker import fetch_progress, publish_progress

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_job_or_404(store: ImportJobStore, job_id: str) -> ImportJob:
    job = store.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


def _enqueue(enqueue: EnqueueImport, job: ImportJob, resume_failed: bool = False) -> None:
    # The poller picks the job up later if the broker is unavailable now
    try:
        enqueue(job.id, resume_failed)
    except Exception as exc:
        logger.error(f"Error enqueueing import task for job {job.id}: {exc}", exc_info=True)


@router.post(
    "",
    summary="Start a book import from a CSV of ISBNs",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportJobStatus,
)
async def submit_import(
    file: UploadFile | None = File(None),
    requesting_user: RequestingUser | None = Depends(get_requesting_user),
    service: ImportSubmissionService = Depends(get_submission_service),
    enqueue: EnqueueImport = Depends(get_enqueue_import),
) -> ImportJobStatus:
    """Validate and stash the CSV, create a pending job and hand it to a worker."""
    upload = None
    if file is not None:
        # One byte past the limit is enough to reject an oversized file
        content = await file.read(service.settings.import_max_upload_bytes + 1)
        upload = CsvUpload(filename=file.filename, content=content)

    try:
        job = service.submit(upload, requesting_user)
    except QuotaExceededError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(exc)
        ) from exc
    except ImportValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except BlobStorageError as exc:
        logger.error(f"Blob storage error during import submission: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store uploaded file",
        ) from exc
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create import job",
        ) from exc

    publish_progress(job, message="Queued")
    _enqueue(enqueue, job)
    logger.info(
        f"Created import job {job.id} for file {job.source_file_name} "
        f"({job.total_isbn_count} ISBNs in {job.total_chunks} chunks)"
    )
    return serialize_job(job, {"message": "Queued"})


@router.get(
    "/{job_id}/status",
    summary="Check import progress",
    response_model=ImportJobStatus,
)
async def get_import_status(
    job_id: str,
    store: ImportJobStore = Depends(get_job_store),
) -> ImportJobStatus:
    """Expose the last checkpoint to power UI progress bars (polling)."""
    try:
        job_status = get_job_status(store, job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    except SQLAlchemyError as exc:
        logger.error(f"Database error fetching job status {job_id}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve job status",
        ) from exc

    message = fetch_progress(job_id).get("message")
    if message:
        job_status.message = message
    return job_status


@router.post(
    "/{job_id}/retry",
    summary="Resume an import from its last checkpoint",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportJobStatus,
)
async def retry_import(
    job_id: str,
    store: ImportJobStore = Depends(get_job_store),
    enqueue: EnqueueImport = Depends(get_enqueue_import),
) -> ImportJobStatus:
    """Re-enqueue an unfinished import; a failed one resumes where it stopped."""
    job = _get_job_or_404(store, job_id)
    if job.status == ImportStatus.COMPLETED.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Import already completed"
        )
    _enqueue(enqueue, job, resume_failed=job.status == ImportStatus.FAILED.value)
    logger.info(f"Retry requested for import {job_id} (status={job.status})")
    return serialize_job(job, {"message": "Retry queued"})


@router.post(
    "/{job_id}/cancel",
    summary="Stop an import after its current chunk",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportJobStatus,
)
async def cancel_import(
    job_id: str,
    store: ImportJobStore = Depends(get_job_store),
    request_cancel: RequestCancel = Depends(get_request_cancel),
) -> ImportJobStatus:
    """Ask the worker to stop; the job stays resumable at its last checkpoint."""
    job = _get_job_or_404(store, job_id)
    if job.is_terminal:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Import already {job.status}",
        )
    try:
        request_cancel(job_id)
    except RedisError as exc:
        logger.error(f"Failed to record cancel request for {job_id}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cancel request could not be recorded",
        ) from exc
    logger.info(f"Cancel requested for import {job_id}")
    return serialize_job(job, {"message": "Cancel requested"})
