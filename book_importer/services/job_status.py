"""Read-only view of an import job for progress displays."""

from __future__ import annotations

from book_importer.api.schemas.job import ImportJobStatus
from book_importer.core.errors import JobNotFoundError
from book_importer.db.models.import_job import ImportJob
from book_importer.services.job_store import ImportJobStore


def to_status(job: ImportJob, message: str | None = None) -> ImportJobStatus:
    status = ImportJobStatus.model_validate(job)
    if message:
        status.message = message
    return status


def get_job_status(store: ImportJobStore, job_id: str) -> ImportJobStatus:
    """Pure read of the job's last checkpoint; raises JobNotFoundError."""
    job = store.get(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return to_status(job)
