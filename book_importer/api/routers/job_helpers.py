"""Shared helpers for shaping job responses."""
from __future__ import annotations

from book_importer.api.schemas.job import ImportJobStatus
from book_importer.db.models.import_job import ImportJob
from book_importer.services.job_status import to_status


def serialize_job(job: ImportJob, progress_payload: dict | None) -> ImportJobStatus:
    """Combine DB state + cached progress note into a response schema.

    Counters always come from the database row; the Redis snapshot only
    contributes the worker's latest message.
    """
    progress_payload = progress_payload or {}
    message = progress_payload.get("message")
    if not message:
        message = (
            f"Processed {job.processed_chunks}/{job.total_chunks} chunks "
            f"({job.success_count} added, {job.failed_count} failed)"
        )
    return to_status(job, message)
