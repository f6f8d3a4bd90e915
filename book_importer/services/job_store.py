"""Persistence for import jobs; every update goes through a versioned checkpoint."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from book_importer.core.errors import StaleJobError
from book_importer.db.models.import_job import ImportJob, ImportStatus

logger = logging.getLogger(__name__)

# Set once at creation and never rewritten by a checkpoint
IMMUTABLE_FIELDS = frozenset(
    {
        "id",
        "library_id",
        "requested_by",
        "requested_by_name",
        "source_file_name",
        "source_blob_locator",
        "total_isbn_count",
        "chunk_size",
        "total_chunks",
        "created_at",
        "version",
    }
)
MUTABLE_FIELDS = frozenset(
    {
        "status",
        "processed_chunks",
        "current_position",
        "success_count",
        "failed_count",
        "failed_isbns",
        "processing_started_at",
        "completed_at",
        "error_message",
        "notification_sent",
    }
)


class ImportJobStore:
    """Owns reads and writes of ``ImportJob`` rows for one session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, job: ImportJob) -> ImportJob:
        try:
            self.session.add(job)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        logger.info(
            f"Created import job {job.id} for library {job.library_id}: "
            f"{job.total_isbn_count} ISBNs in {job.total_chunks} chunk(s)"
        )
        return job

    def get(self, job_id: str) -> ImportJob | None:
        """Fresh read of the job, overwriting any state cached in the session."""
        return self.session.get(ImportJob, job_id, populate_existing=True)

    def checkpoint(
        self,
        job: ImportJob,
        *,
        expected_version: int | None = None,
        **changes: Any,
    ) -> ImportJob:
        """Apply ``changes`` and commit them as one versioned update.

        Raises StaleJobError when the row was modified since ``expected_version``
        (defaults to the version held by ``job``); the stale write is discarded.
        """
        unknown = set(changes) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be checkpointed: {', '.join(sorted(unknown))}")

        try:
            if expected_version is not None and job.version != expected_version:
                raise StaleJobError(job.id)
            for field, value in changes.items():
                setattr(job, field, value)
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            raise StaleJobError(job.id) from e
        except (SQLAlchemyError, StaleJobError):
            self.session.rollback()
            raise
        return job

    def list_for_library(
        self, library_id: str, status: str | None = None, limit: int = 50
    ) -> list[ImportJob]:
        query = select(ImportJob).where(ImportJob.library_id == library_id)
        if status:
            query = query.where(ImportJob.status == status)
        query = query.order_by(ImportJob.created_at.desc()).limit(limit)
        return list(self.session.scalars(query).all())

    def list_dispatchable(self, stale_before: datetime) -> list[ImportJob]:
        """Jobs a poller should hand to a worker.

        Pending jobs, processing jobs whose last checkpoint is older than
        ``stale_before`` (their worker most likely died), and completed jobs
        still owing their completion notification. Failed jobs only resume on
        an explicit retry.
        """
        query = (
            select(ImportJob)
            .where(
                or_(
                    ImportJob.status == ImportStatus.PENDING.value,
                    and_(
                        ImportJob.status == ImportStatus.PROCESSING.value,
                        ImportJob.updated_at < stale_before,
                    ),
                    and_(
                        ImportJob.status == ImportStatus.COMPLETED.value,
                        ImportJob.notification_sent.is_(False),
                    ),
                )
            )
            .order_by(ImportJob.created_at)
        )
        return list(self.session.scalars(query).all())
