"""Drive an import job from pending to a terminal state, one checkpointed chunk at a time.

The ISBN list is never stored: every invocation re-reads the uploaded CSV and
re-derives the same ordered candidates, then continues from the job's
``current_position``. A chunk is the unit of progress; its counters are
committed in a single versioned update before the next chunk starts, so a
crash loses at most the chunk in flight and a second worker racing on the same
job is rejected instead of double-counting.
"""

from __future__ import annotations

import enum
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from sqlalchemy.exc import SQLAlchemyError

from book_importer.core.errors import ImportSourceError, JobNotFoundError, StaleJobError
from book_importer.db.models.import_job import ImportJob, ImportStatus
from book_importer.services.catalog import CatalogUpsert
from book_importer.services.isbn_extractor import extract_isbns
from book_importer.services.job_store import ImportJobStore
from book_importer.services.metadata_lookup import (
    DEFAULT_BATCH_LIMIT,
    BookMetadata,
    MetadataLookup,
)
from book_importer.services.notifications import CompletionNotifier, CompletionSummary
from book_importer.storage.blob_store import BlobStore
from book_importer.utils.batching import chunked

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("book_importer.audit")

MAX_ERROR_MESSAGE_LENGTH = 2000


class ProcessOutcome(str, enum.Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    CONFLICT = "conflict"


@dataclass
class ChunkResult:
    succeeded: int = 0
    failed: list[str] = field(default_factory=list)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportProcessor:
    def __init__(
        self,
        store: ImportJobStore,
        blob_store: BlobStore,
        lookup: MetadataLookup,
        catalog: CatalogUpsert,
        notifier: CompletionNotifier,
        *,
        lookup_batch_limit: int = DEFAULT_BATCH_LIMIT,
        upsert_workers: int = 4,
        failed_isbns_limit: int = 100,
        checkpoint_retries: int = 3,
        on_checkpoint: Callable[[ImportJob], None] | None = None,
    ) -> None:
        self.store = store
        self.blob_store = blob_store
        self.lookup = lookup
        self.catalog = catalog
        self.notifier = notifier
        # Never send more than the lookup service accepts, whatever the chunk size
        service_limit = getattr(lookup, "batch_limit", lookup_batch_limit)
        self.lookup_batch_limit = max(1, min(lookup_batch_limit, service_limit))
        self.upsert_workers = max(1, upsert_workers)
        self.failed_isbns_limit = failed_isbns_limit
        self.checkpoint_retries = max(1, checkpoint_retries)
        self.on_checkpoint = on_checkpoint

    def process(
        self,
        job_id: str,
        *,
        should_cancel: Callable[[], bool] | None = None,
        resume_failed: bool = False,
    ) -> ProcessOutcome:
        """Run or resume ``job_id`` until it completes, is cancelled or fails.

        Args:
            job_id: Import job to drive.
            should_cancel: Polled before every chunk; when it returns True the
                job is left in ``processing`` at its last checkpoint.
            resume_failed: Allow a ``failed`` job to re-enter processing from
                its last checkpoint (explicit operator retry).

        Raises:
            JobNotFoundError: no such job.
            Exception: whatever made the job fail; the job is marked
                ``failed`` before the error propagates.
        """
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        logger.info(
            f"Processing import {job_id} (status={job.status}) from position "
            f"{job.current_position}/{job.total_isbn_count}"
        )

        if job.status == ImportStatus.COMPLETED.value:
            try:
                self._ensure_notified(job)
            except StaleJobError as e:
                logger.warning(f"Notification flag for import {job_id} not written: {e}")
                return ProcessOutcome.CONFLICT
            return ProcessOutcome.COMPLETED
        if job.status == ImportStatus.FAILED.value and not resume_failed:
            logger.info(f"Import {job_id} has failed; skipping without an explicit retry")
            return ProcessOutcome.SKIPPED

        try:
            job = self._start(job)
            isbns = self._load_candidates(job)

            while job.current_position < job.total_isbn_count:
                if should_cancel is not None and should_cancel():
                    logger.info(
                        f"Import {job_id} cancelled at position {job.current_position}; "
                        "left resumable"
                    )
                    return ProcessOutcome.CANCELLED
                start = job.current_position
                chunk = isbns[start : start + job.chunk_size]
                result = self._process_chunk(job, chunk)
                job = self._checkpoint_chunk(job, chunk, result)

            self._complete(job)
            return ProcessOutcome.COMPLETED
        except StaleJobError as e:
            logger.warning(f"Aborting import {job_id}: {e}")
            return ProcessOutcome.CONFLICT
        except Exception as e:
            logger.error(f"Error processing import {job_id}: {e}", exc_info=True)
            self._mark_failed(job_id, e)
            raise

    def _persist(self, job: ImportJob, **changes: Any) -> ImportJob:
        """Checkpoint with retries for transient store errors; stale writes are never retried."""
        expected_version = job.version
        attempt = 1
        while True:
            try:
                return self.store.checkpoint(job, expected_version=expected_version, **changes)
            except SQLAlchemyError as e:
                if attempt >= self.checkpoint_retries:
                    logger.error(
                        f"Checkpoint for import {job.id} failed after {attempt} attempts"
                    )
                    raise
                logger.warning(
                    f"Checkpoint attempt {attempt} for import {job.id} failed: {e}; retrying"
                )
                attempt += 1

    def _start(self, job: ImportJob) -> ImportJob:
        expected = min(job.processed_chunks * job.chunk_size, job.total_isbn_count)
        if job.current_position != expected:
            raise ImportSourceError(
                f"Checkpoint of import {job.id} is inconsistent: position "
                f"{job.current_position}, expected {expected}"
            )

        changes: dict[str, Any] = {}
        if job.status != ImportStatus.PROCESSING.value:
            changes["status"] = ImportStatus.PROCESSING.value
        if job.processing_started_at is None:
            changes["processing_started_at"] = utcnow()
        if job.error_message is not None:
            changes["error_message"] = None
        if changes:
            job = self._persist(job, **changes)
        return job

    def _load_candidates(self, job: ImportJob) -> list[str]:
        if job.total_isbn_count == 0:
            return []
        stream = self.blob_store.download(job.source_blob_locator)
        isbns = extract_isbns(stream, job.total_isbn_count)
        if len(isbns) != job.total_isbn_count:
            raise ImportSourceError(
                f"Source {job.source_blob_locator} yields {len(isbns)} ISBNs, "
                f"expected {job.total_isbn_count}"
            )
        return isbns

    def _lookup(self, chunk: list[str]) -> dict[str, BookMetadata | None]:
        metadata: dict[str, BookMetadata | None] = {}
        for batch in chunked(chunk, self.lookup_batch_limit):
            found: Mapping[str, BookMetadata | None] = self.lookup.lookup_batch(batch)
            metadata.update(found)
        return metadata

    def _upsert_one(self, metadata: BookMetadata, library_id: str, actor: str) -> bool:
        try:
            return bool(self.catalog.upsert(metadata, library_id, actor))
        except Exception as e:
            logger.error(f"Error saving book with ISBN {metadata.isbn}: {e}", exc_info=True)
            return False

    def _process_chunk(self, job: ImportJob, chunk: list[str]) -> ChunkResult:
        metadata = self._lookup(chunk)
        actor = job.requested_by_name or job.requested_by
        library_id = job.library_id

        found = [(isbn, metadata.get(isbn)) for isbn in chunk if metadata.get(isbn) is not None]
        futures: dict[str, Future[bool]] = {}
        if found:
            # Leaving the block waits for every upsert: the checkpoint is a barrier
            with ThreadPoolExecutor(
                max_workers=min(self.upsert_workers, len(found)),
                thread_name_prefix="catalog-upsert",
            ) as pool:
                for isbn, book in found:
                    futures[isbn] = pool.submit(self._upsert_one, book, library_id, actor)

        result = ChunkResult()
        for isbn in chunk:
            future = futures.get(isbn)
            if future is None:
                logger.warning(f"Book data not found for ISBN: {isbn}")
                result.failed.append(isbn)
            elif future.result():
                result.succeeded += 1
            else:
                result.failed.append(isbn)
        return result

    def _checkpoint_chunk(
        self, job: ImportJob, chunk: list[str], result: ChunkResult
    ) -> ImportJob:
        failed_isbns = list(job.failed_isbns or [])
        room = self.failed_isbns_limit - len(failed_isbns)
        if room > 0:
            failed_isbns.extend(result.failed[:room])

        job = self._persist(
            job,
            current_position=min(job.current_position + len(chunk), job.total_isbn_count),
            processed_chunks=job.processed_chunks + 1,
            success_count=job.success_count + result.succeeded,
            failed_count=job.failed_count + len(result.failed),
            failed_isbns=failed_isbns,
        )
        logger.info(
            f"Import {job.id} chunk {job.processed_chunks}/{job.total_chunks} done: "
            f"+{result.succeeded} ok, +{len(result.failed)} failed "
            f"(position {job.current_position}/{job.total_isbn_count})"
        )
        self._publish_checkpoint(job)
        return job

    def _publish_checkpoint(self, job: ImportJob) -> None:
        if self.on_checkpoint is None:
            return
        # Progress snapshots are advisory and never change the job's state
        try:
            self.on_checkpoint(job)
        except Exception as e:
            logger.warning(f"Progress hook failed for import {job.id}: {e}", exc_info=True)

    def _dispatch_notification(self, job: ImportJob, completed_at: datetime) -> bool:
        try:
            self.notifier.notify_completion(CompletionSummary.from_job(job, completed_at))
        except Exception as e:
            logger.error(
                f"Failed to send completion notification for import {job.id}: {e}",
                exc_info=True,
            )
            return False
        return True

    def _complete(self, job: ImportJob) -> ImportJob:
        completed_at = utcnow()
        # Dispatch before the flag is written: a crash in between may repeat
        # the notification but can never lose it.
        notified = job.notification_sent or self._dispatch_notification(job, completed_at)
        job = self._persist(
            job,
            status=ImportStatus.COMPLETED.value,
            completed_at=completed_at,
            notification_sent=notified,
        )
        logger.info(
            f"Completed import {job.id}. Success: {job.success_count}, "
            f"Failed: {job.failed_count}"
        )
        audit_logger.info(
            f"Bulk Add Completed: {job.requested_by_name or job.requested_by} imported "
            f"{job.source_file_name} into library {job.library_id} "
            f"({job.success_count} added, {job.failed_count} failed, job {job.id})"
        )
        self._publish_checkpoint(job)
        return job

    def _ensure_notified(self, job: ImportJob) -> None:
        if job.notification_sent:
            return
        if self._dispatch_notification(job, job.completed_at or utcnow()):
            self._persist(job, notification_sent=True)

    def _mark_failed(self, job_id: str, error: Exception) -> None:
        message = (str(error) or error.__class__.__name__)[:MAX_ERROR_MESSAGE_LENGTH]
        try:
            job = self.store.get(job_id)
            if job is None or job.status == ImportStatus.COMPLETED.value:
                return
            job = self.store.checkpoint(
                job, status=ImportStatus.FAILED.value, error_message=message
            )
            self._publish_checkpoint(job)
        except Exception:
            logger.error(
                f"Additional error occurred while marking import {job_id} as failed",
                exc_info=True,
            )
