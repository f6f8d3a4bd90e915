"""Validate an uploaded ISBN CSV, stash it in blob storage and create a pending job."""

from __future__ import annotations

import io
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from book_importer.core.config import Settings, get_settings
from book_importer.core.errors import (
    BlobStorageError,
    ImportValidationError,
    QuotaExceededError,
)
from book_importer.db.models.import_job import ImportJob, ImportStatus
from book_importer.services.isbn_extractor import extract_isbns
from book_importer.services.job_store import ImportJobStore
from book_importer.services.quota import QuotaChecker
from book_importer.storage.blob_store import BlobStore
from book_importer.utils.batching import chunk_count

logger = logging.getLogger(__name__)

ALLOWED_EXTENSION = ".csv"
_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@dataclass(frozen=True)
class CsvUpload:
    filename: str | None
    content: bytes


@dataclass(frozen=True)
class RequestingUser:
    user_id: str
    display_name: str | None = None
    library_id: str | None = None


def build_blob_path(library_id: str, filename: str, now: datetime | None = None) -> str:
    """Namespace uploads by library and upload date: {library}/{YYYY/MM/DD}/{uuid}-{name}."""
    now = now or datetime.now(timezone.utc)
    safe_name = _FILENAME_CHARS.sub("_", Path(filename).name) or "upload.csv"
    return f"{library_id}/{now:%Y/%m/%d}/{uuid.uuid4()}-{safe_name}"


class ImportSubmissionService:
    def __init__(
        self,
        store: ImportJobStore,
        blob_store: BlobStore,
        quota: QuotaChecker,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.blob_store = blob_store
        self.quota = quota
        self.settings = settings or get_settings()

    def _validate_file(self, upload: CsvUpload | None) -> str:
        if upload is None or not upload.content:
            raise ImportValidationError("CSV file cannot be empty")
        filename = (upload.filename or "").strip()
        if not filename:
            raise ImportValidationError("Filename is required")
        if Path(filename).suffix.lower() != ALLOWED_EXTENSION:
            raise ImportValidationError("Only CSV uploads are supported")
        max_bytes = self.settings.import_max_upload_bytes
        if len(upload.content) > max_bytes:
            raise ImportValidationError(
                f"File size must not exceed {max_bytes // (1024 * 1024)}MB"
            )
        return filename

    def submit(self, upload: CsvUpload | None, requesting_user: RequestingUser | None) -> ImportJob:
        """Create a pending import job for ``upload``.

        Either both the blob and the job row exist afterwards, or neither does.

        Raises:
            ImportValidationError: bad file, no library context, quota exceeded.
            BlobStorageError: the upload could not be stored.
            SQLAlchemyError: the job row could not be created.
        """
        filename = self._validate_file(upload)
        if requesting_user is None or not requesting_user.library_id:
            raise ImportValidationError("Current user or library not found")
        library_id = requesting_user.library_id

        isbns = extract_isbns(
            io.BytesIO(upload.content), self.settings.import_max_isbns_per_import
        )
        total = len(isbns)
        chunk_size = self.settings.import_chunk_size

        if not self.quota.can_accommodate(library_id, total):
            raise QuotaExceededError(library_id, total)

        blob_path = build_blob_path(library_id, filename)
        logger.info(f"Uploading CSV {filename} for library {library_id} to {blob_path}")
        locator = self.blob_store.upload(upload.content, blob_path)
        if not locator:
            raise BlobStorageError("Failed to upload CSV file to blob storage")

        job = ImportJob(
            id=str(uuid.uuid4()),
            library_id=library_id,
            requested_by=requesting_user.user_id,
            requested_by_name=requesting_user.display_name,
            source_file_name=filename,
            source_blob_locator=locator,
            total_isbn_count=total,
            chunk_size=chunk_size,
            total_chunks=chunk_count(total, chunk_size),
            processed_chunks=0,
            current_position=0,
            success_count=0,
            failed_count=0,
            failed_isbns=[],
            status=ImportStatus.PENDING.value,
            notification_sent=False,
        )
        try:
            return self.store.create(job)
        except SQLAlchemyError as e:
            logger.error(f"Database error creating import job: {e}", exc_info=True)
            self.blob_store.delete(locator)
            raise
