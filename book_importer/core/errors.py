"""Exceptions raised by the import pipeline."""

from __future__ import annotations


class ImportValidationError(ValueError):
    """Submitted file or requesting context was rejected before any I/O."""

    pass


class QuotaExceededError(ImportValidationError):
    """Library subscription cannot hold the books the file would add."""

    def __init__(self, library_id: str, requested: int) -> None:
        super().__init__(
            f"Library {library_id} cannot accommodate {requested} more book(s); "
            "upgrade the subscription or import a smaller file"
        )
        self.library_id = library_id
        self.requested = requested


class BlobStorageError(RuntimeError):
    """Upload/download against the blob store failed."""

    pass


class BlobNotFoundError(BlobStorageError):
    pass


class JobNotFoundError(LookupError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Import job {job_id} not found")
        self.job_id = job_id


class StaleJobError(RuntimeError):
    """A checkpoint was written against an outdated version of the job."""

    def __init__(self, job_id: str) -> None:
        super().__init__(
            f"Import job {job_id} was modified by another worker; checkpoint rejected"
        )
        self.job_id = job_id


class ImportSourceError(RuntimeError):
    """Stored source file no longer yields the candidates counted at submission."""

    pass
