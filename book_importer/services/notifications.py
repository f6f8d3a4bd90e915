"""Completion notifications for finished imports."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Protocol

from book_importer.db.models.import_job import ImportJob

logger = logging.getLogger(__name__)

EVENT_IMPORT_COMPLETED = "book_import.completed"


@dataclass(frozen=True)
class CompletionSummary:
    job_id: str
    library_id: str
    requested_by: str
    requested_by_name: str | None
    file_name: str
    total_isbns: int
    success_count: int
    failed_count: int
    completed_at: datetime
    failed_isbns: list[str] = field(default_factory=list)

    @classmethod
    def from_job(cls, job: ImportJob, completed_at: datetime) -> "CompletionSummary":
        return cls(
            job_id=job.id,
            library_id=job.library_id,
            requested_by=job.requested_by,
            requested_by_name=job.requested_by_name,
            file_name=job.source_file_name,
            total_isbns=job.total_isbn_count,
            success_count=job.success_count,
            failed_count=job.failed_count,
            completed_at=completed_at,
            failed_isbns=list(job.failed_isbns or []),
        )

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["completed_at"] = self.completed_at.isoformat()
        payload["event"] = EVENT_IMPORT_COMPLETED
        return payload


class CompletionNotifier(Protocol):
    def notify_completion(self, summary: CompletionSummary) -> None:
        """Fire-and-forget; raising means the request was not dispatched."""
        ...


class CeleryCompletionNotifier:
    """Hands the notification to the worker queue so delivery never blocks an import."""

    def notify_completion(self, summary: CompletionSummary) -> None:
        from book_importer.workers.tasks.notify_completion import notify_import_completion

        notify_import_completion.apply_async(
            args=(summary.to_payload(),),
            queue="notifications",
        )
        logger.info(f"Enqueued completion notification for import {summary.job_id}")
