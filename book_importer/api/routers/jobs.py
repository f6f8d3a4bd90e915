"""Import job listing endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError

from book_importer.api.dependencies.db import get_job_store
from book_importer.api.dependencies.imports import get_requesting_user
from book_importer.api.routers.job_helpers import serialize_job
from book_importer.api.schemas.job import ImportJobStatus
from book_importer.db.models.import_job import ImportStatus
from book_importer.services.import_submission import RequestingUser
from book_importer.services.job_store import ImportJobStore
from book_importer.services.progress_tracker import fetch_progress

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "",
    summary="List import jobs of a library",
    response_model=list[ImportJobStatus],
)
async def list_jobs(
    library_id: str | None = Query(None, description="Defaults to the caller's library"),
    status: ImportStatus | None = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of jobs to return"),
    requesting_user: RequestingUser | None = Depends(get_requesting_user),
    store: ImportJobStore = Depends(get_job_store),
) -> list[ImportJobStatus]:
    """Return the library's import jobs, newest first."""
    library_id = library_id or (requesting_user.library_id if requesting_user else None)
    if not library_id:
        raise HTTPException(status_code=400, detail="Library context is required")

    try:
        jobs = store.list_for_library(
            library_id, status=status.value if status else None, limit=limit
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to list import jobs for library {library_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to retrieve jobs") from e

    return [serialize_job(job, fetch_progress(job.id)) for job in jobs]
