"""Shared helpers for publishing import progress and cancel requests to Redis."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any

from redis.exceptions import RedisError

from book_importer.core.config import get_settings
from book_importer.db.models.import_job import ImportJob
from book_importer.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

settings = get_settings()
redis_client = create_redis_client(settings.redis_url, decode_responses=True)
PROGRESS_PREFIX = "jobs:progress:"
CANCEL_PREFIX = "jobs:cancel:"
PROGRESS_TTL = timedelta(hours=24)


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


def _cancel_key(job_id: str) -> str:
    return f"{CANCEL_PREFIX}{job_id}"


def publish_progress(job: ImportJob, message: str | None = None) -> None:
    """Persist a snapshot of the last checkpoint so dashboards can subscribe.

    The database row stays authoritative; this is best-effort.
    """
    payload: dict[str, Any] = {
        "job_id": job.id,
        "status": job.status,
        "progress": job.progress_percent,
        "message": message,
        "processed_chunks": job.processed_chunks,
        "total_chunks": job.total_chunks,
        "success_count": job.success_count,
        "failed_count": job.failed_count,
    }
    try:
        redis_client.set(
            _key(job.id),
            json.dumps(payload),
            ex=int(PROGRESS_TTL.total_seconds()),
        )
    except RedisError as e:
        # Redis availability should not break ingestion.
        logger.debug(f"Skipping progress publish for job {job.id}: {e}")


def fetch_progress(job_id: str) -> dict[str, Any]:
    """Return the latest published snapshot, or {} when none is available."""
    try:
        raw = redis_client.get(_key(job_id))
    except RedisError:
        return {}
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {}


def request_cancel(job_id: str) -> None:
    """Ask the worker to stop before its next chunk; raises RedisError if unreachable."""
    redis_client.set(_cancel_key(job_id), "1", ex=int(PROGRESS_TTL.total_seconds()))


def clear_cancel(job_id: str) -> None:
    try:
        redis_client.delete(_cancel_key(job_id))
    except RedisError as e:
        logger.warning(f"Failed to clear cancel flag for job {job_id}: {e}")


def is_cancel_requested(job_id: str) -> bool:
    try:
        return bool(redis_client.exists(_cancel_key(job_id)))
    except RedisError as e:
        logger.warning(f"Cannot read cancel flag for job {job_id}: {e}")
        return False
