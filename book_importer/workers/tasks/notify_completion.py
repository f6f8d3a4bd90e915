"""Celery task for delivering import completion notifications."""

from __future__ import annotations

import logging
from typing import Any

from book_importer.core.config import get_settings
from book_importer.services.webhook_dispatch import deliver_webhook
from book_importer.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="book_importer.workers.tasks.notify_import_completion")
def notify_import_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
    """Post the completion summary to the configured webhook.

    Delivery is best-effort: the job's ``notification_sent`` flag records that
    the request was dispatched, not that it was received.
    """
    settings = get_settings()
    job_id = payload.get("job_id")
    if not settings.notification_webhook_url:
        logger.info(
            f"Import {job_id} completed for {payload.get('requested_by')}: "
            f"{payload.get('success_count')} succeeded, {payload.get('failed_count')} failed "
            "(no notification webhook configured)"
        )
        return {"success": False, "error": "No notification webhook configured"}

    try:
        result = deliver_webhook(
            settings.notification_webhook_url,
            payload,
            secret=settings.notification_webhook_secret,
        )
    except Exception as e:
        logger.error(f"Error delivering notification for import {job_id}: {e}", exc_info=True)
        return {"success": False, "error": str(e)}

    if not result["success"]:
        logger.warning(f"Notification for import {job_id} was not accepted: {result['error']}")
    return result
