"""Celery application factory for async processing."""

import ssl

from celery import Celery

from book_importer.core.config import get_settings

settings = get_settings()

SSL_CERT_PARAM = "ssl_cert_reqs=none"


def _tls_url(url: str) -> str:
    """Upstash only accepts TLS; the result backend reads ssl_cert_reqs from the URL."""
    if ".upstash.io" in url and url.startswith("redis://"):
        url = "rediss://" + url[len("redis://"):]
    if url.startswith("rediss://") and "ssl_cert_reqs" not in url:
        url += ("&" if "?" in url else "?") + SSL_CERT_PARAM
    return url


broker_url = _tls_url(settings.celery_broker_url or settings.redis_url)
backend_url = _tls_url(settings.celery_result_url or settings.redis_url)
is_ssl = broker_url.startswith("rediss://") or backend_url.startswith("rediss://")

celery_app = Celery(
    "book_importer",
    broker=broker_url,
    backend=backend_url,
)

IMPORTS_QUEUE = "imports"
NOTIFICATIONS_QUEUE = "notifications"

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_acks_late": True,  # Acknowledge after task completion
    "task_reject_on_worker_lost": True,  # Re-queue if worker dies
    "worker_prefetch_multiplier": 1,  # Fair task distribution
    "task_time_limit": 3600,  # 1 hour hard limit
    "task_soft_time_limit": 3300,  # 55 min soft limit
    "result_expires": 3600,
    "broker_connection_retry_on_startup": True,
    "worker_hijack_root_logger": False,
    "result_backend_always_retry": True,
    "result_backend_max_retries": 3,
    "task_default_queue": IMPORTS_QUEUE,
    # Task routing by queue
    "task_routes": {
        "book_importer.workers.tasks.process_import": {"queue": IMPORTS_QUEUE},
        "book_importer.workers.tasks.dispatch_pending_imports": {"queue": IMPORTS_QUEUE},
        "book_importer.workers.tasks.notify_import_completion": {
            "queue": NOTIFICATIONS_QUEUE
        },
    },
    # Background poller: picks up pending, stalled and un-notified imports
    "beat_schedule": {
        "dispatch-pending-imports": {
            "task": "book_importer.workers.tasks.dispatch_pending_imports",
            "schedule": float(settings.import_poll_interval_seconds),
        },
    },
}

if is_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_config["broker_use_ssl"] = ssl_dict
    celery_config["result_backend_use_ssl"] = ssl_dict
    celery_config["broker_transport_options"] = ssl_dict.copy()
    celery_config["result_backend_transport_options"] = ssl_dict.copy()

celery_app.conf.update(celery_config)

# Explicitly import tasks to ensure they're registered with celery_app
from book_importer.workers.tasks import notify_completion, process_import  # noqa: E402,F401
