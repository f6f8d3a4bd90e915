"""Deliver signed JSON payloads to a webhook URL."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)
TIMEOUT_SECONDS = 10
USER_AGENT = "Book-Importer/1.0"


def _canonical_body(payload: dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True)


def sign_payload(payload: dict[str, Any], secret: str) -> str:
    """Hex HMAC-SHA256 of the canonical JSON body."""
    body = _canonical_body(payload).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _post(http: httpx.Client, url: str, body: str, headers: dict[str, str]) -> tuple[Any, str | None]:
    """Send one request; returns (status, error) where status may be "timeout" or "error"."""
    try:
        response = http.post(url, content=body, headers=headers)
    except httpx.TimeoutException as e:
        logger.warning(f"Webhook delivery to {url} timed out: {e}")
        return "timeout", f"Request timeout after {TIMEOUT_SECONDS}s"
    except httpx.RequestError as e:
        logger.error(f"Webhook delivery to {url} failed: {e}", exc_info=True)
        return "error", f"Request failed: {e}"

    if response.is_success:
        return response.status_code, None
    return response.status_code, f"HTTP {response.status_code}: {response.text[:200]}"


def deliver_webhook(
    url: str,
    payload: dict[str, Any],
    secret: str | None = None,
    client: httpx.Client | None = None,
) -> dict[str, Any]:
    """POST ``payload`` to ``url``.

    The result carries ``status`` (HTTP code, ``"timeout"`` or ``"error"``),
    ``response_time_ms``, ``success`` (2xx only) and ``error``.
    """
    headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
    if secret:
        headers["X-Webhook-Signature"] = "sha256=" + sign_payload(payload, secret)

    started = time.monotonic()
    if client is not None:
        status, error = _post(client, url, _canonical_body(payload), headers)
    else:
        with httpx.Client(timeout=TIMEOUT_SECONDS, follow_redirects=True) as http:
            status, error = _post(http, url, _canonical_body(payload), headers)
    elapsed_ms = int((time.monotonic() - started) * 1000)

    logger.info(f"Webhook delivered to {url}: status={status}, time={elapsed_ms}ms")
    return {
        "status": status,
        "response_time_ms": elapsed_ms,
        "success": error is None,
        "error": error,
    }
