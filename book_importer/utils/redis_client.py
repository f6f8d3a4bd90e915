"""Create Redis clients, enabling TLS for rediss:// and Upstash URLs."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis

DEFAULT_SOCKET_TIMEOUT = 5


def normalize_redis_url(url: str) -> str:
    """Upstash only accepts TLS connections; upgrade plain redis:// URLs."""
    if ".upstash.io" in url and url.startswith("redis://"):
        return url.replace("redis://", "rediss://", 1)
    return url


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Build a client from ``url``.

    Progress snapshots, cancel flags and blobs all go through this helper so
    that a hosted Redis with self-signed certificates works everywhere.
    """
    url = normalize_redis_url(url)
    kwargs.setdefault("socket_connect_timeout", DEFAULT_SOCKET_TIMEOUT)
    client = Redis.from_url(url, **kwargs)

    if url.startswith("rediss://"):
        pool_kwargs = getattr(client.connection_pool, "connection_kwargs", None)
        if pool_kwargs is not None:
            pool_kwargs["ssl_cert_reqs"] = ssl.CERT_NONE

    return client
