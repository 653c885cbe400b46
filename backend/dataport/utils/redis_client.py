"""Redis client helpers with TLS handling for Upstash and similar providers."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis


def normalize_redis_url(url: str) -> tuple[str, bool]:
    """Return the URL to connect with and whether it needs TLS.

    Upstash endpoints only accept TLS, so a plain ``redis://`` URL pointing
    at them is upgraded to ``rediss://``.
    """
    if ".upstash.io" in url and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)
    return url, url.startswith("rediss://")


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client, disabling certificate checks for TLS endpoints.

    Args:
        url: Redis connection URL (redis:// or rediss://)
        **kwargs: Passed through to ``Redis.from_url`` (decode_responses,
            socket_connect_timeout, ...)
    """
    url, use_tls = normalize_redis_url(url)
    if use_tls:
        kwargs.setdefault("ssl_cert_reqs", ssl.CERT_NONE)
    return Redis.from_url(url, **kwargs)
