"""
Generic request-rate limiter applied in front of every endpoint.

Why:
    Signed-URL issuance is pure computation but still costs a store round
    trip per request; the gateway therefore caps requests per client address
    (RATE_LIMIT_MAX_REQUESTS per RATE_LIMIT_WINDOW_MS, default 100 per 15 min).
    The limit is not specific to any operation.

Storage:
    In-memory (per process). Multi-instance deployments should point
    RATE_LIMIT_STORAGE_URI at Redis.
"""
from __future__ import annotations

import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from backend.content_access.config import get_rate_limit


def default_limit() -> str:
    max_requests, window_ms = get_rate_limit()
    window_seconds = max(1, window_ms // 1000)
    return f"{max_requests} per {window_seconds} seconds"


def build_limiter() -> Limiter:
    storage_uri = (os.getenv("RATE_LIMIT_STORAGE_URI") or "memory://").strip()
    return Limiter(
        key_func=get_remote_address,
        default_limits=[default_limit()],
        storage_uri=storage_uri,
        headers_enabled=False,
    )


__all__ = ["build_limiter", "default_limit"]
