"""
Centralized configuration for content access (signing, TTL, limits).

Intent:
    Provide a single source of truth for the signed-URL secret, its TTL and
    the rate/timeout knobs used by the gateway and the client gate. Prevents
    drift between the issuer, the verifier and the startup guard.

Behavior:
    - get_signed_url_secret() returns SIGNED_URL_SECRET; outside prod-like
      environments a random key is generated once per process when it is
      unset, so no signing key ever lives in the source tree.
    - get_signed_url_ttl_hours() reads SIGNED_URL_EXPIRY_HOURS (default 2,
      clamped to 24).

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import logging
import os
import secrets


SIGNED_URL_TTL_HOURS_DEFAULT = 2
SIGNED_URL_TTL_HOURS_MAX = 24
PROD_LIKE_ENVS = frozenset({"prod", "production", "stage", "staging"})

logger = logging.getLogger("manara.content_access")

_EPHEMERAL_SECRET: str | None = None


def get_environment() -> str:
    return (os.getenv("MANARA_ENV", "dev") or "dev").strip().lower()


def is_prod_like(env: str | None = None) -> bool:
    return (env if env is not None else get_environment()) in PROD_LIKE_ENVS


def _parse_int_env(name: str, default: int, *, contract_max: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    if isinstance(contract_max, int) and contract_max > 0:
        value = min(value, contract_max)
    return value


def _parse_float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _ephemeral_secret() -> str:
    global _EPHEMERAL_SECRET
    if _EPHEMERAL_SECRET is None:
        _EPHEMERAL_SECRET = secrets.token_hex(32)
        logger.warning("SIGNED_URL_SECRET is not set; signing with a random per-process key")
    return _EPHEMERAL_SECRET


def get_signed_url_secret() -> str:
    """Return the HMAC secret for signed capabilities.

    Env:
        SIGNED_URL_SECRET – required in prod-like environments (enforced by the
        startup guard); dev/test fall back to a random per-process key, so
        capabilities do not survive a restart.
    """
    secret = (os.getenv("SIGNED_URL_SECRET") or "").strip()
    if secret:
        return secret
    if is_prod_like():
        raise RuntimeError("SIGNED_URL_SECRET is not configured")
    return _ephemeral_secret()


def get_signed_url_ttl_hours() -> int:
    """Capability lifetime in hours (default 2, clamped to 24)."""
    return _parse_int_env(
        "SIGNED_URL_EXPIRY_HOURS",
        SIGNED_URL_TTL_HOURS_DEFAULT,
        contract_max=SIGNED_URL_TTL_HOURS_MAX,
    )


def get_rate_limit() -> tuple[int, int]:
    """Return (max_requests, window_ms) for the generic request limiter."""
    window_ms = _parse_int_env("RATE_LIMIT_WINDOW_MS", 15 * 60 * 1000)
    max_requests = _parse_int_env("RATE_LIMIT_MAX_REQUESTS", 100)
    return max_requests, window_ms


def get_access_check_timeout_seconds() -> float:
    """Client-side timeout for gate calls to /api/verify-access."""
    return _parse_float_env("ACCESS_CHECK_TIMEOUT_SECONDS", 10.0)


def get_frontend_origins() -> list[str]:
    """CORS allow-list: configured frontends plus the local static server."""
    origins = [
        (os.getenv("FRONTEND_URL_1") or "").strip(),
        (os.getenv("FRONTEND_URL_2") or "").strip(),
        "http://127.0.0.1:5500",
        "http://localhost:5500",
    ]
    return [o for o in origins if o]


def get_database_dsn() -> str | None:
    """DSN for the entitlement store; None selects the in-memory store."""
    for name in ("CONTENT_ACCESS_DATABASE_URL", "DATABASE_URL"):
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


__all__ = [
    "SIGNED_URL_TTL_HOURS_DEFAULT",
    "SIGNED_URL_TTL_HOURS_MAX",
    "get_environment",
    "is_prod_like",
    "get_signed_url_secret",
    "get_signed_url_ttl_hours",
    "get_rate_limit",
    "get_access_check_timeout_seconds",
    "get_frontend_origins",
    "get_database_dsn",
]
