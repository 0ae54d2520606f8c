"""
Configuration and startup security checks for the content-access gateway.

Why: A gateway that signs capabilities must never boot in production with a
guessable secret or without its auth provider. This module provides a single
guard that enforces minimal production safety constraints without burdening
local development.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os

from backend.content_access.config import get_database_dsn, get_environment, is_prod_like

MIN_SECRET_LENGTH = 32


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - SIGNED_URL_SECRET must be set, not a placeholder, and at least 32 chars.
    - Supabase service role key must be set and not a dummy placeholder.
    - SUPABASE_URL must use https.
    - DATABASE_URL must be configured and must not disable TLS.
    """

    env = get_environment()
    if not is_prod_like(env):
        return  # dev/test remain permissive

    # 1) Signing secret
    secret = (os.getenv("SIGNED_URL_SECRET") or "").strip()
    if not secret or secret.upper().startswith(("CHANGE_ME", "DUMMY")):
        raise SystemExit("Refusing to start: SIGNED_URL_SECRET is unset or a placeholder in production.")
    if len(secret) < MIN_SECRET_LENGTH:
        raise SystemExit(
            f"Refusing to start: SIGNED_URL_SECRET must be at least {MIN_SECRET_LENGTH} characters in production."
        )

    # 2) Supabase Service Role key
    srole = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not srole or srole.upper() == "DUMMY_DO_NOT_USE":
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a dummy placeholder in production."
        )

    # 3) Auth provider must be reached over TLS
    supabase_url = (os.getenv("SUPABASE_URL") or "").strip().lower()
    if not supabase_url.startswith("https://"):
        raise SystemExit("Refusing to start: SUPABASE_URL must use https in production.")

    # 4) Entitlement store: required, TLS not disabled
    dsn = get_database_dsn() or ""
    if not dsn:
        raise SystemExit("Refusing to start: DATABASE_URL is required in production (no in-memory store).")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )
