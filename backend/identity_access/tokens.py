"""
Bearer token verification for the identity_access bounded context.

Why: Keep validation of Supabase access tokens outside the web adapter so we
can unit test it independently and swap the strategy per deployment.

Strategies:
- Local: when SUPABASE_JWT_SECRET is configured, the HS256 signature, audience
  (`authenticated`) and temporal claims are validated in-process.
- Remote: otherwise the token is sent to `GET {SUPABASE_URL}/auth/v1/user`,
  which is what `supabase.auth.getUser(token)` does.

Security: Failure reasons are exposed as short codes for logging only; the
web layer maps every failure onto the same generic 401 response.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict
import os
import time

import requests
from jose import jwt
from jose.exceptions import JOSEError

from .domain import AuthenticatedUser


class AccessTokenVerificationError(Exception):
    """Raised when the bearer token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers
SUPABASE_AUDIENCE = "authenticated"


@dataclass(frozen=True)
class SupabaseAuthConfig:
    url: str
    api_key: str
    jwt_secret: str | None = None
    timeout_seconds: float = 5.0

    @property
    def user_endpoint(self) -> str:
        return f"{self.url.rstrip('/')}/auth/v1/user"


def load_auth_config() -> SupabaseAuthConfig:
    url = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY") or "").strip()
    secret = (os.getenv("SUPABASE_JWT_SECRET") or "").strip() or None
    return SupabaseAuthConfig(url=url, api_key=key, jwt_secret=secret)


def verify_access_token(*, token: str, cfg: SupabaseAuthConfig | None = None) -> AuthenticatedUser:
    """Validate a Supabase access token and return the caller identity.

    Raises
    ------
    AccessTokenVerificationError:
        When the token is missing, malformed, expired, or rejected upstream.
    """
    token = (token or "").strip()
    if not token:
        raise AccessTokenVerificationError("missing_token")
    cfg = cfg or load_auth_config()
    if cfg.jwt_secret:
        return _verify_locally(token, cfg.jwt_secret)
    return _verify_remotely(token, cfg)


def _verify_locally(token: str, secret: str) -> AuthenticatedUser:
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=SUPABASE_AUDIENCE,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
            },
        )
    except JOSEError as exc:
        raise AccessTokenVerificationError("invalid_token") from exc

    _validate_temporal_claims(claims)
    sub = claims.get("sub")
    if not isinstance(sub, str) or not sub:
        raise AccessTokenVerificationError("missing_sub")
    email = claims.get("email")
    return AuthenticatedUser(sub=sub, email=email if isinstance(email, str) else None)


def _verify_remotely(token: str, cfg: SupabaseAuthConfig) -> AuthenticatedUser:
    if not cfg.url or not cfg.api_key:
        raise AccessTokenVerificationError("auth_not_configured")
    headers = {"Authorization": f"Bearer {token}", "apikey": cfg.api_key}
    try:
        resp = requests.get(cfg.user_endpoint, headers=headers, timeout=cfg.timeout_seconds)
    except requests.RequestException as exc:
        raise AccessTokenVerificationError("auth_unreachable") from exc
    if resp.status_code != 200:
        raise AccessTokenVerificationError("invalid_token")
    try:
        data = resp.json()
    except ValueError as exc:
        raise AccessTokenVerificationError("invalid_user_payload") from exc
    if not isinstance(data, dict):
        raise AccessTokenVerificationError("invalid_user_payload")
    # Older GoTrue versions wrap the user in {"user": {...}}
    user = data.get("user") if isinstance(data.get("user"), dict) else data
    sub = user.get("id")
    if not isinstance(sub, str) or not sub:
        raise AccessTokenVerificationError("missing_sub")
    email = user.get("email")
    return AuthenticatedUser(sub=sub, email=email if isinstance(email, str) else None)


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise AccessTokenVerificationError("invalid_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise AccessTokenVerificationError("token_expired")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)):
        if iat - MAX_CLOCK_SKEW_SECONDS > now:
            raise AccessTokenVerificationError("invalid_token")

    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - MAX_CLOCK_SKEW_SECONDS > now:
        raise AccessTokenVerificationError("invalid_token")
