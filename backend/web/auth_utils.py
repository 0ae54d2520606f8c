"""
Shared authentication utilities for the gateway.

Why:
    Keep bearer-token parsing and caller lookup in one place so the auth
    middleware and every route agree on what "authenticated" means.

Design:
    `bearer_token_from_header` is framework-agnostic and pure. `current_user`
    reads the identity the middleware stored on `request.state` and raises
    AuthenticationError when there is none.
"""

from __future__ import annotations

from fastapi import Request

from backend.identity_access.domain import AuthenticatedUser

from .errors import AuthenticationError


def bearer_token_from_header(value: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header.

    The scheme is matched case-insensitively; anything else yields None.
    """
    if not value:
        return None
    scheme, _, token = value.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def current_user(request: Request) -> AuthenticatedUser:
    user = getattr(request.state, "user", None)
    if not isinstance(user, AuthenticatedUser):
        raise AuthenticationError()
    return user


__all__ = ["bearer_token_from_header", "current_user"]
