"""
Identity domain constants and simple helpers.

Why:
- Centralize allowed roles to avoid drift between tools and web layer.
- Keep the authenticated-caller shape in one place so routes, checker and
  tests agree on it.
"""

from __future__ import annotations

from dataclasses import dataclass

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"student", "admin"})
DEFAULT_ROLE = "student"


@dataclass(frozen=True, slots=True)
class AuthenticatedUser:
    """Caller identity resolved from a verified bearer token.

    `sub` is the auth provider's user id (Supabase `auth.users.id`). The role
    is not part of the token; it is looked up per request.
    """

    sub: str
    email: str | None = None


def normalize_role(value: object) -> str:
    """Map an arbitrary stored role onto ALLOWED_ROLES (unknown -> student)."""
    role = str(value or "").strip().lower()
    return role if role in ALLOWED_ROLES else DEFAULT_ROLE


__all__ = ["ALLOWED_ROLES", "DEFAULT_ROLE", "AuthenticatedUser", "normalize_role"]
