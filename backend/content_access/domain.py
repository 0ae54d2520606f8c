"""
Content-access domain terms: content types, capability shape, access status.

Why:
- Keep the mapping from content type to its table in one place so the
  checker, the Postgres store and the HTTP validation cannot drift.
- Keep the wire names of a signed capability (camelCase, as the browser
  client sends them) next to the Python representation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

SECTION = "section"
VIDEO = "video"
QUIZ = "quiz"
FILE = "file"

# Types that live inside a section and resolve their section via `section_id`.
CONTENT_TABLES: Mapping[str, str] = {
    VIDEO: "videos",
    QUIZ: "quizzes",
    FILE: "files",
}
CHECKABLE_TYPES = frozenset({SECTION, *CONTENT_TABLES})
SIGNABLE_TYPES = frozenset(CONTENT_TABLES)

# Reasons reported by AccessChecker.section_status / content_status.
REASON_ADMIN = "admin"
REASON_FREE = "free"
REASON_ENTITLED = "entitled"
REASON_NOT_ENTITLED = "not_entitled"
REASON_NOT_FOUND = "not_found"
REASON_ERROR = "error"


@dataclass(frozen=True, slots=True)
class AccessStatus:
    has_access: bool
    reason: str
    section_id: str | None = None


@dataclass(frozen=True, slots=True)
class SignedCapability:
    """Ephemeral, never persisted. Validity is recomputed from HMAC + expiry."""

    content_id: str
    content_type: str
    user_id: str
    expires: int
    signature: str

    def to_params(self) -> dict[str, Any]:
        return {
            "contentId": self.content_id,
            "contentType": self.content_type,
            "userId": self.user_id,
            "expires": self.expires,
            "signature": self.signature,
        }


@dataclass(frozen=True, slots=True)
class SignedGrant:
    capability: SignedCapability
    expires_at: str  # ISO-8601 UTC, for display


@dataclass(frozen=True, slots=True)
class SectionEntitlement:
    section_id: str
    activated_at: str | None


@dataclass(frozen=True, slots=True)
class ActivationResult:
    success: bool
    message: str


def normalize_id(value: object) -> str | None:
    """Return a trimmed string id, or None for missing/blank/bool values."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


__all__ = [
    "SECTION",
    "VIDEO",
    "QUIZ",
    "FILE",
    "CONTENT_TABLES",
    "CHECKABLE_TYPES",
    "SIGNABLE_TYPES",
    "AccessStatus",
    "SignedCapability",
    "SignedGrant",
    "SectionEntitlement",
    "ActivationResult",
    "normalize_id",
]
