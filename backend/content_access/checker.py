"""
Access checker: decides whether a user may open a section or content item.

Why:
    A content item (video, quiz, file) has no access table of its own; its
    entitlement is derived from the section it belongs to. This module owns
    that one-hop resolution and the section policy so the gateway routes and
    the signed-URL issuance share exactly one decision path.

Policy (server-authoritative, the client gate never re-implements it):
    1. admin role            -> grant
    2. section price == 0    -> grant
    3. section_access row    -> grant
    4. otherwise             -> deny

Failure semantics:
    Fail-closed. A failing admin or price lookup only disables that
    short-circuit; a failing content or entitlement lookup denies. Nothing
    here raises to the caller.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from backend.identity_access.domain import normalize_role

from .domain import (
    CONTENT_TABLES,
    REASON_ADMIN,
    REASON_ENTITLED,
    REASON_ERROR,
    REASON_FREE,
    REASON_NOT_ENTITLED,
    REASON_NOT_FOUND,
    SECTION,
    AccessStatus,
    normalize_id,
)
from .ports import EntitlementStore

logger = logging.getLogger("manara.content_access")

_ERROR_MAX_LENGTH = 256
_SENSITIVE_TOKEN_PATTERN = re.compile(r"(?i)(secret|token|password|key)[-_a-z0-9]*\s*=\s*\S+")


def _sanitize_error_message(value: Optional[str]) -> Optional[str]:
    """Strip secrets and truncate lengthy store errors for safe logging."""
    if not value:
        return None
    collapsed = " ".join(str(value).split())
    if not collapsed:
        return None
    scrubbed = _SENSITIVE_TOKEN_PATTERN.sub("[redacted]", collapsed)
    if len(scrubbed) > _ERROR_MAX_LENGTH:
        scrubbed = scrubbed[: _ERROR_MAX_LENGTH - 3].rstrip() + "..."
    return scrubbed


def _tail(value: str) -> str:
    return value[-6:]


class AccessChecker:
    """Stateless access decisions over an EntitlementStore."""

    def __init__(self, store: EntitlementStore) -> None:
        self._store = store

    @property
    def store(self) -> EntitlementStore:
        return self._store

    # --- Public API ---------------------------------------------------------------

    def check_access(self, user_id: str, content_type: str, content_id: object) -> bool:
        """Return True when `user_id` may access the item; never raises.

        For `content_type == "section"`, `content_id` is the section id.
        """
        return self.content_status(user_id, content_type, content_id).has_access

    def content_status(self, user_id: str, content_type: str, content_id: object) -> AccessStatus:
        uid = normalize_id(user_id)
        cid = normalize_id(content_id)
        if uid is None or cid is None:
            return AccessStatus(False, REASON_NOT_FOUND)
        if content_type == SECTION:
            return self.section_status(uid, cid)
        table = CONTENT_TABLES.get(content_type)
        if table is None:
            return AccessStatus(False, REASON_NOT_FOUND)
        section_id = self.resolve_section_id(content_type, cid)
        if section_id is None:
            return AccessStatus(False, REASON_NOT_FOUND)
        return self.section_status(uid, section_id)

    def resolve_section_id(self, content_type: str, content_id: str) -> str | None:
        """Read the owning section of a content item; None when unknown or on error."""
        table = CONTENT_TABLES.get(content_type)
        if table is None:
            return None
        try:
            section_id = self._store.get_content_section_id(table=table, content_id=content_id)
        except Exception as exc:
            logger.warning(
                "content lookup failed type=%s id_tail=%s err=%s: %s",
                content_type,
                _tail(content_id),
                exc.__class__.__name__,
                _sanitize_error_message(str(exc)),
            )
            return None
        return normalize_id(section_id)

    def section_status(self, user_id: str, section_id: str) -> AccessStatus:
        if self._is_admin(user_id):
            return AccessStatus(True, REASON_ADMIN, section_id)
        if self._is_free(section_id):
            return AccessStatus(True, REASON_FREE, section_id)
        try:
            entitled = self.has_entitlement(user_id, section_id, raise_errors=True)
        except Exception as exc:
            logger.warning(
                "entitlement lookup failed sub_tail=%s section=%s err=%s: %s",
                _tail(user_id),
                section_id,
                exc.__class__.__name__,
                _sanitize_error_message(str(exc)),
            )
            return AccessStatus(False, REASON_ERROR, section_id)
        return AccessStatus(entitled, REASON_ENTITLED if entitled else REASON_NOT_ENTITLED, section_id)

    def has_entitlement(self, user_id: str, section_id: str, *, raise_errors: bool = False) -> bool:
        """Strict check against `section_access` only, without short-circuits."""
        try:
            return bool(self._store.has_section_access(user_id=user_id, section_id=section_id))
        except Exception:
            if raise_errors:
                raise
            logger.warning("entitlement lookup failed sub_tail=%s section=%s", _tail(user_id), section_id)
            return False

    # --- Short-circuits -----------------------------------------------------------

    def _is_admin(self, user_id: str) -> bool:
        try:
            role = self._store.get_user_role(user_id=user_id)
        except Exception as exc:
            logger.warning("role lookup failed sub_tail=%s err=%s", _tail(user_id), exc.__class__.__name__)
            return False
        return role is not None and normalize_role(role) == "admin"

    def _is_free(self, section_id: str) -> bool:
        try:
            price = self._store.get_section_price(section_id=section_id)
        except Exception as exc:
            logger.warning("price lookup failed section=%s err=%s", section_id, exc.__class__.__name__)
            return False
        return price is not None and int(price) == 0


__all__ = ["AccessChecker"]
