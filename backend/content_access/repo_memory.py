"""In-memory entitlement store for development and tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Set
import threading

from .domain import CONTENT_TABLES, ActivationResult, SectionEntitlement


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass
class _ActivationCode:
    section_id: str
    max_uses: int = 1
    used_by: Set[str] = field(default_factory=set)


class InMemoryEntitlementStore:
    """Dict-backed EntitlementStore.

    Tables mirror the Postgres schema: `sections` (price), `content` per
    content table (`section_id`), `access` (user, section) -> activated_at,
    `roles` per user, and activation `codes`.
    """

    def __init__(self) -> None:
        self.sections: Dict[str, int] = {}
        self.content: Dict[str, Dict[str, str]] = {table: {} for table in CONTENT_TABLES.values()}
        self.access: Dict[tuple[str, str], str] = {}
        self.roles: Dict[str, str] = {}
        self.codes: Dict[str, _ActivationCode] = {}
        self._lock = threading.Lock()

    # --- Seeding helpers ---------------------------------------------------------

    def add_section(self, section_id: str, *, price: int = 0) -> None:
        self.sections[str(section_id)] = int(price)

    def add_content(self, table: str, content_id: str, *, section_id: str) -> None:
        if table not in self.content:
            raise ValueError(f"unknown content table: {table}")
        self.content[table][str(content_id)] = str(section_id)

    def grant(self, user_id: str, section_id: str, *, activated_at: Optional[str] = None) -> None:
        self.access[(str(user_id), str(section_id))] = activated_at or _now_iso()

    def set_role(self, user_id: str, role: str) -> None:
        self.roles[str(user_id)] = role

    def add_code(self, code: str, *, section_id: str, max_uses: int = 1) -> None:
        self.codes[code] = _ActivationCode(section_id=str(section_id), max_uses=max_uses)

    # --- EntitlementStore --------------------------------------------------------

    def get_content_section_id(self, *, table: str, content_id: str) -> str | None:
        rows = self.content.get(table)
        if rows is None:
            raise LookupError(f"unknown content table: {table}")
        return rows.get(str(content_id))

    def has_section_access(self, *, user_id: str, section_id: str) -> bool:
        return (str(user_id), str(section_id)) in self.access

    def get_section_price(self, *, section_id: str) -> int | None:
        return self.sections.get(str(section_id))

    def get_user_role(self, *, user_id: str) -> str | None:
        return self.roles.get(str(user_id))

    def list_section_access(self, *, user_id: str) -> list[SectionEntitlement]:
        items = [
            SectionEntitlement(section_id=sid, activated_at=ts)
            for (uid, sid), ts in self.access.items()
            if uid == str(user_id)
        ]
        return sorted(items, key=lambda e: (e.activated_at or "", e.section_id))

    def activate_section_access(self, *, user_id: str, section_id: str, code: str) -> ActivationResult:
        with self._lock:
            if (str(user_id), str(section_id)) in self.access:
                return ActivationResult(True, "القسم مفعّل بالفعل")
            entry = self.codes.get(code)
            if entry is None or entry.section_id != str(section_id):
                return ActivationResult(False, "كود التفعيل غير صحيح")
            if len(entry.used_by) >= entry.max_uses:
                return ActivationResult(False, "تم استخدام هذا الكود من قبل")
            entry.used_by.add(str(user_id))
            self.access[(str(user_id), str(section_id))] = _now_iso()
        return ActivationResult(True, "تم تفعيل القسم بنجاح")


__all__ = ["InMemoryEntitlementStore"]
