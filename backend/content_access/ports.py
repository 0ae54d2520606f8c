"""
Entitlement store port used by the access checker and the gateway routes.

Keep this small and framework-agnostic so tests can supply simple fakes.
"""
from __future__ import annotations

from typing import Protocol

from .domain import ActivationResult, SectionEntitlement


class EntitlementStore(Protocol):
    """Read side of the platform database plus code activation.

    Intent:
        The store is consulted, never owned, by the access core. Lookups
        return None when a row is missing and raise on infrastructure errors;
        the checker decides how failures map onto access decisions.

    Permissions:
        Implementations run with the service role and must scope every query
        by the user id they are given.
    """

    def get_content_section_id(self, *, table: str, content_id: str) -> str | None: ...

    def has_section_access(self, *, user_id: str, section_id: str) -> bool: ...

    def get_section_price(self, *, section_id: str) -> int | None: ...

    def get_user_role(self, *, user_id: str) -> str | None: ...

    def list_section_access(self, *, user_id: str) -> list[SectionEntitlement]: ...

    def activate_section_access(self, *, user_id: str, section_id: str, code: str) -> ActivationResult: ...


__all__ = ["EntitlementStore"]
