"""
Client gate: confirm entitlement before navigating to protected content.

State machine per navigation attempt::

    IDLE -> CHECKING_ACCESS -> GRANTED  (navigate to the destination)
                            -> DENIED   (redirect to the payment page)

DENIED covers a negative answer, a failed or timed-out call, and a missing
session alike. There is no retry; the next click starts a fresh attempt. A
click on a target whose check is still in flight is ignored, so a
double-click never produces two navigations.
"""
from __future__ import annotations

import enum
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional
from urllib.parse import urlencode, urlparse

from .client import ContentAccessClient
from .domain import CHECKABLE_TYPES, SECTION, normalize_id

logger = logging.getLogger("manara.content_access.gate")

PAYMENT_PAGE = "section-payment.html"


class GateState(str, enum.Enum):
    IDLE = "idle"
    CHECKING_ACCESS = "checking_access"
    GRANTED = "granted"
    DENIED = "denied"


@dataclass(frozen=True)
class GateTarget:
    """What the user clicked: the item, its section, and where it lives."""

    content_type: str
    content_id: str | None
    section_id: str | None
    destination: str

    @property
    def key(self) -> tuple[str, str]:
        ident = self.content_id if self.content_type != SECTION else self.section_id
        return (self.content_type, ident or "")


@dataclass(frozen=True)
class GateOutcome:
    state: GateState
    location: str


def build_section_payment_url(section_id: object, next_url: str | None = None, *, page: str = PAYMENT_PAGE) -> str:
    """Return ``section-payment.html?section=<id>[&next=<url>]``."""
    params: list[tuple[str, str]] = []
    sid = normalize_id(section_id)
    if sid is not None:
        params.append(("section", sid))
    if next_url:
        params.append(("next", next_url))
    return f"{page}?{urlencode(params)}" if params else page


def safe_next_url(value: object, *, allowed_origins: Iterable[str] = ()) -> str | None:
    """Accept same-site relative paths and absolute URLs on allowed origins only.

    Rejects scheme-relative (``//host``), backslash tricks, control
    characters and any other absolute URL so `next` cannot become an open
    redirect.
    """
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    if not candidate or len(candidate) > 2048:
        return None
    if any(ord(ch) < 0x20 for ch in candidate) or "\\" in candidate:
        return None
    parsed = urlparse(candidate)
    if not parsed.scheme and not parsed.netloc:
        if candidate.startswith("//"):
            return None
        return candidate
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    origin = f"{parsed.scheme}://{parsed.netloc}".lower()
    allowed = {o.rstrip("/").lower() for o in allowed_origins if o}
    return candidate if origin in allowed else None


class ContentGate:
    """Gate navigation to protected content on the server's access decision.

    `navigate`, when given, is called with the final location (destination
    on GRANTED, payment URL on DENIED); it may be sync or async.
    """

    def __init__(
        self,
        client: ContentAccessClient,
        *,
        navigate: Optional[Callable[[str], Any]] = None,
        payment_page: str = PAYMENT_PAGE,
    ) -> None:
        self._client = client
        self._navigate = navigate
        self._payment_page = payment_page
        # Only attempts still in flight are tracked; finished ones leave no trace.
        self._states: dict[tuple[str, str], GateState] = {}

    def state_of(self, target: GateTarget) -> GateState:
        """State of the attempt in flight for `target`; IDLE once it has finished."""
        return self._states.get(target.key, GateState.IDLE)

    async def open(self, target: GateTarget) -> GateOutcome | None:
        """Run one navigation attempt; None when a check for `target` is in flight."""
        key = target.key
        if key in self._states:
            return None
        self._states[key] = GateState.CHECKING_ACCESS
        try:
            granted = await self._check(target)
            if granted:
                outcome = GateOutcome(GateState.GRANTED, target.destination)
            else:
                outcome = GateOutcome(
                    GateState.DENIED,
                    build_section_payment_url(target.section_id, target.destination, page=self._payment_page),
                )
            self._states[key] = outcome.state
            await self._perform(outcome.location)
            return outcome
        finally:
            self._states.pop(key, None)

    async def _check(self, target: GateTarget) -> bool:
        if target.content_type not in CHECKABLE_TYPES:
            return False
        try:
            if target.content_type == SECTION:
                if target.section_id is None:
                    return False
                return await self._client.verify_section_access(target.section_id)
            if target.content_id is None:
                return False
            return await self._client.verify_access(target.content_type, content_id=target.content_id)
        except Exception as exc:
            logger.warning("access check failed type=%s err=%s", target.content_type, exc.__class__.__name__)
            return False

    async def _perform(self, location: str) -> None:
        if self._navigate is None:
            return
        result = self._navigate(location)
        if inspect.isawaitable(result):
            await result


__all__ = [
    "PAYMENT_PAGE",
    "GateState",
    "GateTarget",
    "GateOutcome",
    "ContentGate",
    "build_section_payment_url",
    "safe_next_url",
]
