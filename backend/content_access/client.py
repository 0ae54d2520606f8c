"""
HTTP client for the content-access gateway.

Why:
    Frontends (and the ContentGate) must never decide access themselves. This
    client wraps the gateway endpoints and authenticates every call with the
    current session's bearer token.

Failure semantics:
    Every access/verification helper is fail-closed: no session, transport
    errors, timeouts, non-200 responses and malformed bodies all yield False.
    `generate_signed_url` raises ContentAccessClientError instead, since the
    caller cannot continue without a capability.
"""
from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from .config import get_access_check_timeout_seconds
from .domain import FILE, QUIZ, SECTION, VIDEO

logger = logging.getLogger("manara.content_access.client")

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class ContentAccessClientError(Exception):
    """Raised when a signed URL cannot be obtained."""

    def __init__(self, code: str, message: str | None = None):
        super().__init__(message or code)
        self.code = code
        self.message = message


class ContentAccessClient:
    """Async client for /api/verify-access, /api/generate-signed-url and /api/verify-signed-url.

    Parameters
    ----------
    base_url:
        Gateway origin, e.g. ``https://api.example.com``.
    token_provider:
        Returns the current session's access token, or None when signed out.
        May be sync or async.
    timeout:
        Per-request timeout in seconds (defaults to ACCESS_CHECK_TIMEOUT_SECONDS).
    transport:
        Optional httpx transport (tests use ``httpx.ASGITransport``).
    """

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._timeout = timeout if timeout is not None else get_access_check_timeout_seconds()
        self._transport = transport

    async def _token(self) -> str | None:
        try:
            token = self._token_provider()
            if inspect.isawaitable(token):
                token = await token
        except Exception as exc:
            logger.warning("session lookup failed: %s", exc.__class__.__name__)
            return None
        return token or None

    async def _post(self, path: str, token: str, payload: Dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        async with httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=False,
        ) as client:
            return await client.post(path, json=payload, headers=headers)

    # --- Access checks ------------------------------------------------------------

    async def verify_access(
        self,
        content_type: str,
        *,
        content_id: object = None,
        section_id: object = None,
    ) -> bool:
        token = await self._token()
        if not token:
            return False
        payload: Dict[str, Any] = {"contentType": content_type}
        if section_id is not None:
            payload["sectionId"] = section_id
        if content_id is not None:
            payload["contentId"] = content_id
        try:
            resp = await self._post("/api/verify-access", token, payload)
        except httpx.HTTPError as exc:
            logger.warning("verify-access failed type=%s err=%s", content_type, exc.__class__.__name__)
            return False
        if resp.status_code != 200:
            return False
        try:
            data = resp.json()
        except ValueError:
            return False
        return isinstance(data, dict) and data.get("hasAccess") is True

    async def verify_section_access(self, section_id: object) -> bool:
        return await self.verify_access(SECTION, section_id=section_id)

    async def verify_video_access(self, video_id: object) -> bool:
        return await self.verify_access(VIDEO, content_id=video_id)

    async def verify_quiz_access(self, quiz_id: object) -> bool:
        return await self.verify_access(QUIZ, content_id=quiz_id)

    async def verify_file_access(self, file_id: object) -> bool:
        return await self.verify_access(FILE, content_id=file_id)

    # --- Signed URLs --------------------------------------------------------------

    async def generate_signed_url(self, content_id: object, content_type: str) -> Dict[str, Any]:
        """Return ``{"success", "signedParams", "expiresAt"}`` or raise."""
        token = await self._token()
        if not token:
            raise ContentAccessClientError("unauthenticated", "يجب تسجيل الدخول أولاً")
        try:
            resp = await self._post(
                "/api/generate-signed-url", token, {"contentId": content_id, "contentType": content_type}
            )
        except httpx.HTTPError as exc:
            raise ContentAccessClientError("network_error") from exc
        try:
            data = resp.json()
        except ValueError:
            data = None
        if resp.status_code != 200 or not isinstance(data, dict):
            message = data.get("message") if isinstance(data, dict) else None
            code = data.get("error") if isinstance(data, dict) else None
            raise ContentAccessClientError(str(code or f"http_{resp.status_code}"), message or "فشل توليد رابط الوصول")
        return data

    async def verify_signed_url(self, signed_params: Dict[str, Any]) -> bool:
        token = await self._token()
        if not token:
            return False
        try:
            resp = await self._post("/api/verify-signed-url", token, {"signedParams": signed_params})
        except httpx.HTTPError as exc:
            logger.warning("verify-signed-url failed err=%s", exc.__class__.__name__)
            return False
        if resp.status_code != 200:
            return False
        try:
            data = resp.json()
        except ValueError:
            return False
        return isinstance(data, dict) and data.get("valid") is True


__all__ = ["ContentAccessClient", "ContentAccessClientError", "TokenProvider"]
