"""
Content-access API routes: access checks, signed capabilities, activation.

Why:
    The browser must never decide entitlement itself. These endpoints expose
    the server-authoritative access checker, mint capabilities only for
    callers who pass it in the same request, and verify capabilities with
    subject binding before protected media is served.

Permissions:
    Every route requires a verified bearer token (enforced by the auth
    middleware in `main`, re-checked here via `current_user`).

Security:
    - Denials never say why; "content not found" and "not entitled" both
      produce `hasAccess: false` / 403.
    - Store failures are logged and treated as deny.
    - Responses are `Cache-Control: private, no-store`.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Literal, Optional, Union

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field, StrictInt, StrictStr

from backend.content_access.checker import AccessChecker
from backend.content_access.config import get_database_dsn, get_frontend_origins
from backend.content_access.domain import SECTION, normalize_id
from backend.content_access.gate import safe_next_url
from backend.content_access.ports import EntitlementStore
from backend.content_access.repo_memory import InMemoryEntitlementStore
from backend.content_access.signed_urls import issue_capability, parse_capability, verify_capability

from ..auth_utils import current_user
from ..errors import AuthorizationError, UpstreamError, ValidationError, private_json

logger = logging.getLogger("manara.web.content_access")

content_access_router = APIRouter(tags=["ContentAccess"])

ContentIdentifier = Union[StrictInt, StrictStr]


# --- Store wiring ---------------------------------------------------------------

try:  # late import to avoid hard dependency during unit tests
    from backend.content_access.repo_db import DBEntitlementRepo
except Exception as exc:  # pragma: no cover - import failures in dev/test envs
    DBEntitlementRepo = None  # type: ignore
    _DB_REPO_IMPORT_ERROR = exc
else:
    _DB_REPO_IMPORT_ERROR = None


def _build_default_store() -> EntitlementStore:
    """Prefer the Postgres store when a DSN is configured; else in-memory."""
    dsn = get_database_dsn()
    if not dsn:
        return InMemoryEntitlementStore()
    if DBEntitlementRepo is None:
        logger.warning("Entitlement repo import failed: %s", _DB_REPO_IMPORT_ERROR)
        return InMemoryEntitlementStore()
    try:
        return DBEntitlementRepo(dsn)
    except Exception as exc:  # pragma: no cover - exercised when psycopg is missing
        logger.warning("Entitlement repo unavailable (%s); using in-memory fallback", exc.__class__.__name__)
        return InMemoryEntitlementStore()


_CHECKER: AccessChecker | None = None


def get_checker() -> AccessChecker:
    global _CHECKER
    if _CHECKER is None:
        _CHECKER = AccessChecker(_build_default_store())
    return _CHECKER


def set_store(store: EntitlementStore | None) -> None:
    """Swap the entitlement store (tests, alternative wiring); None rebuilds lazily."""
    global _CHECKER
    _CHECKER = AccessChecker(store) if store is not None else None


# --- Request models -------------------------------------------------------------


class VerifyAccessRequest(BaseModel):
    sectionId: Optional[ContentIdentifier] = None
    contentType: Literal["section", "video", "quiz", "file"]
    contentId: Optional[ContentIdentifier] = None


class GenerateSignedUrlRequest(BaseModel):
    contentId: ContentIdentifier
    contentType: Literal["video", "quiz", "file"]


class VerifySignedUrlRequest(BaseModel):
    signedParams: Dict[str, Any]


class ActivateSectionRequest(BaseModel):
    sectionId: ContentIdentifier
    code: str = Field(min_length=1, max_length=128)
    next: Optional[str] = None


# --- Routes ---------------------------------------------------------------------


@content_access_router.post("/api/verify-access")
async def verify_access(request: Request, payload: VerifyAccessRequest):
    """Return `{hasAccess}` for a section or a content item.

    Validation:
        - `contentType` in section, video, quiz, file
        - `sectionId` (or `contentId`) required for sections, `contentId` otherwise
    """
    user = current_user(request)
    if payload.contentType == SECTION:
        target = normalize_id(payload.sectionId) or normalize_id(payload.contentId)
        if target is None:
            raise ValidationError("sectionId", "required for contentType=section")
    else:
        target = normalize_id(payload.contentId)
        if target is None:
            raise ValidationError("contentId", f"required for contentType={payload.contentType}")
    status = get_checker().content_status(user.sub, payload.contentType, target)
    logger.info(
        "verify-access sub_tail=%s type=%s granted=%s reason=%s",
        user.sub[-6:],
        payload.contentType,
        status.has_access,
        status.reason,
    )
    return private_json({"hasAccess": status.has_access})


@content_access_router.post("/api/generate-signed-url")
async def generate_signed_url(request: Request, payload: GenerateSignedUrlRequest):
    """Check access and mint a capability in the same request.

    Permissions:
        Caller must pass the access checker for exactly this content item;
        otherwise 403.
    """
    user = current_user(request)
    content_id = normalize_id(payload.contentId)
    if content_id is None:
        raise ValidationError("contentId", "required")
    if not get_checker().check_access(user.sub, payload.contentType, content_id):
        raise AuthorizationError()
    try:
        grant = issue_capability(content_id, payload.contentType, user.sub)
    except ValueError:
        raise ValidationError("contentId", "unsupported identifier")
    except RuntimeError as exc:
        raise UpstreamError() from exc
    return private_json(
        {
            "success": True,
            "signedParams": grant.capability.to_params(),
            "expiresAt": grant.expires_at,
        }
    )


@content_access_router.post("/api/verify-signed-url")
async def verify_signed_url(request: Request, payload: VerifySignedUrlRequest):
    """Verify integrity, expiry and subject binding of a capability.

    Errors:
        400 when fields are missing, 403 on bad signature, expiry, or a
        capability issued to a different user.
    """
    user = current_user(request)
    capability = parse_capability(payload.signedParams)
    if capability is None:
        raise ValidationError("signedParams", "contentId, contentType, userId, expires and signature are required")
    try:
        valid = verify_capability(capability)
    except RuntimeError as exc:
        raise UpstreamError() from exc
    if not valid:
        raise AuthorizationError("رابط غير صالح أو منتهي الصلاحية.")
    if capability.user_id != user.sub:
        logger.warning("signed url subject mismatch sub_tail=%s", user.sub[-6:])
        raise AuthorizationError("هذا الرابط غير مخصص لك.")
    return private_json({"valid": True})


@content_access_router.post("/api/section-access/activate")
async def activate_section(request: Request, payload: ActivateSectionRequest):
    """Redeem an activation code for a section and echo a safe return target."""
    user = current_user(request)
    section_id = normalize_id(payload.sectionId)
    code = payload.code.strip()
    if section_id is None:
        raise ValidationError("sectionId", "required")
    if not code:
        raise ValidationError("code", "required")
    try:
        result = get_checker().store.activate_section_access(user_id=user.sub, section_id=section_id, code=code)
    except Exception as exc:
        logger.warning("activation failed sub_tail=%s section=%s err=%s", user.sub[-6:], section_id, exc.__class__.__name__)
        raise UpstreamError("تعذر تفعيل الكود حالياً") from exc
    next_url = safe_next_url(payload.next, allowed_origins=get_frontend_origins()) if result.success else None
    return private_json({"success": result.success, "message": result.message, "next": next_url})


@content_access_router.get("/api/section-access")
async def list_section_access(request: Request):
    """List the caller's entitled sections (id + activation timestamp)."""
    user = current_user(request)
    try:
        items = get_checker().store.list_section_access(user_id=user.sub)
    except Exception as exc:
        logger.warning("section access listing failed sub_tail=%s err=%s", user.sub[-6:], exc.__class__.__name__)
        raise UpstreamError() from exc
    return private_json(
        {"sections": [{"sectionId": item.section_id, "activatedAt": item.activated_at} for item in items]}
    )


__all__ = ["content_access_router", "get_checker", "set_store"]
