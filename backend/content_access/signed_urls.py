"""
HMAC-signed, time-boxed capabilities for protected content.

Why:
    After the access checker has granted access, the gateway hands the client
    a capability it can replay before protected media is served. Validity is
    recomputed from the HMAC and the embedded expiry; nothing is stored.

Format:
    signature = hex(HMAC-SHA256(secret, "contentId:contentType:userId:expires"))
    `expires` is epoch milliseconds. Fields must not contain ":" so the
    canonical string stays unambiguous.

Security:
    - Signatures are compared with `hmac.compare_digest` on bytes; length
      mismatches fail the comparison without a separate early return.
    - A capability stays valid through its exact expiry instant.
    - Subject binding (capability userId == authenticated caller) is the
      caller's job; `verify_capability` only proves integrity and freshness.
    - Revocation is only possible by rotating SIGNED_URL_SECRET.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping
import hashlib
import hmac
import time

from .config import get_signed_url_secret, get_signed_url_ttl_hours
from .domain import SIGNABLE_TYPES, SignedCapability, SignedGrant, normalize_id

DELIMITER = ":"
MS_PER_HOUR = 60 * 60 * 1000


@dataclass(frozen=True, slots=True)
class SignedUrlConfig:
    """Process-wide signing settings, fixed at startup."""

    secret: str
    ttl_hours: int = 2

    @property
    def ttl_ms(self) -> int:
        return self.ttl_hours * MS_PER_HOUR

    @classmethod
    def from_env(cls) -> "SignedUrlConfig":
        return cls(secret=get_signed_url_secret(), ttl_hours=get_signed_url_ttl_hours())


_CONFIG: SignedUrlConfig | None = None


def get_config() -> SignedUrlConfig:
    """Return the cached config, loading it from the environment on first use."""
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = SignedUrlConfig.from_env()
    return _CONFIG


def reset_config(config: SignedUrlConfig | None = None) -> None:
    """Replace (or clear) the cached config; used by tests and the CLI."""
    global _CONFIG
    _CONFIG = config


def now_ms() -> int:
    return int(time.time() * 1000)


def canonical_string(content_id: str, content_type: str, user_id: str, expires: int | str) -> str:
    return DELIMITER.join((content_id, content_type, user_id, str(expires)))


def compute_signature(secret: str, canonical: str) -> str:
    return hmac.new(secret.encode("utf-8"), canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def format_expires_at(expires_ms: int) -> str:
    """Render epoch milliseconds as ISO-8601 UTC with millisecond precision."""
    dt = datetime.fromtimestamp(expires_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def issue_capability(
    content_id: object,
    content_type: str,
    user_id: object,
    *,
    config: SignedUrlConfig | None = None,
    now: int | None = None,
) -> SignedGrant:
    """Mint a capability for a caller whose access was just verified.

    Performs no entitlement check. Raises ValueError on unsupported content
    types, empty ids, or ids containing the delimiter.
    """
    if content_type not in SIGNABLE_TYPES:
        raise ValueError(f"unsupported content type: {content_type!r}")
    cid = normalize_id(content_id)
    uid = normalize_id(user_id)
    if cid is None or uid is None:
        raise ValueError("content_id and user_id are required")
    if DELIMITER in cid or DELIMITER in uid:
        raise ValueError("ids must not contain the signature delimiter")

    cfg = config or get_config()
    expires = (now if now is not None else now_ms()) + cfg.ttl_ms
    signature = compute_signature(cfg.secret, canonical_string(cid, content_type, uid, expires))
    capability = SignedCapability(
        content_id=cid,
        content_type=content_type,
        user_id=uid,
        expires=expires,
        signature=signature,
    )
    return SignedGrant(capability=capability, expires_at=format_expires_at(expires))


def parse_capability(params: Mapping[str, Any] | None) -> SignedCapability | None:
    """Build a capability from wire params; None when a field is missing or malformed."""
    if not isinstance(params, Mapping):
        return None
    content_id = normalize_id(params.get("contentId"))
    content_type = normalize_id(params.get("contentType"))
    user_id = normalize_id(params.get("userId"))
    signature = params.get("signature")
    raw_expires = params.get("expires")
    if not content_id or not content_type or not user_id:
        return None
    if not isinstance(signature, str) or not signature:
        return None
    if raw_expires is None or isinstance(raw_expires, (bool, float)):
        return None
    try:
        expires = int(str(raw_expires).strip())
    except ValueError:
        return None
    return SignedCapability(
        content_id=content_id,
        content_type=content_type,
        user_id=user_id,
        expires=expires,
        signature=signature,
    )


def verify_capability(
    capability: SignedCapability | Mapping[str, Any] | None,
    *,
    config: SignedUrlConfig | None = None,
    now: int | None = None,
) -> bool:
    """Return True when the capability is complete, unexpired and correctly signed."""
    cap = capability if isinstance(capability, SignedCapability) else parse_capability(capability)
    if cap is None:
        return False
    current = now if now is not None else now_ms()
    if current > cap.expires:
        return False
    if any(DELIMITER in part for part in (cap.content_id, cap.content_type, cap.user_id)):
        return False
    cfg = config or get_config()
    expected = compute_signature(cfg.secret, canonical_string(cap.content_id, cap.content_type, cap.user_id, cap.expires))
    try:
        provided = cap.signature.encode("ascii")
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(provided, expected.encode("ascii"))


__all__ = [
    "SignedUrlConfig",
    "get_config",
    "reset_config",
    "now_ms",
    "canonical_string",
    "compute_signature",
    "format_expires_at",
    "issue_capability",
    "parse_capability",
    "verify_capability",
]
