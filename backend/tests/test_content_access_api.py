"""
Content-access API contract: authentication, validation, access checks,
signed URL issuance/verification, activation and entitlement listing.
"""
from __future__ import annotations

import pytest
import httpx
from httpx import ASGITransport

from backend.web import main
from backend.web.routes import content_access as routes

from conftest import ADMIN_ID, OTHER_STUDENT_ID, STUDENT_ID, auth_headers, make_token


pytestmark = pytest.mark.anyio("asyncio")


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


def _assert_private(resp: httpx.Response) -> None:
    cc = resp.headers.get("Cache-Control", "")
    assert "private" in cc and "no-store" in cc


# --- Authentication -------------------------------------------------------------


@pytest.mark.parametrize(
    "path",
    ["/api/verify-access", "/api/generate-signed-url", "/api/verify-signed-url", "/api/section-access/activate"],
)
async def test_missing_token_is_401(path: str):
    async with _client() as c:
        r = await c.post(path, json={})
    assert r.status_code == 401
    assert r.json()["error"] == "unauthenticated"
    _assert_private(r)


async def test_listing_without_token_is_401():
    async with _client() as c:
        r = await c.get("/api/section-access")
    assert r.status_code == 401


@pytest.mark.parametrize(
    "header",
    [
        "Bearer not-a-jwt",
        "Basic dXNlcjpwYXNz",
        f"Bearer {make_token(STUDENT_ID, secret='some-other-secret-value')}",
        f"Bearer {make_token(STUDENT_ID, ttl=-3600)}",
        f"Bearer {make_token(STUDENT_ID, aud='anon')}",
    ],
)
async def test_invalid_token_is_401(header: str):
    async with _client() as c:
        r = await c.post(
            "/api/verify-access",
            json={"contentType": "section", "sectionId": "8"},
            headers={"Authorization": header},
        )
    assert r.status_code == 401
    assert r.json()["error"] == "unauthenticated"


async def test_lowercase_bearer_scheme_is_accepted():
    token = make_token(STUDENT_ID)
    async with _client() as c:
        r = await c.post(
            "/api/verify-access",
            json={"contentType": "section", "sectionId": "8"},
            headers={"Authorization": f"bearer {token}"},
        )
    assert r.status_code == 200


async def test_health_is_public():
    async with _client() as c:
        r = await c.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers.get("X-Content-Type-Options") == "nosniff"
    assert r.headers.get("X-Frame-Options") == "DENY"


async def test_unknown_route_is_json_404():
    async with _client() as c:
        r = await c.get("/nope")
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"


async def test_wrong_method_is_json_405():
    from backend.web.errors import MSG_METHOD_NOT_ALLOWED, MSG_NOT_FOUND

    async with _client() as c:
        r = await c.delete("/health")
    assert r.status_code == 405
    body = r.json()
    assert body["error"] == "method_not_allowed"
    assert body["message"] == MSG_METHOD_NOT_ALLOWED
    assert body["message"] != MSG_NOT_FOUND


async def test_rejected_token_is_logged_under_web_logger(caplog: pytest.LogCaptureFixture):
    caplog.set_level("WARNING", logger="manara.web")
    async with _client() as c:
        r = await c.post(
            "/api/verify-access",
            json={"contentType": "section", "sectionId": "8"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
    assert r.status_code == 401
    assert any(rec.name == "manara.web" and "Bearer token" in rec.getMessage() for rec in caplog.records)


# --- /api/verify-access ---------------------------------------------------------


async def test_verify_access_denies_paid_section():
    async with _client() as c:
        r = await c.post("/api/verify-access", json={"contentType": "section", "sectionId": "7"}, headers=auth_headers())
    assert r.status_code == 200
    assert r.json() == {"hasAccess": False}
    _assert_private(r)


async def test_verify_access_grants_after_entitlement():
    routes.get_checker().store.grant(STUDENT_ID, "7")
    async with _client() as c:
        section = await c.post("/api/verify-access", json={"contentType": "section", "sectionId": 7}, headers=auth_headers())
        video = await c.post("/api/verify-access", json={"contentType": "video", "contentId": 42}, headers=auth_headers())
    assert section.json() == {"hasAccess": True}
    assert video.json() == {"hasAccess": True}


async def test_verify_access_free_and_admin():
    async with _client() as c:
        free = await c.post("/api/verify-access", json={"contentType": "video", "contentId": "43"}, headers=auth_headers())
        admin = await c.post(
            "/api/verify-access", json={"contentType": "quiz", "contentId": "5"}, headers=auth_headers(ADMIN_ID)
        )
    assert free.json() == {"hasAccess": True}
    assert admin.json() == {"hasAccess": True}


async def test_verify_access_unknown_content_is_plain_deny():
    async with _client() as c:
        r = await c.post("/api/verify-access", json={"contentType": "file", "contentId": "404"}, headers=auth_headers())
    assert r.status_code == 200
    assert r.json() == {"hasAccess": False}


async def test_verify_access_section_accepts_content_id_fallback():
    async with _client() as c:
        r = await c.post("/api/verify-access", json={"contentType": "section", "contentId": "8"}, headers=auth_headers())
    assert r.json() == {"hasAccess": True}


@pytest.mark.parametrize(
    "payload,field",
    [
        ({"contentType": "section"}, "sectionId"),
        ({"contentType": "video"}, "contentId"),
        ({"contentType": "video", "contentId": "  "}, "contentId"),
    ],
)
async def test_verify_access_missing_ids_is_400(payload: dict, field: str):
    async with _client() as c:
        r = await c.post("/api/verify-access", json=payload, headers=auth_headers())
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "bad_request"
    assert body["detail"][0]["field"] == field


@pytest.mark.parametrize(
    "payload",
    [
        {"contentType": "lesson", "contentId": "1"},
        {"contentId": "1"},
        {"contentType": "video", "contentId": 1.5},
        {"contentType": "video", "contentId": True},
    ],
)
async def test_verify_access_schema_violations_are_400(payload: dict):
    async with _client() as c:
        r = await c.post("/api/verify-access", json=payload, headers=auth_headers())
    assert r.status_code == 400
    assert r.json()["error"] == "bad_request"
    _assert_private(r)


# --- /api/generate-signed-url ---------------------------------------------------


async def test_generate_signed_url_forbidden_without_access():
    async with _client() as c:
        r = await c.post(
            "/api/generate-signed-url", json={"contentId": "42", "contentType": "video"}, headers=auth_headers()
        )
    assert r.status_code == 403
    assert r.json()["error"] == "forbidden"
    assert "signedParams" not in r.json()


async def test_generate_signed_url_for_entitled_user():
    routes.get_checker().store.grant(STUDENT_ID, "7")
    async with _client() as c:
        r = await c.post(
            "/api/generate-signed-url", json={"contentId": 42, "contentType": "video"}, headers=auth_headers()
        )
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    params = body["signedParams"]
    assert params["contentId"] == "42"
    assert params["contentType"] == "video"
    assert params["userId"] == STUDENT_ID
    assert isinstance(params["expires"], int)
    assert len(params["signature"]) == 64
    assert body["expiresAt"].endswith("Z")
    _assert_private(r)


async def test_generate_signed_url_rejects_section_type():
    async with _client() as c:
        r = await c.post(
            "/api/generate-signed-url", json={"contentId": "7", "contentType": "section"}, headers=auth_headers()
        )
    assert r.status_code == 400


async def test_generate_signed_url_for_unknown_content_is_403():
    async with _client() as c:
        r = await c.post(
            "/api/generate-signed-url", json={"contentId": "999", "contentType": "quiz"}, headers=auth_headers(ADMIN_ID)
        )
    assert r.status_code == 403


# --- /api/verify-signed-url -----------------------------------------------------


async def _issue(c: httpx.AsyncClient, sub: str = STUDENT_ID) -> dict:
    r = await c.post("/api/generate-signed-url", json={"contentId": "43", "contentType": "video"}, headers=auth_headers(sub))
    assert r.status_code == 200
    return r.json()["signedParams"]


async def test_verify_signed_url_round_trip():
    async with _client() as c:
        params = await _issue(c)
        r = await c.post("/api/verify-signed-url", json={"signedParams": params}, headers=auth_headers())
    assert r.status_code == 200
    assert r.json() == {"valid": True}
    _assert_private(r)


async def test_verify_signed_url_tampered_is_403():
    async with _client() as c:
        params = await _issue(c)
        params["contentId"] = "42"
        r = await c.post("/api/verify-signed-url", json={"signedParams": params}, headers=auth_headers())
    assert r.status_code == 403
    assert r.json()["error"] == "forbidden"


async def test_verify_signed_url_expired_is_403():
    async with _client() as c:
        params = await _issue(c)
        params["expires"] = 1_000
        r = await c.post("/api/verify-signed-url", json={"signedParams": params}, headers=auth_headers())
    assert r.status_code == 403


async def test_verify_signed_url_is_bound_to_the_caller():
    async with _client() as c:
        params = await _issue(c, sub=STUDENT_ID)
        r = await c.post("/api/verify-signed-url", json={"signedParams": params}, headers=auth_headers(OTHER_STUDENT_ID))
    assert r.status_code == 403
    assert r.json()["error"] == "forbidden"


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"signedParams": {}},
        {"signedParams": {"contentId": "1", "contentType": "video", "userId": STUDENT_ID, "expires": 1}},
        {"signedParams": "not-an-object"},
    ],
)
async def test_verify_signed_url_missing_fields_is_400(payload: dict):
    async with _client() as c:
        r = await c.post("/api/verify-signed-url", json=payload, headers=auth_headers())
    assert r.status_code == 400
    assert r.json()["error"] == "bad_request"


# --- Activation and listing -----------------------------------------------------


async def test_activation_unlocks_section_and_keeps_safe_next():
    async with _client() as c:
        r = await c.post(
            "/api/section-access/activate",
            json={"sectionId": "7", "code": " CODE-7 ", "next": "video.html?id=42"},
            headers=auth_headers(),
        )
        check = await c.post("/api/verify-access", json={"contentType": "video", "contentId": "42"}, headers=auth_headers())
        listing = await c.get("/api/section-access", headers=auth_headers())
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["next"] == "video.html?id=42"
    assert check.json() == {"hasAccess": True}
    sections = listing.json()["sections"]
    assert [s["sectionId"] for s in sections] == ["7"]
    assert sections[0]["activatedAt"]
    _assert_private(listing)


async def test_activation_drops_offsite_next():
    async with _client() as c:
        r = await c.post(
            "/api/section-access/activate",
            json={"sectionId": "7", "code": "CODE-7", "next": "https://evil.example/steal"},
            headers=auth_headers(),
        )
    assert r.json()["success"] is True
    assert r.json()["next"] is None


async def test_activation_with_wrong_code_fails_without_next():
    async with _client() as c:
        r = await c.post(
            "/api/section-access/activate",
            json={"sectionId": "7", "code": "WRONG", "next": "video.html?id=42"},
            headers=auth_headers(),
        )
    body = r.json()
    assert r.status_code == 200
    assert body["success"] is False
    assert body["next"] is None


async def test_activation_code_is_single_use():
    async with _client() as c:
        first = await c.post(
            "/api/section-access/activate", json={"sectionId": "7", "code": "CODE-7"}, headers=auth_headers()
        )
        second = await c.post(
            "/api/section-access/activate",
            json={"sectionId": "7", "code": "CODE-7"},
            headers=auth_headers(OTHER_STUDENT_ID),
        )
    assert first.json()["success"] is True
    assert second.json()["success"] is False


async def test_activation_blank_code_is_400():
    async with _client() as c:
        r = await c.post("/api/section-access/activate", json={"sectionId": "7", "code": "   "}, headers=auth_headers())
    assert r.status_code == 400


async def test_activation_store_failure_is_500():
    class _Broken:
        def activate_section_access(self, **kwargs):
            raise ConnectionError("db down")

    routes.set_store(_Broken())  # type: ignore[arg-type]
    async with _client() as c:
        r = await c.post("/api/section-access/activate", json={"sectionId": "7", "code": "X"}, headers=auth_headers())
    assert r.status_code == 500
    assert r.json()["error"] == "internal_error"
    assert "db down" not in r.text


async def test_listing_is_empty_for_new_user():
    async with _client() as c:
        r = await c.get("/api/section-access", headers=auth_headers(OTHER_STUDENT_ID))
    assert r.status_code == 200
    assert r.json() == {"sections": []}


# --- Rate limiting --------------------------------------------------------------


async def test_rate_limit_returns_429_after_budget(monkeypatch: pytest.MonkeyPatch):
    from backend.web.rate_limit import build_limiter

    monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "2")
    monkeypatch.setenv("RATE_LIMIT_WINDOW_MS", "60000")
    limiter = build_limiter()
    monkeypatch.setattr(main.app.state, "limiter", limiter)
    async with _client() as c:
        codes = [(await c.get("/health")).status_code for _ in range(3)]
    assert codes == [200, 200, 429]
