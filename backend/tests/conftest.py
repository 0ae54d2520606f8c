"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
give every test the same deterministic environment: dev mode, local token
verification with a known secret, a fixed signing secret and a freshly
seeded in-memory entitlement store.
"""
import sys
import time
from pathlib import Path

import pytest
from jose import jwt

# Ensure the repository root is importable so `backend.*` resolves.
REPO_ROOT = Path(__file__).resolve().parents[2]
TESTS_DIR = REPO_ROOT / "backend" / "tests"
for p in (str(REPO_ROOT), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

TEST_JWT_SECRET = "test-only-supabase-jwt-secret-0123456789"
TEST_SIGNED_URL_SECRET = "test-only-signed-url-secret-0123456789abcdef"

STUDENT_ID = "11111111-aaaa-4bbb-8ccc-000000000001"
OTHER_STUDENT_ID = "22222222-aaaa-4bbb-8ccc-000000000002"
ADMIN_ID = "33333333-aaaa-4bbb-8ccc-000000000003"


def make_token(sub: str, *, secret: str = TEST_JWT_SECRET, ttl: int = 3600, **claims) -> str:
    """Mint a Supabase-style HS256 access token for tests."""
    now = int(time.time())
    payload = {"sub": sub, "aud": "authenticated", "iat": now, "exp": now + ttl, "role": "authenticated"}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(sub: str = STUDENT_ID) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(sub)}"}


def seeded_store():
    """In-memory store with one paid section, one free section and their content.

    - section 7 costs 30 EGP; video 42, quiz 5 and file 9 live in it
    - section 8 is free; video 43 lives in it
    - STUDENT_ID is entitled to nothing, ADMIN_ID is an admin
    - activation code "CODE-7" unlocks section 7 once
    """
    from backend.content_access.repo_memory import InMemoryEntitlementStore

    store = InMemoryEntitlementStore()
    store.add_section("7", price=30)
    store.add_section("8", price=0)
    store.add_content("videos", "42", section_id="7")
    store.add_content("quizzes", "5", section_id="7")
    store.add_content("files", "9", section_id="7")
    store.add_content("videos", "43", section_id="8")
    store.set_role(STUDENT_ID, "student")
    store.set_role(OTHER_STUDENT_ID, "student")
    store.set_role(ADMIN_ID, "admin")
    store.add_code("CODE-7", section_id="7")
    return store


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _deterministic_env(monkeypatch: pytest.MonkeyPatch):
    """Clear env-driven toggles and pin the secrets used by the suite.

    Why:
        A developer shell may carry MANARA_ENV, a DATABASE_URL or a real
        Supabase project; none of that may leak into unit tests.
    """
    for var in (
        "MANARA_ENV",
        "DATABASE_URL",
        "CONTENT_ACCESS_DATABASE_URL",
        "SIGNED_URL_EXPIRY_HOURS",
        "SUPABASE_URL",
        "SUPABASE_ANON_KEY",
        "FRONTEND_URL_1",
        "FRONTEND_URL_2",
        "RATE_LIMIT_STORAGE_URI",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("SUPABASE_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "TEST_ONLY_NOT_USED")
    monkeypatch.setenv("SIGNED_URL_SECRET", TEST_SIGNED_URL_SECRET)
    yield


@pytest.fixture(autouse=True)
def _reset_content_access_state(_deterministic_env):
    """Reset the signing config cache, the entitlement store and the limiter.

    Why:
        The signing config is cached per process, the store is a module
        singleton and the rate limiter counts across requests; all three would
        otherwise leak between tests in a full run.
    """
    from backend.content_access import signed_urls
    from backend.web import main
    from backend.web.routes import content_access as routes

    signed_urls.reset_config()
    routes.set_store(seeded_store())
    main.limiter.reset()
    yield
    routes.set_store(None)
    signed_urls.reset_config()
