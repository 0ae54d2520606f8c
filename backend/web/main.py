"Manara content-access gateway"
from __future__ import annotations

from functools import partial
import logging
import os

import anyio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from backend.content_access.config import get_frontend_origins, is_prod_like
from backend.identity_access.domain import AuthenticatedUser
from backend.identity_access.tokens import AccessTokenVerificationError, verify_access_token
from backend.web import config as _cfg
from backend.web.auth_utils import bearer_token_from_header
from backend.web.errors import MSG_UNAUTHENTICATED, install_error_handlers, private_json
from backend.web.rate_limit import build_limiter
from backend.web.routes.content_access import content_access_router


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out/opt-in via MANARA_ENABLE_DOTENV (default true
      outside pytest).
    """
    import sys
    # Under pytest, do not load .env – tests provide their own env.
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("MANARA_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    from dotenv import load_dotenv

    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()

# --- App & Settings Setup -------------------------------------------------------

logger = logging.getLogger("manara.web")

app = FastAPI(
    title="Manara content access",
    description="Signed-URL content access control for the Manara learning platform",
    version="1.0.0",
    docs_url=None if is_prod_like() else "/docs",
    redoc_url=None,
)
install_error_handlers(app)
app.include_router(content_access_router)

limiter = build_limiter()
app.state.limiter = limiter

# --- Auth Middleware ------------------------------------------------------------


def _is_protected_path(path: str) -> bool:
    return path.startswith("/api/")


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    """Resolve the bearer token into `request.state.user` for /api/ routes.

    Any failure yields the same generic 401; the specific reason is logged.
    """
    if not _is_protected_path(request.url.path):
        return await call_next(request)

    token = bearer_token_from_header(request.headers.get("authorization"))
    if not token:
        return private_json({"error": "unauthenticated", "message": "الرمز المميز مفقود. يرجى تسجيل الدخول."}, status_code=401)
    try:
        user = await anyio.to_thread.run_sync(partial(verify_access_token, token=token))
    except AccessTokenVerificationError as exc:
        logger.warning("Bearer token rejected: %s", exc.code)
        return private_json({"error": "unauthenticated", "message": MSG_UNAUTHENTICATED}, status_code=401)
    except Exception as exc:
        logger.warning("Bearer token verification failed: %s", exc.__class__.__name__)
        return private_json({"error": "unauthenticated", "message": MSG_UNAUTHENTICATED}, status_code=401)
    if not isinstance(user, AuthenticatedUser):
        return private_json({"error": "unauthenticated", "message": MSG_UNAUTHENTICATED}, status_code=401)

    # Expose minimal, read-only user context for downstream handlers.
    request.state.user = user
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    # JSON-only API: nothing may be framed, sniffed or cached by intermediaries.
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    # Media is embedded cross-origin by the frontend.
    response.headers.setdefault("Cross-Origin-Resource-Policy", "cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    # HSTS: always on (dev = prod)
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# Added last so they wrap everything above: CORS outermost, then rate limiting.
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_frontend_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    return private_json({"status": "ok"})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "backend.web.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        reload=not is_prod_like(),
    )
