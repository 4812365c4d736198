"""Session-based access control and CSRF protection.

The session user is ``{"id", "role", "owner_id"}``. Signing in happens
elsewhere; this module only reads the session.
"""

import hashlib
import hmac
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

ROLE_ADMIN = "ADMIN"
ROLE_OWNER = "OWNER"
ROLE_TRAINER = "TRAINER"

# --- Auth middleware ----------------------------------------------------------

# Paths that never require a session
PUBLIC_PATHS = {"/health", "/api/csrf-token"}


class AuthMiddleware(BaseHTTPMiddleware):
    """Reject unauthenticated API calls with 401."""

    async def dispatch(self, request, call_next):
        path = request.url.path
        if path in PUBLIC_PATHS or not path.startswith("/api/"):
            return await call_next(request)

        if request.session.get("user"):
            return await call_next(request)
        return JSONResponse({"detail": "Not authenticated"}, status_code=401)


def get_current_user(request: Request) -> Optional[dict]:
    return request.session.get("user")


def require_user(request: Request) -> dict:
    """Dependency: the session user, or 401."""
    user = get_current_user(request)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def require_admin(request: Request) -> dict:
    """Dependency: an ADMIN session user, or 401/403."""
    user = require_user(request)
    if user.get("role") != ROLE_ADMIN:
        logger.warning(f"Non-admin user {user.get('id')} denied admin endpoint {request.url.path}")
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


# --- CSRF middleware ----------------------------------------------------------

CSRF_SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


def _get_session_csrf_secret(request) -> str:
    """Get or create a per-session CSRF secret."""
    csrf_secret = request.session.get("_csrf_secret")
    if not csrf_secret:
        csrf_secret = secrets.token_hex(32)
        request.session["_csrf_secret"] = csrf_secret
    return csrf_secret


def generate_csrf_token(session_secret: str) -> str:
    """Nonce plus truncated HMAC of the nonce under the session secret."""
    nonce = secrets.token_hex(16)
    sig = hmac.new(session_secret.encode(), nonce.encode(), hashlib.sha256).hexdigest()[:32]
    return f"{nonce}.{sig}"


def verify_csrf_token(session_secret: str, token: str) -> bool:
    if not token or "." not in token:
        return False
    nonce, sig = token.split(".", 1)
    expected = hmac.new(session_secret.encode(), nonce.encode(), hashlib.sha256).hexdigest()[:32]
    return hmac.compare_digest(sig, expected)


class CSRFMiddleware(BaseHTTPMiddleware):
    """Verify the X-CSRF-Token header on state-changing API requests."""

    async def dispatch(self, request, call_next):
        if request.method in CSRF_SAFE_METHODS or not request.url.path.startswith("/api/"):
            return await call_next(request)

        csrf_secret = request.session.get("_csrf_secret", "")
        token = request.headers.get("X-CSRF-Token", "")
        if not csrf_secret or not verify_csrf_token(csrf_secret, token):
            return JSONResponse({"detail": "CSRF validation failed"}, status_code=403)
        return await call_next(request)


router = APIRouter()


@router.get("/api/csrf-token")
async def csrf_token(request: Request):
    """Return a fresh CSRF token for JS to use."""
    return {"token": generate_csrf_token(_get_session_csrf_secret(request))}
