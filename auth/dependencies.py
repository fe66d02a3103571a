"""
auth/dependencies.py -- FastAPI Depends() helpers for request authentication.

Two token sources are checked in priority order:
  1. Authorization header -- "Bearer <jwt>" (or a bare token).
  2. access_token cookie   -- set by the frontend for server-side rendering.

Both are handed to AuthService.parse_token(); the result is a ParsedToken
(user id + role). No storage lookup happens here: an access token is valid
purely by signature and expiry.

try_get_identity() is the soft variant (returns None on failure).
get_current_identity() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_identity() and raises HTTP 403 if not admin.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi because this module is part of
  the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import Unauthorized
from auth.models import ParsedToken
from auth.service import AuthService

_ADMIN_ALIASES = {"admin", "administrator", "role_admin"}


def is_admin_role(role: str | None) -> bool:
    """Legacy rows spell the admin role several ways; all of them count."""
    return (role or "").strip().lower() in _ADMIN_ALIASES


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def try_get_identity(request: Request) -> ParsedToken | None:
    """Authenticate the request from the Authorization header or cookie.

    Returns None on any failure. Never raises -- callers that need a hard
    401 should use get_current_identity().
    """
    service = get_auth_service(request)

    raw: str | None = request.headers.get("Authorization")
    if not raw:
        raw = request.cookies.get("access_token")
    if not raw:
        return None

    try:
        return service.parse_token(raw)
    except Unauthorized:
        return None


def get_current_identity(request: Request) -> ParsedToken:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: ParsedToken = Depends(get_current_identity)): ...
    """
    identity = try_get_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return identity


def require_admin(request: Request) -> ParsedToken:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    identity = get_current_identity(request)
    if not is_admin_role(identity.role):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return identity
