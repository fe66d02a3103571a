"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup          -- register; 200 / 400 / 409 / 500
  POST /api/v1/auth/login           -- password login; access token in body, refresh id in cookie
  POST /api/v1/auth/refresh         -- rotate the refresh cookie; new access token
  POST /api/v1/auth/logout          -- drop the session; clear the cookie; always 200
  GET  /api/v1/auth/me              -- profile of the bearer (requires auth)
  PUT  /api/v1/auth/profile         -- update name/email (requires auth)
  PUT  /api/v1/auth/password        -- change password (requires auth)
  POST /api/v1/auth/sessions/purge  -- delete expired sessions (admin only)
  POST /api/v1/auth/dev/hash        -- dev only: Argon2id hash of a password
  POST /api/v1/auth/dev/reset       -- dev only: overwrite a user's password
  POST /api/v1/auth/dev/verify      -- dev only: diagnose a credential check

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  [C1] AuthService.login() equalizes timing and wording for unknown email vs
       wrong password -- never inline store + verifier calls here.
  [M5] Cache-Control: no-store on every response that carries a token.
  Dev endpoints answer 404 unless DEV_ENDPOINTS=true and never run their
  effect when disabled.

AuthError subclasses raised by the service are turned into the standard
error envelope by the handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ChangePasswordRequest,
    DevCredentialRequest,
    DevHashRequest,
    DevHashResponse,
    DevResetResponse,
    DevVerifyResponse,
    LoginRequest,
    MessageResponse,
    PasswordChangeResponse,
    ProfileResponse,
    ProfileUpdateResponse,
    PurgeResponse,
    SignupRequest,
    TokenResponse,
    UpdateProfileRequest,
)
from auth.dependencies import get_auth_service, get_current_identity, require_admin
from auth.models import ParsedToken, TokenBundle
from auth.service import AuthService
from core.config import get_settings

_settings = get_settings()

REFRESH_COOKIE = "refresh_token"

# Auth policy:
# - POST /auth/signup, /auth/login, /auth/refresh, /auth/logout: public
# - GET /auth/me, PUT /auth/profile, PUT /auth/password: requires auth (get_current_identity)
# - POST /auth/sessions/purge: requires admin (require_admin)
# - POST /auth/dev/*: public but 404 unless DEV_ENDPOINTS=true
router = APIRouter()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, value: str, ttl_seconds: int) -> None:
    """Write the refresh session id as an httpOnly cookie.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    max_age: matches the session TTL so cookie and row expire together.
    """
    response.set_cookie(
        REFRESH_COOKIE,
        value=value,
        max_age=ttl_seconds,
        path="/",
        httponly=True,
        samesite=_settings.cookie_samesite,
        secure=_settings.secure_cookies,
    )


def clear_refresh_cookie(response) -> None:
    response.delete_cookie(
        REFRESH_COOKIE,
        path="/",
        httponly=True,
        samesite=_settings.cookie_samesite,
        secure=_settings.secure_cookies,
    )


def _token_response(bundle: TokenBundle) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(access_token=bundle.access_token, role=bundle.role).model_dump(by_alias=True),
    )
    set_refresh_cookie(resp, bundle.refresh_token, bundle.refresh_ttl_seconds)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _require_dev_endpoints(service: AuthService) -> None:
    if not service.config.dev_endpoints:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Not found."})


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": "validation_error", "message": message})


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=MessageResponse)
def signup(body: SignupRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Register a new user with role "user"."""
    message = service.signup(body.name, body.email, body.country, body.password)
    return MessageResponse(message=message)


@limiter.limit(_settings.login_rate_limit)  # [H2] -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Returns the same generic 401 ("Invalid email or password") for an unknown
    email and a wrong password to avoid leaking account existence.
    """
    service = get_auth_service(request)
    bundle = service.login(body.email, body.password)
    return _token_response(bundle)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request) -> JSONResponse:
    """Exchange the refresh cookie for a new access token and a rotated cookie."""
    service = get_auth_service(request)
    bundle = service.refresh(request.cookies.get(REFRESH_COOKIE))
    return _token_response(bundle)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Delete the refresh session (if any) and clear the cookie. Always 200."""
    service = get_auth_service(request)
    service.logout(request.cookies.get(REFRESH_COOKIE))
    resp = JSONResponse(content=MessageResponse(message="Logged out").model_dump())
    clear_refresh_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=ProfileResponse)
def me(
    identity: ParsedToken = Depends(get_current_identity),
    service: AuthService = Depends(get_auth_service),
) -> ProfileResponse:
    return ProfileResponse.from_user(service.get_profile(identity.user_id))


@router.put("/auth/profile", response_model=ProfileUpdateResponse)
def update_profile(
    body: UpdateProfileRequest,
    identity: ParsedToken = Depends(get_current_identity),
    service: AuthService = Depends(get_auth_service),
) -> ProfileUpdateResponse:
    updated, profile = service.update_profile(identity.user_id, name=body.name, email=body.email)
    return ProfileUpdateResponse(updated=updated, profile=ProfileResponse.from_user(profile))


@router.put("/auth/password", response_model=PasswordChangeResponse)
def change_password(
    body: ChangePasswordRequest,
    identity: ParsedToken = Depends(get_current_identity),
    service: AuthService = Depends(get_auth_service),
) -> PasswordChangeResponse:
    """Change the bearer's password. A wrong current password is 200 with updated=0."""
    result = service.change_password(identity.user_id, body.current_password, body.new_password)
    return PasswordChangeResponse(updated=1 if result.updated else 0, message=result.message or None)


@router.post("/auth/sessions/purge", response_model=PurgeResponse)
def purge_sessions(
    identity: ParsedToken = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> PurgeResponse:
    """Delete every expired refresh session now. Admin only."""
    return PurgeResponse(purged=service.sessions.purge_expired())


# ---------------------------------------------------------------------------
# Dev-only helpers
# ---------------------------------------------------------------------------


@router.post("/auth/dev/hash", response_model=DevHashResponse)
def dev_hash(body: DevHashRequest, service: AuthService = Depends(get_auth_service)) -> DevHashResponse:
    _require_dev_endpoints(service)
    if not body.password or not body.password.strip():
        raise _bad_request("password required")
    return DevHashResponse(hash=service.dev_hash(body.password))


@router.post("/auth/dev/reset", response_model=DevResetResponse)
def dev_reset(body: DevCredentialRequest, service: AuthService = Depends(get_auth_service)) -> DevResetResponse:
    _require_dev_endpoints(service)
    if body.email is None or body.password is None:
        raise _bad_request("email and password required")
    return DevResetResponse(updated=service.dev_reset_password(body.email, body.password))


@router.post("/auth/dev/verify", response_model=DevVerifyResponse)
def dev_verify(body: DevCredentialRequest, service: AuthService = Depends(get_auth_service)) -> DevVerifyResponse:
    _require_dev_endpoints(service)
    if body.email is None or body.password is None:
        raise _bad_request("email and password required")
    return DevVerifyResponse.from_report(service.dev_verify(body.email, body.password))
