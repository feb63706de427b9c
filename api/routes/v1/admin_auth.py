"""
api/routes/v1/admin_auth.py -- Admin authentication REST endpoints.

Routes:
  POST /api/v1/admin/login      -- email/password login; returns a bearer token
  POST /api/v1/admin/register   -- create an admin and return its first token
  GET  /api/v1/admin/me         -- the admin bound to the presented token
  POST /api/v1/admin/logout     -- blacklist the presented token; always 200
  POST /api/v1/admin/refresh    -- swap a token (possibly expired) for a new one

Every response is an Envelope (see api/models.py). Handlers only shape
requests and responses; the work is done by AdminGuard.

Security:
  [H2] POST /login is rate-limited per IP (Settings.login_rate_limit).
  [C1] AdminGuard.attempt() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from jose import JWTError
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    EMAIL_EXISTS_CONTEXT,
    EMAIL_TAKEN,
    AdminResponse,
    Envelope,
    LoginRequest,
    RegisterData,
    RegisterRequest,
    TokenData,
)
from auth.dependencies import get_bearer_token, get_guard
from auth.guard import AdminGuard, AuthProviderError
from auth.models import Admin
from auth.tokens import TokenError, hash_password
from core.config import get_settings

logger = logging.getLogger("adminauth.api.admin_auth")

_settings = get_settings()

# Auth policy:
# - POST /admin/login:     public
# - POST /admin/register:  public
# - GET  /admin/me:        bearer token (validated by the guard, not a dependency,
#                          so each token failure keeps its own error code)
# - POST /admin/logout:    bearer token, failures ignored
# - POST /admin/refresh:   bearer token, may be expired within the refresh window
router = APIRouter()


# ---------------------------------------------------------------------------
# Envelope helpers
# ---------------------------------------------------------------------------


def send_result(message: str, data: dict | list, status_code: int = 200, no_store: bool = False) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=Envelope(message=message, data=data, error="", status=True).model_dump(),
    )
    if no_store:
        resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def send_error(error: str | dict, status_code: int, message: str = "") -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=Envelope(message=message, data={}, error=error, status=False).model_dump(),
    )


def _token_error(exc: TokenError) -> JSONResponse:
    return send_error(exc.code, exc.status_code, message=str(exc))


def _token_data(token: str, guard: AdminGuard) -> dict:
    return TokenData(token=token, expires_in=guard.ttl_seconds).model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/admin/login", response_model=Envelope)
@limiter.limit(_settings.login_rate_limit)  # [H2] must sit BELOW @router so the route calls the limiting wrapper
def login(request: Request, body: LoginRequest, guard: AdminGuard = Depends(get_guard)) -> JSONResponse:
    """Authenticate with email and password and return a bearer token.

    Wrong email and wrong password get the same "invalid_credentials" error
    so the response does not reveal which admins exist.
    """
    try:
        token = guard.attempt(body.email, body.password)
    except JWTError:
        logger.exception("Could not sign token for admin login")
        return send_error("could_not_create_token", 500, message="Could not create token.")

    if token is None:
        logger.info("Rejected admin login")
        resp = send_error("invalid_credentials", 400, message="Invalid email or password.")
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    return send_result("logged in successfully", _token_data(token, guard), no_store=True)


def _register_request(
    payload: dict[str, Any] = Body(),
    guard: AdminGuard = Depends(get_guard),
) -> RegisterRequest:
    """Validate the register body with the store in context.

    A taken email is then reported alongside every other failing field
    instead of only after the rest of the body is valid.
    """
    try:
        return RegisterRequest.model_validate(payload, context={EMAIL_EXISTS_CONTEXT: guard.store.email_exists})
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(), body=payload) from exc


_REGISTER_BODY_SCHEMA = {
    "requestBody": {
        "content": {"application/json": {"schema": RegisterRequest.model_json_schema()}},
        "required": True,
    }
}


@router.post("/admin/register", response_model=Envelope, status_code=201, openapi_extra=_REGISTER_BODY_SCHEMA)
def register(
    body: RegisterRequest = Depends(_register_request),
    guard: AdminGuard = Depends(get_guard),
) -> JSONResponse:
    """Create an admin account and issue its first token, no separate login needed.

    Email uniqueness is checked during validation. IntegrityError covers two
    concurrent registrations of one address.
    """
    store = guard.store
    try:
        admin_id = store.create_admin(
            Admin(
                name=body.name,
                email=body.email,
                hashed_password=hash_password(body.password),
            )
        )
    except IntegrityError:
        return send_error({"email": [EMAIL_TAKEN]}, 400, message="Validation failed.")

    admin = store.get_by_id(admin_id)
    if admin is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "Admin not found after write."},
        )
    logger.info("Registered admin id=%d", admin.id)

    token = guard.login(admin)
    data = RegisterData(
        admin=_admin_to_response(admin),
        token=token,
        expires_in=guard.ttl_seconds,
    ).model_dump(by_alias=True)
    return send_result("signed up successfully", data, status_code=201, no_store=True)


@router.get("/admin/me", response_model=Envelope)
def me(
    guard: AdminGuard = Depends(get_guard),
    token: str | None = Depends(get_bearer_token),
) -> JSONResponse:
    """Return the admin bound to the presented token.

    Distinguishes token_absent, token_expired, token_invalid and admin_not_found.
    """
    try:
        admin = guard.user(token)
    except TokenError as exc:
        return _token_error(exc)
    if admin is None:
        return send_error("admin_not_found", 404, message="Admin not found.")
    return send_result("success", {"admin": _admin_to_response(admin).model_dump()})


@router.post("/admin/logout", response_model=Envelope)
def logout(
    guard: AdminGuard = Depends(get_guard),
    token: str | None = Depends(get_bearer_token),
) -> JSONResponse:
    """Blacklist the presented token. Always succeeds, even without a usable token."""
    try:
        guard.logout(token)
    except AuthProviderError:
        logger.exception("Token blacklist write failed during logout")
    return send_result("logout successfully", {})


@router.post("/admin/refresh", response_model=Envelope)
def refresh(
    guard: AdminGuard = Depends(get_guard),
    token: str | None = Depends(get_bearer_token),
) -> JSONResponse:
    """Exchange the presented token for a new one. The old token is blacklisted."""
    try:
        new_token = guard.refresh(token)
    except TokenError as exc:
        return _token_error(exc)
    return send_result("refresh token successfully", _token_data(new_token, guard), no_store=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _admin_to_response(admin: Admin) -> AdminResponse:
    return AdminResponse(
        id=admin.id,
        name=admin.name,
        email=admin.email,
        created_at=admin.created_at or "",
        updated_at=admin.updated_at or "",
    )
