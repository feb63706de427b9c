"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Token sources are checked in priority order:
  1. Authorization: Bearer <token> header -- the normal API client path.
  2. ?token=<token> query parameter -- for clients that cannot set headers.

get_bearer_token() never raises: an absent token is reported as None and
the guard turns that into TokenAbsentError, so every route surfaces the
same "token_absent" error.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.guard import AdminGuard
from auth.models import Admin
from auth.tokens import TokenError


def get_bearer_token(request: Request) -> str | None:
    """Return the raw JWT presented with the request, or None."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header[:7].lower() == "bearer ":
        token = auth_header[7:].strip()
        if token:
            return token
    return request.query_params.get("token") or None


def get_guard(request: Request) -> AdminGuard:
    """Return the AdminGuard wired into app.state by the lifespan.

    Use as a FastAPI dependency:
        @router.get("/admin/me")
        async def route(guard: AdminGuard = Depends(get_guard)): ...
    """
    return request.app.state.guard


def require_admin(request: Request) -> Admin:
    """Require a valid admin token. Raises HTTP 401 otherwise.

    For routes that only need "some admin is logged in" and do not care
    which token failure occurred. The admin auth routes call the guard
    directly instead so each failure keeps its own error code.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(admin: Admin = Depends(require_admin)): ...
    """
    guard = get_guard(request)
    try:
        admin = guard.user(get_bearer_token(request))
    except TokenError as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": exc.code, "message": "Authentication required."},
        ) from exc
    if admin is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "admin_not_found", "message": "Authentication required."},
        )
    return admin
