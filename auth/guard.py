"""
auth/guard.py -- The admin authentication guard.

AdminGuard is the single object route handlers talk to. It combines the
AdminStore (who exists) with the token primitives (who is presenting what):

  attempt(email, password) -> token | None   credential check + issue
  login(admin)             -> token          issue without a password check
  user(token)              -> Admin | None   resolve the bearer of a token
  logout(token)                              blacklist the token
  refresh(token)           -> token          swap for a new token

Token failures propagate as auth.tokens.TokenError subclasses. Database
failures are wrapped in AuthProviderError so routes do not need to know the
store's exception types.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from auth.models import Admin
from auth.store import AdminStore
from auth.tokens import (
    _DUMMY_HASH,
    TokenBlacklistedError,
    TokenError,
    TokenExpiredError,
    TokenInvalidError,
    create_token,
    decode_token,
    now_ts,
    refresh_deadline,
    ts_to_iso,
    verify_password,
)
from core.config import Settings

logger = logging.getLogger("adminauth.auth.guard")


class AuthProviderError(Exception):
    """The backing store failed while authenticating."""


class AdminGuard:
    def __init__(self, store: AdminStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    @property
    def ttl_seconds(self) -> int:
        return self.settings.jwt_ttl_seconds

    # ------------------------------------------------------------------
    # Issuing
    # ------------------------------------------------------------------

    def attempt(self, email: str, password: str) -> str | None:
        """Check credentials and return a fresh token, or None if they are wrong.

        Always runs bcrypt whether or not the email exists [C1]:
        - Unknown email: bcrypt runs against _DUMMY_HASH
        - Wrong password: bcrypt runs against the real hash

        Raises AuthProviderError if the store is unreachable and jose.JWTError
        if the token cannot be signed.
        """
        try:
            admin = self.store.get_by_email(email)
        except SQLAlchemyError as exc:
            raise AuthProviderError("Authentication provider is unavailable.") from exc

        if admin is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            verify_password(password, _DUMMY_HASH)
            return None
        if not verify_password(password, admin.hashed_password):
            return None
        return self.login(admin)

    def login(self, admin: Admin) -> str:
        return create_token(str(admin.id), ttl_seconds=self.ttl_seconds, settings=self.settings)

    # ------------------------------------------------------------------
    # Verifying
    # ------------------------------------------------------------------

    def _check_blacklist(self, payload: dict) -> None:
        if not self.settings.jwt_blacklist_enabled:
            return
        try:
            revoked = self.store.get_revoked_token(payload["jti"])
        except SQLAlchemyError as exc:
            raise AuthProviderError("Authentication provider is unavailable.") from exc
        if revoked is not None:
            logger.info("Rejected blacklisted token jti=%s (revoked at %s)", revoked.jti, revoked.revoked_at)
            raise TokenBlacklistedError("Token has been blacklisted.")

    def user(self, token: str | None) -> Admin | None:
        """Return the admin a valid token belongs to, or None if the account is gone.

        Raises TokenAbsentError, TokenExpiredError or TokenInvalidError
        (including TokenBlacklistedError) for unusable tokens.
        """
        payload = decode_token(token, settings=self.settings)
        self._check_blacklist(payload)
        try:
            admin_id = int(payload["sub"])
        except ValueError as exc:
            raise TokenInvalidError("Token subject is not an admin id.") from exc
        try:
            return self.store.get_by_id(admin_id)
        except SQLAlchemyError as exc:
            raise AuthProviderError("Authentication provider is unavailable.") from exc

    # ------------------------------------------------------------------
    # Revoking
    # ------------------------------------------------------------------

    def invalidate(self, payload: dict) -> None:
        """Blacklist a decoded token until its refresh window closes."""
        if not self.settings.jwt_blacklist_enabled:
            return
        try:
            self.store.revoke_token(payload["jti"], ts_to_iso(refresh_deadline(payload, self.settings)))
        except SQLAlchemyError as exc:
            raise AuthProviderError("Authentication provider is unavailable.") from exc

    def logout(self, token: str | None) -> None:
        """Invalidate the token, expired or not. Absent and undecodable tokens are ignored."""
        try:
            payload = decode_token(token, verify_exp=False, settings=self.settings)
        except TokenError as exc:
            logger.info("Logout with unusable token (%s)", exc.code)
            return
        self.invalidate(payload)

    def refresh(self, token: str | None) -> str:
        """Exchange a token for a new one and blacklist the old one.

        The token may be expired as long as it is still inside its refresh
        window (iat + refresh TTL). The new token keeps the original iat so
        repeated refreshes cannot extend the window.
        """
        payload = decode_token(token, verify_exp=False, settings=self.settings)
        if now_ts() > refresh_deadline(payload, self.settings):
            raise TokenExpiredError("Token can no longer be refreshed.")
        self._check_blacklist(payload)
        self.invalidate(payload)
        return create_token(
            payload["sub"],
            issued_at=int(payload["iat"]),
            ttl_seconds=self.ttl_seconds,
            settings=self.settings,
        )
