"""
auth/tokens.py -- JWT and password hashing primitives.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (admin id), iat, nbf, exp, jti and prv. Unlike a plain
       "return None on failure" decoder, decode_token() raises a typed
       TokenError so the route layer can tell the caller whether the token
       was absent, expired or invalid.

  prv: sha1 of the provider name. A token signed with the same key but
       issued for a different guard carries a different prv and is rejected.

  Passwords: bcrypt directly. _DUMMY_HASH enables timing equalization in
       AdminGuard.attempt() so response time does not reveal whether an email
       is registered [C1].

  SECRET_KEY: sourced from core.config.get_settings(), which validates it at
       startup [M6].

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is the
kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.config import Settings, get_settings

logger = logging.getLogger("adminauth.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

PROVIDER_CLAIM = hashlib.sha1(b"admins").hexdigest()  # noqa: S324 -- identifier, not a security hash

_REQUIRED_CLAIMS = ("sub", "iat", "exp", "jti", "prv")

# bcrypt only ever reads the first 72 bytes, and bcrypt>=5 refuses longer input.
MAX_PASSWORD_BYTES = 72


# ---------------------------------------------------------------------------
# Token exceptions
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Base class for token failures. status_code / code are surfaced verbatim."""

    status_code = 500
    code = "token_error"


class TokenAbsentError(TokenError):
    status_code = 400
    code = "token_absent"


class TokenInvalidError(TokenError):
    status_code = 400
    code = "token_invalid"


class TokenBlacklistedError(TokenInvalidError):
    """The token decoded fine but its jti is on the blacklist (logged out or refreshed)."""

    status_code = 401


class TokenExpiredError(TokenError):
    status_code = 401
    code = "token_expired"


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises ValueError for input longer than MAX_PASSWORD_BYTES once UTF-8
    encoded. Callers validate the length first.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("adminauth_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def now_ts() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def create_token(
    subject: str,
    issued_at: int | None = None,
    ttl_seconds: int = 0,
    settings: Settings | None = None,
) -> str:
    """Encode a signed JWT for the given subject.

    Args:
        subject:     Admin id as a string (JWT requires sub to be a string).
        issued_at:   Original iat to carry over. refresh passes the old token's
                     iat so the refresh window is measured from first issue.
                     None means "now".
        ttl_seconds: Lifetime in seconds. 0 (default) uses
                     Settings.jwt_ttl_seconds.
        settings:    Signing key and default TTL source. None means the
                     process-wide get_settings().
    """
    settings = settings or _settings
    now = now_ts()
    duration = ttl_seconds if ttl_seconds > 0 else settings.jwt_ttl_seconds
    payload = {
        "sub": subject,
        "iat": issued_at if issued_at is not None else now,
        "nbf": now,
        "exp": now + duration,
        "jti": uuid.uuid4().hex,
        "prv": PROVIDER_CLAIM,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=_ALGORITHM)


def decode_token(token: str | None, verify_exp: bool = True, settings: Settings | None = None) -> dict:
    """Decode and verify a JWT, returning its payload.

    Raises:
        TokenAbsentError:  token is None or empty.
        TokenExpiredError: signature is fine but exp has passed (only when
                           verify_exp is True).
        TokenInvalidError: bad signature, malformed token, missing claims,
                           or a prv from another provider.
    """
    settings = settings or _settings
    if not token:
        raise TokenAbsentError("A token is required.")
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": verify_exp},
        )
    except ExpiredSignatureError as exc:
        raise TokenExpiredError("Token has expired.") from exc
    except JWTError as exc:
        logger.debug("Rejected token: %s", exc)
        raise TokenInvalidError("Token could not be decoded.") from exc

    if any(claim not in payload for claim in _REQUIRED_CLAIMS):
        raise TokenInvalidError("Token is missing required claims.")
    if payload["prv"] != PROVIDER_CLAIM:
        raise TokenInvalidError("Token was issued for a different provider.")
    return payload


def refresh_deadline(payload: dict, settings: Settings | None = None) -> int:
    """Return the unix time after which a token can no longer be refreshed."""
    return int(payload["iat"]) + (settings or _settings).jwt_refresh_ttl_seconds


def ts_to_iso(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
