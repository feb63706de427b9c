"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Admin:
    """An administrator account.

    hashed_password is a bcrypt hash and never leaves the auth layer --
    api/models.AdminResponse omits it.
    """

    name: str
    email: str
    hashed_password: str
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class RevokedToken:
    """A blacklisted JWT, identified by its jti claim.

    expires_at is the end of the token's refresh window. Past that point the
    token is useless anyway, so the row can be purged.
    """

    jti: str
    expires_at: str
    revoked_at: str | None = None
