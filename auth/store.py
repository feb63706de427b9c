"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AdminStore is the repository; _row_to_admin / _row_to_revoked are the mappers.
Route, guard and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  admins.email is UNIQUE at the DB level. Register validation calls
  email_exists() for a friendly field error, and the route treats an
  IntegrityError from create_admin() as the same failure (two concurrent
  registrations with one address).

Tables:
  admins          -- administrator accounts
  revoked_tokens  -- JWT blacklist keyed by jti

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Admin, RevokedToken

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_admins = Table(
    "admins",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_revoked_tokens = Table(
    "revoked_tokens",
    _metadata,
    Column("jti", String(64), primary_key=True),
    Column("expires_at", String(32), nullable=False),
    Column("revoked_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AdminStore:
    """Repository for Admin accounts and the token blacklist.

    Usage:
        store = AdminStore("sqlite:///adminauth.db")
        store.create_admin(Admin(name="Root", email="root@example.com", hashed_password=hash_password("secret")))
        admin = store.get_by_email("root@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Admin queries
    # ------------------------------------------------------------------

    def create_admin(self, admin: Admin) -> int:
        """Insert a new admin and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _admins.insert().values(
                    name=admin.name,
                    email=admin.email,
                    hashed_password=admin.hashed_password,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> Admin | None:
        """Look up an admin by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_admins.select().where(_admins.c.email == email)).fetchone()
        return _row_to_admin(row) if row is not None else None

    def get_by_id(self, admin_id: int) -> Admin | None:
        """Look up an admin by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_admins.select().where(_admins.c.id == admin_id)).fetchone()
        return _row_to_admin(row) if row is not None else None

    def email_exists(self, email: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_admins.c.id).where(_admins.c.email == email)).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Token blacklist
    # ------------------------------------------------------------------

    def revoke_token(self, jti: str, expires_at: str) -> None:
        """Blacklist a jti. Revoking an already-revoked jti is a no-op."""
        if self.is_token_revoked(jti):
            return
        try:
            with self.engine.connect() as conn:
                conn.execute(_revoked_tokens.insert().values(jti=jti, expires_at=expires_at, revoked_at=_now_iso()))
                conn.commit()
        except IntegrityError:
            # Concurrent logout of the same token won the insert.
            pass

    def is_token_revoked(self, jti: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_revoked_tokens.c.jti).where(_revoked_tokens.c.jti == jti)).fetchone()
        return row is not None

    def get_revoked_token(self, jti: str) -> RevokedToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_revoked_tokens.select().where(_revoked_tokens.c.jti == jti)).fetchone()
        return _row_to_revoked(row) if row is not None else None

    def purge_expired_tokens(self) -> int:
        """Delete blacklist rows whose refresh window has closed. Returns rows removed.

        ISO-8601 UTC strings with identical offsets sort lexicographically,
        so a string comparison is a time comparison here.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_revoked_tokens.delete().where(_revoked_tokens.c.expires_at < _now_iso()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_admin(row) -> Admin:
    return Admin(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_revoked(row) -> RevokedToken:
    return RevokedToken(
        jti=row.jti,
        expires_at=row.expires_at,
        revoked_at=row.revoked_at,
    )
