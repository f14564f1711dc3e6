"""
auth/store.py -- SQLAlchemy Core persistence layer for credentials and sessions.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user is
the mapper. Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Live refresh tokens are kept as HMAC digests in their own table with a
  UNIQUE index on the digest. The user record's session list is the ordered
  set of its rows.

Concurrency:
  rotate_refresh_token() runs the delete of the presented digest and the
  insert of its replacement in one transaction. The delete is conditional on
  (user_id, digest); when two requests race with the same token the database
  lets exactly one delete hit a row and the loser sees rowcount 0. No
  cross-user locking is involved.

Layer rule: no imports from api/, audit/, consent/ or patients/.
"""

from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Index, Integer, MetaData, String, Table, Text, select, text
from sqlalchemy.engine import Engine

from auth.models import User
from core.config import get_settings
from core.database import make_engine, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(254), nullable=False, unique=True),  # lower-cased on write
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="patient"),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("token_digest", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("created_at", String(32), nullable=False),
    Index("ix_refresh_tokens_user", "user_id"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records and their live refresh-token digests.

    Usage:
        store = UserStore()
        uid = store.create_user(User(email="a@example.com", role="patient", password_hash=h))
        store.add_refresh_token(uid, digest)
        user = store.get_by_email("A@example.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as a concurrent duplicate registration.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(user.email),
                    password_hash=user.password_hash,
                    role=user.role,
                    created_at=now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, ignoring case. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
            return self._load(conn, row)

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            return self._load(conn, row)

    def email_exists(self, email: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return row is not None

    def _load(self, conn, row) -> User | None:
        if row is None:
            return None
        digests = conn.execute(
            select(_refresh_tokens.c.token_digest)
            .where(_refresh_tokens.c.user_id == row.id)
            .order_by(_refresh_tokens.c.id)
        ).scalars()
        return _row_to_user(row, list(digests))

    # ------------------------------------------------------------------
    # Refresh-token set
    # ------------------------------------------------------------------

    def add_refresh_token(self, user_id: int, digest: str) -> None:
        """Append a digest to the user's live set (a new session)."""
        with self.engine.begin() as conn:
            conn.execute(_refresh_tokens.insert().values(user_id=user_id, token_digest=digest, created_at=now_iso()))

    def has_refresh_token(self, user_id: int, digest: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.token_digest == digest)
                )
            ).fetchone()
        return row is not None

    def rotate_refresh_token(self, user_id: int, old_digest: str, new_digest: str) -> bool:
        """Atomically swap old_digest for new_digest in the user's live set.

        Returns False, and changes nothing, when old_digest is not live for
        this user (already rotated, revoked, or never issued to them).
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.token_digest == old_digest)
                )
            )
            if result.rowcount != 1:
                return False
            conn.execute(
                _refresh_tokens.insert().values(user_id=user_id, token_digest=new_digest, created_at=now_iso())
            )
        return True

    def remove_refresh_token(self, user_id: int, digest: str) -> int:
        """Remove one digest from the user's live set. Returns rows removed (0 or 1)."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.token_digest == digest)
                )
            )
        return result.rowcount

    def clear_refresh_tokens(self, user_id: int) -> int:
        """Remove every live digest for the user. Returns rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        return result.rowcount

    def delete_user(self, user_id: int) -> None:
        """Delete the user and their live digests. Only used to undo a failed registration."""
        with self.engine.begin() as conn:
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
            conn.execute(_users.delete().where(_users.c.id == user_id))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, digests: list[str]) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        refresh_tokens=digests,
        created_at=row.created_at,
    )
