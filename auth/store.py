"""
auth/store.py -- SQLAlchemy Core persistence layer for member accounts.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Route code never
touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  email is NOT declared UNIQUE. Uniqueness is an application-level
  existence check in the signup route, and that check-then-insert is not
  atomic: two concurrent signups for the same address can both succeed. The
  login route treats more than one match as "User not found".

  update_role() writes whatever string it is given. Role values are not
  validated anywhere in the stack.

Column names (password, userType) match the keys used by the session payload
and the admin listing, so a user record maps 1:1 onto a row.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Engine

from auth.models import ROLE_MEMBER, User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(30), nullable=False),
    Column("email", String(320), nullable=False, index=True),  # not unique, see module docstring
    Column("password", Text, nullable=False),  # bcrypt hash
    Column("userType", Text, nullable=False, server_default=ROLE_MEMBER),
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


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite tweaks both stores rely on."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records, keyed by email.

    Usage:
        store = UserStore()
        store.insert(User(name="Ann", email="ann@x.com", hashed_password=hash_password("pw1")))
        user = store.find_by_email("ann@x.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User | None:
        """Return the first user with this exact email (case-sensitive), or None."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email).order_by(_users.c.id)).first()
        return _row_to_user(row) if row is not None else None

    def find_all_by_email(self, email: str) -> list[User]:
        """Return every user with this email.

        Login uses this instead of find_by_email() because it must reject the
        duplicate-email case rather than silently pick one record.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().where(_users.c.email == email).order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def list_all(self) -> list[User]:
        """Return the whole collection in insertion order. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def ping(self) -> bool:
        """Round-trip a trivial query. Used by the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        No duplicate check happens here; callers run find_by_email() first.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    name=user.name,
                    email=user.email,
                    password=user.hashed_password,
                    userType=user.role,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_role(self, email: str, new_role: str) -> int:
        """Overwrite the role of every user with this email.

        new_role is stored verbatim -- "superuser" is as acceptable as "admin".
        Returns the number of rows matched (0 when the email is unknown).
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.email == email).values(userType=new_role))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.password,
        role=row.userType,
    )
