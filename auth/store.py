"""
auth/store.py -- SQLAlchemy Core persistence for users and roles.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user /
_row_to_role are the mappers. The orchestrator and routes never touch SQL
directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Schema:
  users       -- one row per account; email is UNIQUE.
  roles       -- named permission groupings; name is UNIQUE.
  user_roles  -- many-to-many link between the two.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import Coordinates, Role, User
from core.config import now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

# Shared by every table in auth/ so refresh_tokens and confirm_accounts can
# reference users.id.
metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("timezone", String(64), nullable=False),
    Column("gender", String(20)),
    Column("avatar", Text),
    Column("latitude", Float),
    Column("longitude", Float),
    Column("enabled", Boolean, nullable=False, server_default="1"),
    Column("confirmed", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text),
)

_user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
)

# Columns callers may change through update_user(). Identity (id, email) and
# timestamps are managed here.
_MUTABLE_USER_FIELDS = frozenset(
    {"first_name", "last_name", "timezone", "gender", "avatar", "enabled", "confirmed", "hashed_password"}
)


# ---------------------------------------------------------------------------
# Engine helpers (shared by every store in auth/)
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def build_engine(db_url: str) -> Engine:
    """Create an engine for db_url, applying the SQLite connection settings."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Role entities.

    Usage:
        store = UserStore("sqlite:///auth.db")
        role = store.create_role(Role(name="user"))
        user_id = store.create_user(User(...), [role])
        user = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = build_engine(db_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def create_role(self, role: Role) -> Role:
        """Insert a role and return it with its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the name already exists.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_roles.insert().values(name=role.name, description=role.description))
        return Role(name=role.name, description=role.description, id=result.inserted_primary_key[0])

    def ensure_role(self, name: str, description: str | None = None) -> Role:
        """Return the named role, creating it first if it does not exist."""
        existing = self.get_role_by_name(name)
        if existing is not None:
            return existing
        return self.create_role(Role(name=name, description=description))

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, roles: list[Role]) -> int:
        """Insert a user with its role links in one transaction; return the new ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists. On
        any failure neither the user row nor its role links are persisted.
        """
        stamp = now_iso()
        coords = user.coordinates
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    timezone=user.timezone,
                    gender=user.gender,
                    avatar=user.avatar,
                    latitude=coords.latitude if coords else None,
                    longitude=coords.longitude if coords else None,
                    enabled=user.enabled,
                    confirmed=user.confirmed,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            user_id = result.inserted_primary_key[0]
            if roles:
                conn.execute(
                    _user_roles.insert(),
                    [{"user_id": user_id, "role_id": role.id} for role in roles],
                )
        return user_id

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, _role_names(conn, row.id))

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, _role_names(conn, row.id))

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: first_name, last_name, timezone, gender, avatar,
        enabled, confirmed, hashed_password. Unknown fields raise ValueError.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=now_iso(), **fields)
            )
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _role_names(conn: Connection, user_id: int) -> list[str]:
    rows = conn.execute(
        select(_roles.c.name)
        .select_from(_user_roles.join(_roles, _user_roles.c.role_id == _roles.c.id))
        .where(_user_roles.c.user_id == user_id)
        .order_by(_roles.c.name)
    ).fetchall()
    return [r.name for r in rows]


def _row_to_user(row, roles: list[str]) -> User:
    coordinates = None
    if row.latitude is not None and row.longitude is not None:
        coordinates = Coordinates(latitude=row.latitude, longitude=row.longitude)
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        timezone=row.timezone,
        gender=row.gender,
        avatar=row.avatar,
        coordinates=coordinates,
        roles=roles,
        enabled=bool(row.enabled),
        confirmed=bool(row.confirmed),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, description=row.description)
