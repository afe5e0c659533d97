"""
QA Pulse - Relational Store
=============================
Table definitions, the shared async engine, and user lookups.

All sessions share one engine. Its connection pool is fixed-size
(`pool_size` + `max_overflow`); checkouts beyond capacity wait up to
`pool_timeout` seconds and then fail as StoreError instead of piling up.

Every operation is a single independent read or insert, so no transaction
scoping beyond one statement is needed.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    func,
    select,
    text,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from qapulse.config import mask_url
from qapulse.errors import StoreError

logger = logging.getLogger(__name__)

metadata = MetaData()

teams = Table(
    "teams",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
)

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), unique=True, nullable=False),
    Column("password", String(100), nullable=False),
    Column("team_id", Integer, ForeignKey("teams.id"), nullable=True),
    Column("avatar_url", String(255), nullable=True),
)

tests = Table(
    "tests",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("status", Enum("passed", "failed", name="test_status"), nullable=False),
    Column("created_at", DateTime, server_default=func.current_timestamp()),
)

devices = Table(
    "devices",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("online", Boolean, nullable=False, server_default=text("0")),
)


@dataclass(frozen=True)
class UserRecord:
    """A row of the users table. `password_hash` never leaves the server."""

    id: int
    username: str
    password_hash: str
    team_id: int | None
    avatar_url: str


@dataclass(frozen=True)
class UserProfile:
    """Public view of a user, sent to clients as a `user_data` payload."""

    id: int
    username: str
    team_name: str
    avatar_url: str


def create_engine_from_config(database: dict) -> AsyncEngine:
    """
    Create the shared async engine from the `database` config section.

    SQLite URLs (development and tests) keep the dialect's own pool choice,
    which is a StaticPool for in-memory databases; everything else gets a
    bounded AsyncAdaptedQueuePool.

    Args:
        database: The `database` section of the loaded configuration.
    """
    url = database["url"]
    if make_url(url).get_backend_name() == "sqlite":
        engine = create_async_engine(url)
    else:
        engine = create_async_engine(
            url,
            poolclass=AsyncAdaptedQueuePool,
            pool_size=database["pool_size"],
            max_overflow=database["max_overflow"],
            pool_timeout=database["pool_timeout"],
            pool_recycle=database["pool_recycle"],
            pool_pre_ping=True,
        )

    logger.info("Created database engine for %s", mask_url(url))
    return engine


async def ping(engine: AsyncEngine) -> None:
    """
    Run `SELECT 1` to prove the store is reachable.

    Raises:
        StoreError: If the database cannot be reached.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        raise StoreError(f"database unreachable: {e}") from e


async def create_tables(engine: AsyncEngine) -> None:
    """Create any missing tables. Existing tables are left untouched."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
    except SQLAlchemyError as e:
        raise StoreError(f"failed to create tables: {e}") from e
    logger.info("Database schema ready")


class UserStore:
    """
    User lookups against the shared engine.

    Attributes:
        engine: Async engine passed in at construction.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def get_by_username(self, username: str) -> UserRecord | None:
        """
        Fetch a user by username.

        Returns:
            The UserRecord, or None if no such user exists.

        Raises:
            StoreError: If the query fails.
        """
        stmt = select(
            users.c.id,
            users.c.username,
            users.c.password,
            users.c.team_id,
            users.c.avatar_url,
        ).where(users.c.username == username)

        try:
            async with self.engine.connect() as conn:
                row = (await conn.execute(stmt)).first()
        except SQLAlchemyError as e:
            logger.exception("User lookup failed")
            raise StoreError("failed to look up user") from e

        if row is None:
            return None
        return UserRecord(
            id=row.id,
            username=row.username,
            password_hash=row.password,
            team_id=row.team_id,
            avatar_url=row.avatar_url or "",
        )

    async def get_profile(self, user_id: int) -> UserProfile | None:
        """
        Fetch a user's public profile, joined with their team name.

        Returns:
            The UserProfile (team_name is "" for users without a team),
            or None if the user does not exist.

        Raises:
            StoreError: If the query fails.
        """
        stmt = (
            select(
                users.c.id,
                users.c.username,
                func.coalesce(teams.c.name, "").label("team_name"),
                users.c.avatar_url,
            )
            .select_from(users.outerjoin(teams, users.c.team_id == teams.c.id))
            .where(users.c.id == user_id)
        )

        try:
            async with self.engine.connect() as conn:
                row = (await conn.execute(stmt)).first()
        except SQLAlchemyError as e:
            logger.exception("Profile lookup failed for user %s", user_id)
            raise StoreError("failed to get user data") from e

        if row is None:
            return None
        return UserProfile(
            id=row.id,
            username=row.username,
            team_name=row.team_name,
            avatar_url=row.avatar_url or "",
        )

    async def add_user(
        self,
        username: str,
        password_hash: str,
        team_id: int | None = None,
        avatar_url: str | None = None,
    ) -> int:
        """
        Insert a user and return the new id.

        Raises:
            StoreError: If the insert fails (e.g. duplicate username).
        """
        stmt = users.insert().values(
            username=username,
            password=password_hash,
            team_id=team_id,
            avatar_url=avatar_url,
        )
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"failed to add user {username!r}") from e
        return result.inserted_primary_key[0]
