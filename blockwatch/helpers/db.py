"""Database connection helpers."""

import os
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel
from sqlalchemy import BigInteger, Integer, event, inspect
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from blockwatch.helpers.logging import get_logger


# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)

Base = declarative_base()

# SQLite only auto-increments INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


def get_database_url() -> str:
    """Get the database URL from environment variables.

    ``DATABASE_URL`` wins when set; otherwise the URL is assembled from the
    ``POSTGRE_*`` variables.

    Returns:
        str: SQLAlchemy async database URL

    Raises:
        ValueError: If required environment variables are not set
    """
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    postgre_host = os.getenv("POSTGRE_HOST")
    if not postgre_host:
        msg = "POSTGRE_HOST is not set"
        raise ValueError(msg)

    postgre_port = os.getenv("POSTGRE_PORT", "5432")

    postgre_user = os.getenv("POSTGRE_USER")
    if not postgre_user:
        msg = "POSTGRE_USER is not set"
        raise ValueError(msg)

    postgre_password = os.getenv("POSTGRE_PASSWORD")
    if not postgre_password:
        msg = "POSTGRE_PASSWORD is not set"
        raise ValueError(msg)

    postgre_db = os.getenv("POSTGRE_DB")
    if not postgre_db:
        msg = "POSTGRE_DB is not set"
        raise ValueError(msg)

    # Use psycopg (version 3) as the async PostgreSQL driver
    return (
        "postgresql+psycopg://"
        f"{postgre_user}:{postgre_password}"
        f"@{postgre_host}:{postgre_port}"
        f"/{postgre_db}"
    )


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the async engine and the session factory of one process."""

    def __init__(self, database_url: str | None = None, *, echo: bool = False) -> None:
        """Create the engine.

        Args:
            database_url: SQLAlchemy async URL, defaults to ``get_database_url()``
            echo: Whether to log emitted SQL
        """
        self.url = database_url or get_database_url()
        self.engine = create_async_engine(self.url, echo=echo)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        self.sessionmaker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def session(self) -> AsyncSession:
        """Open a plain session; the caller controls commits."""
        return self.sessionmaker()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Open a session inside a transaction committed on clean exit.

        Example:
            ```python
            async with database.transaction() as session:
                await store.mark_blocks_as_pruned(session, blocks)
            ```
        """
        async with self.sessionmaker() as session, session.begin():
            yield session

    async def create_tables(self) -> None:
        """Create every table registered on ``Base.metadata``."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    async def drop_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def close(self) -> None:
        await self.engine.dispose()


def dialect_insert(session: AsyncSession, db_model_class: type[Any]) -> Any:
    """Return the dialect specific INSERT construct supporting ON CONFLICT.

    Args:
        session: Session bound to the target engine
        db_model_class: The SQLAlchemy model class

    Returns:
        A PostgreSQL or SQLite ``Insert`` for the model
    """
    if session.bind.dialect.name == "sqlite":
        return sqlite_insert(db_model_class)
    return pg_insert(db_model_class)


def _primary_key_columns(db_model_class: type[Any]) -> list[str]:
    mapper = inspect(db_model_class)
    if not mapper:
        msg = f"Cannot inspect {db_model_class}"
        raise ValueError(msg)
    return [col.name for col in mapper.primary_key]


async def upsert_models[DBModelType](
    session: AsyncSession,
    db_model_class: type[DBModelType],
    models: Sequence[BaseModel | dict[str, Any]],
    extra_fields: dict[str, Any] | None = None,
) -> None:
    """Upsert rows using INSERT ... ON CONFLICT DO UPDATE on the primary key.

    The statement runs in the caller's session so it shares the caller's
    transaction.

    Args:
        session: Session to execute in
        db_model_class: The SQLAlchemy model class (e.g., Erc20BalanceDB)
        models: Pydantic models or plain dicts with data to upsert
        extra_fields: Additional fields not in the models (e.g., block_hash)

    Examples:
        await upsert_models(
            session,
            Erc20BalanceDB,
            [balance1, balance2],
            extra_fields={"block_hash": block_hash},
        )

    Raises:
        ValueError: If the database model class cannot be inspected
    """
    if not models:
        return

    data = [
        model.model_dump() if isinstance(model, BaseModel) else dict(model)
        for model in models
    ]
    if extra_fields:
        for item in data:
            item.update(extra_fields)

    pk_columns = _primary_key_columns(db_model_class)
    all_columns = set(data[0].keys())

    stmt = dialect_insert(session, db_model_class).values(data)
    update_dict = {
        col: stmt.excluded[col] for col in all_columns if col not in pk_columns
    }
    if update_dict:
        stmt = stmt.on_conflict_do_update(index_elements=pk_columns, set_=update_dict)
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=pk_columns)

    await session.execute(stmt)


async def insert_ignore[DBModelType](
    session: AsyncSession,
    db_model_class: type[DBModelType],
    rows: Sequence[dict[str, Any]],
    index_elements: Sequence[str] | None = None,
) -> None:
    """Insert rows, skipping those that conflict on ``index_elements``.

    Args:
        session: Session to execute in
        db_model_class: The SQLAlchemy model class
        rows: Column dicts to insert
        index_elements: Conflict target, defaults to the primary key
    """
    if not rows:
        return

    conflict_target = list(index_elements or _primary_key_columns(db_model_class))
    stmt = (
        dialect_insert(session, db_model_class)
        .values(list(rows))
        .on_conflict_do_nothing(index_elements=conflict_target)
    )
    await session.execute(stmt)


__all__ = [
    "Base",
    "BigIntPK",
    "Database",
    "dialect_insert",
    "get_database_url",
    "insert_ignore",
    "upsert_models",
]
