"""
Engine, session factory and dialect helpers.
"""
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy import MetaData, Table
from typing import Any, AsyncGenerator, Optional
import logging

from awareness.core.config import settings


logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


class Base(DeclarativeBase):
    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s"
        }
    )


def create_engine_for(url: Optional[str] = None, **overrides: Any) -> AsyncEngine:
    """
    Build an async engine with per-backend connection settings.

    SQLite connections wait up to ``DATABASE_BUSY_TIMEOUT`` seconds for a
    competing writer instead of failing with "database is locked". Server
    databases get pre-ping so stale pooled connections are replaced.
    Keyword overrides are passed straight to ``create_async_engine``.
    """
    url = url or settings.DATABASE_URL
    options: dict = {"echo": settings.DATABASE_ECHO}

    if make_url(url).get_backend_name() == "sqlite":
        options["connect_args"] = {
            "timeout": settings.DATABASE_BUSY_TIMEOUT,
            "check_same_thread": False,
        }
    else:
        options["pool_pre_ping"] = True

    options.update(overrides)
    logger.debug(f"Creating engine for {make_url(url).render_as_string(hide_password=True)}")
    return create_async_engine(url, **options)


def upsert_insert(db: AsyncSession, table: Table):
    """INSERT construct that supports ON CONFLICT on the session's backend."""
    dialect_name = db.get_bind().dialect.name
    insert = _UPSERT_INSERTS.get(dialect_name)
    if insert is None:
        raise NotImplementedError(f"Upsert is not supported on {dialect_name}")
    return insert(table)


engine = create_engine_for()

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: Optional[AsyncEngine] = None):
    # Register every model on Base.metadata before creating tables
    import awareness.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
