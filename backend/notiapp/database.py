# @TASK P0-T0.3 - Remote store engine, session factory and request-scoped sessions

"""Database plumbing for the remote store.

Production runs on PostgreSQL (asyncpg); local development and the test
suite point ``DATABASE_URL`` at an aiosqlite file instead.
"""

import logging
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from notiapp.config import get_settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        # SQLite has no server to ping; wait on the file lock instead of failing.
        return {"connect_args": {"timeout": 30}}
    return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}


def build_engine(url: str | None = None) -> AsyncEngine:
    url = url or get_settings().async_database_url
    return create_async_engine(url, echo=False, **_engine_options(url))


engine = build_engine()

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for the remote store models (notes, push subscriptions)."""


async def create_tables(bind: AsyncEngine | None = None) -> None:
    """Create missing remote tables.  Alembic owns schema changes after that."""
    from notiapp import models  # noqa: F401 - registers the models with Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            logger.debug("[DB] Rolling back request session")
            await session.rollback()
            raise
