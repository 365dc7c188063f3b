"""
Async engine and session factory for the trail store.

Requests get a session per call (``api.dependencies.get_db``); import
workers get the factory and open one session each, so no session is ever
shared between concurrent tasks.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from core.config import settings


def build_engine(url: str = settings.DATABASE_URL, echo: bool = settings.DATABASE_ECHO) -> AsyncEngine:
    """Engine without a pool; asyncpg connections are opened per session"""
    return create_async_engine(url, echo=echo, poolclass=NullPool)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """
    Session factory used by routes, workers and tests.

    Job rows stay readable after their final commit; nothing is flushed
    before the batch write that owns it.
    """
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine()
async_session_maker = build_session_factory(engine)
