"""
FastAPI dependencies: sessions, orchestrator, API key guard
"""

from typing import AsyncGenerator, Optional
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from core.config import settings
from core.database import async_session_maker
from trail_import.orchestrator import ImportOrchestrator


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped database session"""
    async with async_session_maker() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    """Session factory for work that outlives the request (import workers)"""
    return async_session_maker


def get_orchestrator(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> ImportOrchestrator:
    return ImportOrchestrator(session_factory, settings=settings)


async def require_api_key(x_api_key: Optional[str] = Header(None)):
    """Guard import triggers when an API key is configured"""
    if settings.API_KEY and x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
