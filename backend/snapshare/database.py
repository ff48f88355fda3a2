"""Async SQLAlchemy engine and session factory.

Usage in routes:
    from snapshare.database import get_db

    @router.get("/items")
    async def list_items(db: AsyncSession = Depends(get_db)):
        result = await db.execute(select(Item))
        return result.scalars().all()
"""
import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from snapshare.config import settings

logger = logging.getLogger(__name__)

# A refused or dropped connection can surface before SQLAlchemy wraps it
STORE_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)

if settings.DATABASE_URL.startswith("sqlite"):
    # aiosqlite connections are bound to the loop that opened them
    _engine_options = {"poolclass": NullPool}
else:
    _engine_options = {"pool_size": 10, "max_overflow": 20, "pool_pre_ping": True}

engine = create_async_engine(settings.DATABASE_URL, echo=False, **_engine_options)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def rollback_quietly(session: AsyncSession) -> None:
    """Roll back after a store failure; a dead connection may refuse that too."""
    try:
        await session.rollback()
    except STORE_ERRORS as e:
        logger.warning(f"Rollback failed: {e}")
