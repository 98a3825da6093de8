"""
Database layer — async SQLAlchemy 2.0 (asyncpg in production, aiosqlite locally).

Provides:
    • Database object owning the async engine and session factory
    • Dependency injection for FastAPI routes
    • Base model for ORM entities

Usage:
    from backend.app.core.database import Base, Database

    database = Database(settings.DATABASE_URL)
    async with database.session() as session:
        result = await session.execute(select(EmergencyContact))
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Dict

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


class Database:
    """Engine + session factory, constructed once per process."""

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 20,
        max_overflow: int = 10,
        echo: bool = False,
    ):
        engine_kwargs: Dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite"):
            # one shared connection so in-memory databases survive across sessions
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs["pool_size"] = pool_size
            engine_kwargs["max_overflow"] = max_overflow

        self.url = url
        self.engine = create_async_engine(url, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session; roll back if the block raises."""
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def init_models(self) -> None:
        """Create all tables (dev/test only — use migrations in production)."""
        # table classes register themselves on Base.metadata when imported
        from backend.app.emergency import tables  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialised")

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        """Dispose engine connections."""
        await self.engine.dispose()
        logger.info("Database connections closed")


# ── Dependency ──
async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: yields an async session from the app's database."""
    database: Database = request.app.state.container.database
    async with database.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
