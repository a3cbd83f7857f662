from __future__ import annotations

from collections.abc import AsyncGenerator
import os
import sys

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from src.config import settings


_engine_kwargs: dict = {"pool_pre_ping": True}

# NOTE: Under pytest the ASGI app can be driven from more than one event loop and
# pooled asyncpg connections must not be reused across loops.
if os.getenv("PYTEST_CURRENT_TEST") or ("pytest" in sys.modules):
    _engine_kwargs["poolclass"] = NullPool

engine = create_async_engine(settings.database_url, **_engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


def make_worker_engine(database_url: str | None = None) -> AsyncEngine:
    """Engine for the job worker.

    Each Celery task runs its own event loop (asyncio.run), so the worker never
    shares pooled connections with another loop.
    """

    return create_async_engine(database_url or settings.database_url, poolclass=NullPool)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session
