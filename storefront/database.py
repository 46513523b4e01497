# storefront/database.py
import os
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base

# PostgreSQL via asyncpg in deployments; tests hand in an aiosqlite URL
DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    "postgresql+asyncpg://postgres:postgres@db:5432/storefront_db",
)

Base = declarative_base()


def build_engine(url: str = DATABASE_URL, **kwargs) -> AsyncEngine:
    kwargs.setdefault("echo", os.getenv("SQL_ECHO", "0") == "1")
    if url.startswith("postgresql"):
        # settlement runs short transactions; drop connections the server closed
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, **kwargs)


def build_session_maker(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


async def create_tables(bind: AsyncEngine) -> None:
    """Create missing tables. Development and tests only; deployments run alembic."""
    from . import models  # noqa: F401  registers the tables on Base

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


engine = build_engine()
async_session_maker = build_session_maker(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session
