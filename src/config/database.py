from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.config.settings import settings


def _get_async_database_url(url: str) -> str:
    """Convert database URL to async-compatible format.

    Hosting providers hand out postgres:// or postgresql:// URLs; the async
    engine needs the asyncpg driver spelled out. Plain sqlite:// URLs get
    aiosqlite.
    """
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://"):]
    return url


def _create_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        echo=False,
    )


_database_url = _get_async_database_url(settings.DATABASE_URL)
_is_sqlite = _database_url.startswith("sqlite")

engine = _create_engine(_database_url)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Short-lived session for work outside a request (background loops, startup)."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    """Create tables for the progression models."""
    from src.domains.progression import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # PostgreSQL enums don't pick up new members through create_all
    if not _is_sqlite:
        await _sync_enum_values()


async def _sync_enum_values() -> None:
    from src.domains.progression.models import ModifiedBy

    enum_updates = [
        ("modified_by_enum", [member.value for member in ModifiedBy]),
    ]

    async with engine.begin() as conn:
        for enum_name, expected_values in enum_updates:
            result = await conn.execute(
                text(
                    "SELECT enumlabel FROM pg_enum "
                    "WHERE enumtypid = (SELECT oid FROM pg_type WHERE typname = :enum_name)"
                ),
                {"enum_name": enum_name},
            )
            current_values = {row[0] for row in result.fetchall()}

            for value in expected_values:
                if value not in current_values:
                    await conn.execute(text(f"ALTER TYPE {enum_name} ADD VALUE IF NOT EXISTS '{value}'"))
