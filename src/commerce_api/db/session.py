"""Async engine, transaction scope and the request session dependency.

Writes commit once per request. A constraint failure at commit time goes
through the same guard as explicit writes, so the caller always sees a
``ConflictError`` with a classified message and never a driver error.
"""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from commerce_api.config import settings
from commerce_api.db.guard import integrity_guard

# Predictable constraint names; db.errors.classify echoes them back to clients.
NAMING_CONVENTION: dict[str, str] = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base whose constraints follow ``NAMING_CONVENTION``."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


engine = create_async_engine(
    settings.database_url,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_timeout=settings.db_pool_timeout,
    pool_recycle=settings.db_pool_recycle,
    pool_pre_ping=settings.db_pool_pre_ping,
    echo=settings.db_echo,
    connect_args={"command_timeout": settings.db_statement_timeout},
)

async_session = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def transaction() -> AsyncIterator[AsyncSession]:
    """Open a session, commit it under ``integrity_guard`` and roll back on error.

    Usage outside a request (workers, scripts)::

        async with transaction() as session:
            session.add(product)
    """
    async with async_session() as session:
        try:
            yield session
            with integrity_guard():
                await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one transaction per request."""
    async with transaction() as session:
        yield session


async def ping(session: AsyncSession) -> None:
    """Round-trip a trivial query; raises if the database is unreachable."""
    await session.execute(text("SELECT 1"))


async def shutdown() -> None:
    """Close all pooled database connections."""
    await engine.dispose()
