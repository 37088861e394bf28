"""
SQLAlchemy Base Configuration

This module provides the declarative base, the async engine and the
transactional session scope used by the SQL repositories.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import MetaData
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from linguaiq.common.config import DatabaseConfig, get_config
from linguaiq.common.error_handling import DatabaseError
from linguaiq.common.logger import app_logger

logger = app_logger.getChild("database")

# Configure naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}

metadata = MetaData(naming_convention=convention)

Base = declarative_base(metadata=metadata)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ModelBase(Base):
    """Base class for all SQLAlchemy models."""

    __abstract__ = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert model instance to dictionary."""
        return {
            prop.columns[0].name: getattr(self, prop.key)
            for prop in self.__mapper__.column_attrs
        }

    def update(self, data: Dict[str, Any]) -> None:
        """Update model instance from dictionary."""
        for key, value in data.items():
            if hasattr(self, key):
                setattr(self, key, value)


def get_engine_kwargs(url: str, echo: bool) -> Dict[str, Any]:
    """
    Engine keyword arguments for the database type.

    PostgreSQL gets connection pool tuning; SQLite uses the defaults.
    """
    kwargs: Dict[str, Any] = {"echo": echo}
    if url.startswith("postgresql"):
        kwargs.update({
            "pool_pre_ping": True,
            "pool_recycle": 300,
        })
    return kwargs


class Database:
    """
    Async engine plus session factory.

    Args:
        url: SQLAlchemy async URL (``DatabaseConfig.url`` when None)
        echo: Log SQL statements (``DatabaseConfig.echo`` when None)
    """

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        db_config: DatabaseConfig = get_config().database
        self.url = url or db_config.url
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            **get_engine_kwargs(self.url, db_config.echo if echo is None else echo)
        )
        self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def create_all(self) -> None:
        """Create every table registered on the metadata."""
        async with self.engine.begin() as connection:
            await connection.run_sync(metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as connection:
            await connection.run_sync(metadata.drop_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session_scope(self) -> AsyncIterator[AsyncSession]:
        """
        Transactional session: committed on success, rolled back on error.

        SQLAlchemy failures are re-raised as ``DatabaseError``; every other
        exception propagates unchanged after the rollback.
        """
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise DatabaseError("Database operation failed", cause=e) from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
