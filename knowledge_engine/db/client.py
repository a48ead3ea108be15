"""
Async Database Client

Uses SQLAlchemy 2.0 async engines (asyncpg in production, aiosqlite in tests).
The `Database` object is passed explicitly to every component that needs
storage; there is no module-level engine.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.db.models import Base
from knowledge_engine.kernel.errors import ConflictError, KnowledgeError, RetrievalError

logger = structlog.get_logger()


class Database:
    """Engine plus session factory for one database."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_url(cls, database_url: str, **engine_kwargs: object) -> "Database":
        return cls(create_async_engine(database_url, **engine_kwargs))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Database":
        """Build the engine with pooling configured from settings."""
        settings = settings or get_settings()
        database_url = settings.database_url

        engine_kwargs: dict[str, object] = {
            "echo": settings.log_level == "DEBUG",
        }
        if settings.db_pool_mode == "null" or database_url.startswith("sqlite"):
            engine_kwargs["poolclass"] = NullPool
        else:
            engine_kwargs["pool_size"] = max(1, int(settings.db_pool_size))
            engine_kwargs["max_overflow"] = max(0, int(settings.db_pool_max_overflow))
            engine_kwargs["pool_timeout"] = max(1, int(settings.db_pool_timeout_seconds))
            engine_kwargs["pool_recycle"] = max(60, int(settings.db_pool_recycle_seconds))
            engine_kwargs["pool_pre_ping"] = True

        database = cls.from_url(database_url, **engine_kwargs)
        logger.info(
            "Database engine initialized",
            url=database_url[:50] + "...",
            pool_mode=settings.db_pool_mode,
        )
        return database

    async def create_all(self) -> None:
        """Create all tables (tests and local development; production uses Alembic)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine disposed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Open a session wrapping one transaction.

        Usage:
            async with db.session() as session:
                result = await session.execute(...)

        Commits on normal exit, rolls back on any exception. Driver failures
        surface as RetrievalError; engine errors pass through untouched.
        """
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except KnowledgeError:
            await _safe_rollback(session)
            raise
        except IntegrityError as exc:
            # Lost a race on a natural key; the caller re-reads and retries.
            await _safe_rollback(session)
            logger.warning("Concurrent write conflict", error=str(exc.orig))
            raise ConflictError(
                message="Concurrent write conflict",
                meta={"error_type": type(exc).__name__},
            ) from exc
        except (SQLAlchemyError, OSError) as exc:
            await _safe_rollback(session)
            logger.error("Database operation failed", error=str(exc))
            raise RetrievalError(
                message="Knowledge store unavailable",
                meta={"error_type": type(exc).__name__},
            ) from exc
        except BaseException:
            await _safe_rollback(session)
            raise
        finally:
            await session.close()


async def _safe_rollback(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Rollback failed", error=str(exc))
