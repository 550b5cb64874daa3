"""
Database connection management for SQLAlchemy (async) and Redis.
"""
import asyncio
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
import redis.asyncio as redis
import structlog

from outreach.config.settings import settings

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def to_async_url(database_url: str) -> str:
    """Converts a sync database URL to its async driver equivalent."""
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


class DatabaseManager:
    """Manages database connections and sessions."""

    def __init__(self):
        self.engine = None
        self.async_session_maker = None
        self.redis_pool = None

    async def initialize(self):
        """Initialize database connections and create tables."""
        await self._setup_database()
        await self._setup_redis()

    async def _setup_database(self):
        """Setup database async engine."""
        database_url = to_async_url(settings.database.url)

        engine_kwargs = {"echo": settings.database.echo, "pool_pre_ping": True}
        if "postgresql" in database_url:
            engine_kwargs.update(
                pool_size=20,
                max_overflow=30,
                pool_timeout=30,
                pool_recycle=3600,
                connect_args={
                    "server_settings": {
                        "statement_timeout": "30s",
                        "lock_timeout": "10s"
                    }
                }
            )

        self.engine = create_async_engine(database_url, **engine_kwargs)

        self.async_session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database initialized", url=database_url)

    async def _setup_redis(self):
        """Setup Redis connection pool."""
        try:
            redis_url = settings.database.redis_url
            self.redis_pool = redis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=20,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30
            )

            # Test connection with timeout
            await asyncio.wait_for(self.redis_pool.ping(), timeout=5.0)
            logger.info("Redis connection established", url=redis_url)

        except Exception as e:
            logger.warning("Redis connection failed, using in-memory fallback", error=str(e))
            self.redis_pool = None

    async def get_redis(self) -> Optional[redis.Redis]:
        """Get Redis connection."""
        return self.redis_pool

    async def close(self):
        """Close all database connections."""
        if self.engine:
            await self.engine.dispose()

        if self.redis_pool:
            await self.redis_pool.aclose()

        logger.info("Database connections closed")


# Global database manager instance
db_manager = DatabaseManager()
