"""Database engines and sessions, one datastore per region."""

import os
import asyncio
import logging
from typing import AsyncGenerator, Dict, Iterable, List, Optional
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from ..errors import ValidationError
from . import models

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./settlements_{region}.db"


def normalize_database_url(db_url: str) -> str:
    """Rewrite plain PostgreSQL URLs to the asyncpg driver."""
    if db_url.startswith("postgresql://"):
        return db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if db_url.startswith("postgres://"):
        return db_url.replace("postgres://", "postgresql+asyncpg://", 1)
    return db_url


def get_database_url(region_code: str) -> str:
    """
    Get the database URL for a region.

    Looks up ``DATABASE_URL_<REGION>`` first, then ``DATABASE_URL`` (which may
    contain a ``{region}`` placeholder), then falls back to a local SQLite file.
    """
    region = region_code.upper()
    db_url = os.getenv(f"DATABASE_URL_{region}") or os.getenv("DATABASE_URL")
    if db_url:
        return normalize_database_url(db_url.replace("{region}", region.lower()))
    return DEFAULT_DATABASE_URL.format(region=region.lower())


def create_async_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine.

    Args:
        database_url: Database connection URL.
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool.
        max_overflow: Maximum overflow connections beyond pool_size.

    Returns:
        AsyncEngine instance.
    """
    url = normalize_database_url(database_url)

    # StaticPool keeps a single SQLite connection alive across async operations
    if "sqlite" in url:
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return sa_create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
    )


def get_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


class DatabaseManager:
    """
    Lifecycle of one region's engine and session factory.

    Example:
        db_manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
        await db_manager.initialize()

        async with db_manager.session() as session:
            ...

        await db_manager.shutdown()
    """

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        self.database_url = database_url
        self.echo = echo
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def initialized(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")
        return self._engine

    async def initialize(self, create_tables: bool = False) -> None:
        """Initialize the database connection."""
        self._engine = create_async_engine(
            self.database_url,
            self.echo,
            self.pool_size,
            self.max_overflow,
        )
        self._session_factory = get_async_session_factory(self._engine)

        if create_tables:
            async with self._engine.begin() as conn:
                await conn.run_sync(models.Base.metadata.create_all)

    async def shutdown(self) -> None:
        """Shutdown the database connection."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session; commits on success, rolls back on error."""
        if self._session_factory is None:
            raise RuntimeError(
                "DatabaseManager not initialized. Call initialize() first."
            )

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()


class RegionDatabaseRegistry:
    """
    Maps region codes to their own DatabaseManager.

    Managers are initialized on first use, so a region whose datastore is
    unreachable only fails its own job.
    """

    def __init__(
        self,
        urls: Optional[Dict[str, str]] = None,
        echo: bool = False,
        create_tables: bool = False,
    ):
        self.echo = echo
        self.create_tables = create_tables
        self._managers: Dict[str, DatabaseManager] = {}
        self._lock = asyncio.Lock()
        for region_code, url in (urls or {}).items():
            self.register(region_code, url)

    @classmethod
    def from_env(
        cls,
        region_codes: Iterable[str],
        echo: bool = False,
        create_tables: bool = False,
    ) -> "RegionDatabaseRegistry":
        """Build a registry with one URL per region from the environment."""
        return cls(
            {code: get_database_url(code) for code in region_codes},
            echo=echo,
            create_tables=create_tables,
        )

    @property
    def regions(self) -> List[str]:
        return sorted(self._managers)

    def register(self, region_code: str, database_url: str) -> DatabaseManager:
        manager = DatabaseManager(database_url, echo=self.echo)
        self._managers[region_code.upper()] = manager
        return manager

    async def manager_for(self, region_code: str) -> DatabaseManager:
        """Return the region's manager, initializing it on first use.

        Raises:
            ValidationError: If the region has no datastore configured.
        """
        manager = self._managers.get(region_code.upper())
        if manager is None:
            raise ValidationError(f"no datastore configured for region {region_code}")
        if not manager.initialized:
            async with self._lock:
                if not manager.initialized:
                    logger.info(f"Initializing datastore for region {region_code}")
                    await manager.initialize(create_tables=self.create_tables)
        return manager

    @asynccontextmanager
    async def session(self, region_code: str) -> AsyncGenerator[AsyncSession, None]:
        """Open a session on the region's datastore."""
        manager = await self.manager_for(region_code)
        async with manager.session() as session:
            yield session

    async def shutdown(self) -> None:
        for region_code, manager in self._managers.items():
            if manager.initialized:
                await manager.shutdown()
                logger.info(f"Datastore for region {region_code} closed")
