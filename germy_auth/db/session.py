"""
Database Session Management

Async SQLAlchemy engine and session factory.
"""

import logging
import ssl
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from germy_auth.config import get_settings
from germy_auth.db.models import Base
from germy_auth.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


def _get_ssl_context():
    """Create SSL context for cloud PostgreSQL."""
    ssl_context = ssl.create_default_context()
    ssl_context.check_hostname = False
    ssl_context.verify_mode = ssl.CERT_NONE
    return ssl_context


class Database:
    """
    Owns the engine and session factory for one database URL.

    Either build from a URL (``init`` creates the engine) or hand in an
    existing engine, as the tests do.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        echo: Optional[bool] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        settings = get_settings()
        self.url = url or settings.DATABASE_URL
        self.echo = settings.DATABASE_ECHO if echo is None else echo
        self._engine: Optional[AsyncEngine] = engine
        self._session_maker: Optional[async_sessionmaker] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            connect_args = {}
            # Detect cloud PostgreSQL (Neon, Supabase)
            if "neon.tech" in self.url or "supabase" in self.url:
                logger.info("Detected cloud PostgreSQL, enabling SSL context")
                connect_args["ssl"] = _get_ssl_context()

            logger.info(f"Creating engine with URL: {self.url[:60]}...")
            self._engine = create_async_engine(
                self.url,
                echo=self.echo,
                poolclass=NullPool,
                connect_args=connect_args,
            )
        return self._engine

    @property
    def session_maker(self) -> async_sessionmaker:
        if self._session_maker is None:
            self._session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_maker

    async def init(self, create_tables: bool = False) -> None:
        """Open the engine; optionally create tables (dev and tests only)."""
        engine = self.engine
        if create_tables:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None
            logger.info("Database connection closed")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Session that commits on success and rolls back on error.

        IntegrityError passes through for the store to map onto domain
        conflicts; every other database fault becomes StoreUnavailableError.
        """
        try:
            async with self.session_maker() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        except IntegrityError:
            raise
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Database call failed: {e!r}")
            raise StoreUnavailableError(details={"error": repr(e)}) from e
