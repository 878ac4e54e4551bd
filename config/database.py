"""
config/database.py
Async SQLAlchemy engines, session factories, and base models.
Each service owns its own database, so each gets its own declarative
base and its own ServiceDatabase (engine + session factory).
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Type

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from config.settings import settings


# ── Base Models (one metadata per service) ────────────────────
class AccountsBase(DeclarativeBase):
    """Tables owned by the users service."""
    pass


class BookingsBase(DeclarativeBase):
    """Tables owned by the bookings service (catalog + bookings)."""
    pass


class PaymentsBase(DeclarativeBase):
    """Tables owned by the payments service."""
    pass


class NotificationsBase(DeclarativeBase):
    """Tables owned by the notifications service."""
    pass


# ── Engine + Session Factory ──────────────────────────────────
class ServiceDatabase:
    """
    Lazily-built async engine and session factory for one service.

    Usage:
        @router.get("/bookings")
        async def list_bookings(db: AsyncSession = Depends(bookings_db.get_db)):
            ...
    """

    def __init__(self, name: str, url: str, base: Type[DeclarativeBase]):
        self.name = name
        self.url = url
        self.base = base
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            if self.is_sqlite:
                # SQLite uses a single file lock; wait for it instead of failing fast
                self._engine = create_async_engine(
                    self.url,
                    connect_args={"timeout": 30},
                    echo=settings.DEBUG,
                )
            else:
                self._engine = create_async_engine(
                    self.url,
                    pool_size=settings.DATABASE_POOL_SIZE,
                    max_overflow=settings.DATABASE_MAX_OVERFLOW,
                    pool_timeout=settings.DATABASE_POOL_TIMEOUT,
                    pool_pre_ping=True,          # Detect stale connections
                    pool_recycle=3600,           # Recycle connections every hour
                    echo=settings.DEBUG,         # Log SQL in debug mode
                )
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,      # Don't expire after commit (async-safe)
                autoflush=False,
            )
        return self._session_factory

    def configure(self, url: str) -> None:
        """Point this database at a new URL. The engine is rebuilt on next use."""
        self.url = url
        self._engine = None
        self._session_factory = None

    async def get_db(self) -> AsyncGenerator[AsyncSession, None]:
        """
        FastAPI dependency: yields an async database session.
        Auto-commits on success, rolls back on error.
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Context manager version for use outside of FastAPI routes."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init(self) -> None:
        """Create all tables for this service. Run during app startup."""
        async with self.engine.begin() as conn:
            await conn.run_sync(self.base.metadata.create_all)

    async def ping(self) -> bool:
        async with self.session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True

    async def dispose(self) -> None:
        """Dispose engine. Run during app shutdown."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


accounts_db = ServiceDatabase("users", settings.USERS_DATABASE_URL, AccountsBase)
bookings_db = ServiceDatabase("bookings", settings.BOOKINGS_DATABASE_URL, BookingsBase)
payments_db = ServiceDatabase("payments", settings.PAYMENTS_DATABASE_URL, PaymentsBase)
notifications_db = ServiceDatabase(
    "notifications", settings.NOTIFICATIONS_DATABASE_URL, NotificationsBase
)

DATABASES = {
    "users": accounts_db,
    "bookings": bookings_db,
    "payments": payments_db,
    "notifications": notifications_db,
}
