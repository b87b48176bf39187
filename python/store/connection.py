"""
Store Connection Management for the sanctions watchlist service

This module provides:
- Session providers wrapping a SQLAlchemy engine (one per capability:
  the read endpoint and the write endpoint may differ)
- Connection pooling and retry on transient connection errors
- Health checks used by the API health endpoint

Uses SQLAlchemy 2.0 style with proper typing support.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Generator, Optional

from sqlalchemy import create_engine, event, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from config_manager import StoreConfig
from store.models import Base

logger = logging.getLogger(__name__)


# ============================================
# CONFIGURATION
# ============================================

@dataclass
class StoreSettings:
    """Connection settings for one store endpoint."""
    url: str
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False

    @classmethod
    def from_config(cls, config: StoreConfig, url: str) -> 'StoreSettings':
        """Create settings for one of the configured URLs."""
        return cls(
            url=url,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            echo=config.echo
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def engine_kwargs(self) -> dict:
        """Pool settings; SQLite manages its own pool."""
        if self.is_sqlite:
            # API requests run store calls on executor threads
            return {"echo": self.echo, "connect_args": {"check_same_thread": False}}
        return {
            "echo": self.echo,
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
        }


# ============================================
# RETRY LOGIC
# ============================================

def create_retry_decorator(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10
) -> Callable:
    """
    Create a retry decorator for store connection operations.

    Args:
        max_attempts: Maximum number of retry attempts
        min_wait: Minimum wait time between retries (seconds)
        max_wait: Maximum wait time between retries (seconds)
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(OperationalError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


db_retry = create_retry_decorator()


# ============================================
# SESSION PROVIDER
# ============================================

class DatabaseSessionProvider:
    """
    Provides sessions for one store endpoint.

    Usage:
        provider = DatabaseSessionProvider(StoreSettings(url="sqlite:///store.db"))
        with provider.session_scope() as session:
            session.add(row)
            # Auto-commits on exit, rollbacks on exception
    """

    def __init__(
        self,
        settings: Optional[StoreSettings] = None,
        engine: Optional[Engine] = None
    ):
        """
        Args:
            settings: Endpoint settings (required unless engine is given)
            engine: Pre-created engine (for testing)
        """
        if settings is None and engine is None:
            raise ValueError("DatabaseSessionProvider needs settings or an engine")
        self._settings = settings
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None
        self._initialized = False

    def init(self) -> None:
        """Initialize the engine and session factory."""
        if self._initialized:
            return

        if self._engine is None:
            self._engine = self._create_engine_with_retry()

        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )

        self._setup_event_listeners()

        self._initialized = True
        logger.info("Store session provider initialized: %s", self._engine.url.render_as_string(hide_password=True))

    @db_retry
    def _create_engine_with_retry(self) -> Engine:
        """Create engine with retry logic."""
        engine = create_engine(self._settings.url, **self._settings.engine_kwargs())

        # Verify connection
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        return engine

    def _setup_event_listeners(self) -> None:
        """Set up SQLAlchemy event listeners for debugging."""

        @event.listens_for(self._engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            logger.debug("New store connection established")

        @event.listens_for(self._engine, "checkout")
        def on_checkout(dbapi_connection, connection_record, connection_proxy):
            logger.debug("Connection checked out from pool")

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        if self._engine is None:
            raise RuntimeError("Store not initialized. Call init() first.")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get the session factory."""
        if self._session_factory is None:
            raise RuntimeError("Store not initialized. Call init() first.")
        return self._session_factory

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for session with auto-commit/rollback.
        """
        if self._session_factory is None:
            self.init()

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create all store tables."""
        if self._engine is None:
            self.init()
        Base.metadata.create_all(self._engine)
        logger.info("Store tables created")

    def health_check(self) -> bool:
        """
        Check if the store connection is healthy.

        Returns:
            True if connection is healthy, False otherwise
        """
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Store health check failed: {e}")
            return False

    def close(self) -> None:
        """Close connections and clean up."""
        if self._engine:
            self._engine.dispose()
            logger.info("Store engine disposed")
        self._initialized = False
        self._session_factory = None


def create_provider(config: StoreConfig, url: Optional[str]) -> Optional[DatabaseSessionProvider]:
    """
    Build a provider for one configured URL.

    Returns:
        Provider, or None when the URL is empty (capability not configured)
    """
    if not url:
        return None
    return DatabaseSessionProvider(settings=StoreSettings.from_config(config, url))


# ============================================
# PYTEST FIXTURES SUPPORT
# ============================================

def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[StoreSettings] = None
) -> DatabaseSessionProvider:
    """
    Create a provider for testing.

    Args:
        engine: Pre-created engine (e.g., in-memory SQLite)
        settings: Custom settings for testing
    """
    return DatabaseSessionProvider(settings=settings, engine=engine)
