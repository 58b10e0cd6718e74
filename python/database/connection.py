"""
Engine and session handling for the case store.

The deduplication service reads candidates through session_scope() and
writes each decision inside one UnitOfWork, so the audit row and the case
update commit together or not at all. Connection failures are retried
with tenacity; every other error surfaces on the first attempt.
"""

import os
import logging
from typing import Generator, Optional, Callable
from contextlib import contextmanager
from functools import lru_cache
from dataclasses import dataclass

from sqlalchemy import create_engine, event, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

logger = logging.getLogger(__name__)


@dataclass
class DatabaseSettings:
    """Where the case store lives and how its pool is sized."""
    host: str = "localhost"
    port: int = 5432
    database: str = "case_database"
    user: str = "dedup_user"
    password: str = "dedup_password"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False
    url: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'DatabaseSettings':
        """Read DB_* variables; DATABASE_URL overrides the discrete fields."""
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "case_database"),
            user=os.getenv("DB_USER", "dedup_user"),
            password=os.getenv("DB_PASSWORD", "dedup_password"),
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "1800")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true",
            url=os.getenv("DATABASE_URL") or None
        )

    def get_url(self) -> str:
        if self.url:
            return self.url
        return (
            f"postgresql+psycopg2://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    def pool_settings(self) -> dict:
        """Keyword arguments for create_engine() against PostgreSQL."""
        return {
            "poolclass": QueuePool,
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
        }


@lru_cache()
def get_settings() -> DatabaseSettings:
    return DatabaseSettings.from_env()


def create_retry_decorator(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10
) -> Callable:
    """
    Retry on OperationalError only, with exponential backoff.

    Args:
        max_attempts: Attempts before the last error is re-raised
        min_wait: Shortest pause between attempts (seconds)
        max_wait: Longest pause between attempts (seconds)
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(OperationalError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


db_retry = create_retry_decorator()


class UnitOfWork:
    """
    One explicit transaction.

    Nothing is committed unless commit() is called; leaving the block
    with an exception rolls back.

    Usage:
        with UnitOfWork(session_factory) as uow:
            AuditRepository(uow.session).append(...)
            uow.commit()
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._session: Optional[Session] = None

    def __enter__(self) -> 'UnitOfWork':
        self._session = self._session_factory()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        self.close()

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("UnitOfWork not started. Use as context manager.")
        return self._session

    def commit(self) -> None:
        if self._session:
            self._session.commit()

    def rollback(self) -> None:
        if self._session:
            self._session.rollback()

    def close(self) -> None:
        if self._session:
            self._session.close()
            self._session = None


class DatabaseSessionProvider:
    """
    Owns the engine and session factory for the case store.

    The API creates one at startup through init_db(); tests build one
    over an in-memory SQLite engine with create_test_provider().
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        self._settings = settings or get_settings()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None
        self._initialized = False

    def init(self, echo: Optional[bool] = None) -> None:
        """Connect (with retry) and build the session factory. Idempotent."""
        if self._initialized:
            return

        if echo is not None:
            self._settings.echo = echo

        if self._engine is None:
            self._engine = self._connect()

        # Search results are handed back after the session closes.
        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )

        @event.listens_for(self._engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            logger.debug("Opened case store connection")

        self._initialized = True
        logger.info("Case store ready (%s)", self._engine.dialect.name)

    @db_retry
    def _connect(self) -> Engine:
        url = self._settings.get_url()
        kwargs = {} if url.startswith("sqlite") else self._settings.pool_settings()

        engine = create_engine(url, echo=self._settings.echo, **kwargs)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self.init()
        return self._session_factory

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session that commits on clean exit and rolls back on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @db_retry
    def health_check(self) -> bool:
        """True when a trivial query round-trips to the case store."""
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error("Case store health check failed: %s", e)
            return False

    def close(self) -> None:
        if self._engine:
            self._engine.dispose()
            logger.info("Case store engine disposed")
        self._initialized = False


_db_provider: Optional[DatabaseSessionProvider] = None


def get_db_provider() -> DatabaseSessionProvider:
    """The process-wide provider, created lazily from the environment."""
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider()
    return _db_provider


def init_db(echo: bool = False) -> DatabaseSessionProvider:
    """Connect the process-wide provider. Called from API startup."""
    provider = get_db_provider()
    provider.init(echo=echo)
    return provider


def close_db() -> None:
    """Dispose the process-wide provider. Called from API shutdown."""
    global _db_provider
    if _db_provider:
        _db_provider.close()
        _db_provider = None


def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """Provider over a caller-supplied engine, already initialized."""
    provider = DatabaseSessionProvider(
        settings=settings or DatabaseSettings(),
        engine=engine
    )
    provider.init()
    return provider
