"""
SQLAlchemy Database Manager

Owns the SQLAlchemy engine and the session factory behind the shared persistence context.
Every repository and service built by the container shares one Session produced here, so
staged entities become visible to all of them only once save_changes() commits.

Features:
- Engine creation from DATABASE_URL; in-memory SQLite uses a StaticPool so that the
  schema and data survive across connection checkouts for the lifetime of the engine
- Foreign key enforcement switched on for every SQLite connection
- Sessions without autoflush and without expire-on-commit: pending entities stay
  invisible to queries until committed, committed entities stay readable after commit
- Connectivity check with tenacity retry on transient operational errors
- Health check reporting status and latency for the system health check
- A single-worker executor on which async callers run session work, so the shared
  Session is used by one thread at a time and the event loop never blocks on I/O
"""

import asyncio
import contextvars
import functools
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Type, TypeVar

import structlog
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pos_core.config.settings import BaseConfig, get_config
from pos_core.data.entities import Base
from pos_core.data.exceptions import (
    ConnectionException,
    DatabaseOperationType,
    handle_database_error,
    with_database_retry,
)


logger = structlog.get_logger(__name__)

T = TypeVar('T')


async def run_blocking(executor: Optional[Executor], func: Callable[..., T], *args, **kwargs) -> T:
    """
    Run blocking persistence work on ``executor`` and suspend until it finishes.

    The caller's context variables (correlation id) travel with the call. A None
    executor means the event loop's default executor.
    """
    loop = asyncio.get_running_loop()
    context = contextvars.copy_context()
    return await loop.run_in_executor(
        executor,
        functools.partial(context.run, func, *args, **kwargs)
    )


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseManager:
    """
    Database manager owning the engine and session factory.

    Args:
        config: Configuration class providing DATABASE_URL, DATABASE_ECHO and
            retry settings (defaults to the active environment's configuration)
        create_schema: Create all tables on construction
    """

    def __init__(self, config: Optional[Type[BaseConfig]] = None, create_schema: bool = True):
        self.config = config or get_config()
        self.database_url = self.config.DATABASE_URL
        self._disposed = False
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='pos-db')

        self.engine = self._create_engine()
        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False
        )

        if create_schema:
            self.create_schema()

        logger.info(
            "Database manager initialized",
            database_url=self._safe_url(),
            schema_created=create_schema
        )

    def _create_engine(self) -> Engine:
        engine_kwargs: Dict[str, Any] = {'echo': self.config.DATABASE_ECHO}

        url = make_url(self.database_url)
        if url.get_backend_name() == 'sqlite':
            engine_kwargs['connect_args'] = {'check_same_thread': False}
            if url.database in (None, '', ':memory:'):
                engine_kwargs['poolclass'] = StaticPool

        engine = create_engine(self.database_url, **engine_kwargs)

        if engine.dialect.name == 'sqlite':
            event.listen(engine, 'connect', _enable_sqlite_foreign_keys)

        return engine

    def _safe_url(self) -> str:
        return self.engine.url.render_as_string(hide_password=True)

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def create_schema(self) -> None:
        """Create all entity tables that do not exist yet."""
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise handle_database_error(e, DatabaseOperationType.CONNECTION) from e

    def drop_schema(self) -> None:
        Base.metadata.drop_all(self.engine)

    def create_session(self) -> Session:
        """Create a new session bound to the engine."""
        return self.session_factory()

    def ping(self) -> float:
        """
        Execute SELECT 1 against the database with retry on transient errors.

        Returns:
            Round-trip latency in milliseconds

        Raises:
            ConnectionException: If the database stays unreachable
        """
        @with_database_retry(
            DatabaseOperationType.CONNECTION,
            max_attempts=self.config.DB_RETRY_ATTEMPTS,
            max_wait=self.config.DB_RETRY_MAX_WAIT
        )
        def _select_one() -> float:
            start_time = time.perf_counter()
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return (time.perf_counter() - start_time) * 1000

        return _select_one()

    def health_check(self) -> Dict[str, Any]:
        """
        Database health check with connection validation.

        Returns:
            Dict[str, Any]: Health status information
        """
        health_status = {
            'status': 'unknown',
            'database': self._safe_url(),
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }

        if self._disposed:
            health_status['status'] = 'unhealthy'
            health_status['error'] = 'Database manager has been disposed'
            return health_status

        try:
            health_status['latency_ms'] = self.ping()
            health_status['status'] = 'healthy'
        except Exception as e:
            health_status['status'] = 'unhealthy'
            health_status['error'] = str(e)
            logger.warning("Database health check failed", error=str(e))

        return health_status

    async def run_sync(self, func: Callable[..., T], *args, **kwargs) -> T:
        """
        Run ``func`` on the database thread.

        Raises:
            ConnectionException: If the manager has been disposed
        """
        if self._disposed:
            raise ConnectionException(
                "Database manager has been disposed",
                operation=DatabaseOperationType.CONNECTION
            )
        return await run_blocking(self.executor, func, *args, **kwargs)

    def dispose(self) -> None:
        """Dispose the engine and its pooled connections. Safe to call twice."""
        if self._disposed:
            return
        self.executor.shutdown(wait=False)
        self.engine.dispose()
        self._disposed = True
        logger.info("Database manager disposed", database_url=self._safe_url())


def create_database_manager(
    config: Optional[Type[BaseConfig]] = None,
    create_schema: bool = True
) -> DatabaseManager:
    """
    Factory function to create a DatabaseManager instance.

    Args:
        config: Configuration class (defaults to active environment)
        create_schema: Create all tables on construction

    Returns:
        DatabaseManager: Configured database manager
    """
    return DatabaseManager(config=config, create_schema=create_schema)
