"""
Database Exception Handling and Error Management

This module implements the database-specific exception hierarchy for SQLAlchemy operations
performed through the shared persistence context. Driver errors raised by SQLAlchemy are
classified into custom exceptions carrying severity, category, operation and entity context,
counted in Prometheus and logged through structlog.

Features:
- Custom exception hierarchy for database operations
- SQLAlchemy error classification (integrity, operational, timeout, generic)
- Tenacity exponential backoff retry for transient connectivity errors
- Prometheus metrics integration for error monitoring
- Structured error logging
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

import structlog
from sqlalchemy import exc as sa_exc
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pos_core.monitoring.metrics import database_errors_total


logger = structlog.get_logger(__name__)


class DatabaseErrorSeverity(Enum):
    """Database error severity levels for monitoring and alerting"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DatabaseOperationType(Enum):
    """Database operation types for error classification"""
    READ = "read"
    WRITE = "write"
    TRANSACTION = "transaction"
    CONNECTION = "connection"


class DatabaseErrorCategory(Enum):
    """Database error categories for comprehensive classification"""
    NETWORK = "network"
    TIMEOUT = "timeout"
    CONFIGURATION = "configuration"
    DATA_INTEGRITY = "data_integrity"
    TRANSACTION = "transaction"
    UNKNOWN = "unknown"


class DatabaseException(Exception):
    """
    Base exception class for all database-related errors.

    Provides structured error information including severity, category,
    operation context, and the entity involved for error handling and
    monitoring integration.
    """

    def __init__(
        self,
        message: str,
        severity: DatabaseErrorSeverity = DatabaseErrorSeverity.MEDIUM,
        category: DatabaseErrorCategory = DatabaseErrorCategory.UNKNOWN,
        operation: Optional[DatabaseOperationType] = None,
        entity: Optional[str] = None,
        original_error: Optional[Exception] = None,
        retry_recommended: bool = False
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.operation = operation
        self.entity = entity
        self.original_error = original_error
        self.retry_recommended = retry_recommended
        self.timestamp = datetime.now(timezone.utc)

        database_errors_total.labels(
            error_type=self.__class__.__name__,
            operation=operation.value if operation else "unknown",
            severity=severity.value
        ).inc()

        logger.error(
            "Database exception occurred",
            error_type=self.__class__.__name__,
            message=message,
            severity=severity.value,
            category=category.value,
            operation=operation.value if operation else None,
            entity=entity,
            retry_recommended=retry_recommended,
            original_error=str(original_error) if original_error else None
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "operation": self.operation.value if self.operation else None,
            "entity": self.entity,
            "retry_recommended": self.retry_recommended,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_error) if self.original_error else None
        }


class PersistenceError(DatabaseException):
    """
    Raised when the store rejects a commit of the shared persistence context.

    Covers unique constraint violations, check constraint failures and foreign key
    violations. The transaction has already been rolled back when this is raised.
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('severity', DatabaseErrorSeverity.MEDIUM)
        kwargs.setdefault('category', DatabaseErrorCategory.DATA_INTEGRITY)
        kwargs.setdefault('operation', DatabaseOperationType.TRANSACTION)
        kwargs.setdefault('retry_recommended', False)
        super().__init__(message, **kwargs)


class ConnectionException(DatabaseException):
    """
    Exception for database connectivity failures (engine cannot connect, database
    file locked or unavailable).
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('severity', DatabaseErrorSeverity.HIGH)
        kwargs.setdefault('category', DatabaseErrorCategory.NETWORK)
        kwargs.setdefault('operation', DatabaseOperationType.CONNECTION)
        kwargs.setdefault('retry_recommended', True)
        super().__init__(message, **kwargs)


class TimeoutException(DatabaseException):
    """
    Exception for connection pool checkout timeouts.
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('severity', DatabaseErrorSeverity.MEDIUM)
        kwargs.setdefault('category', DatabaseErrorCategory.TIMEOUT)
        kwargs.setdefault('retry_recommended', True)
        super().__init__(message, **kwargs)


class QueryException(DatabaseException):
    """
    Exception for query execution failures such as invalid statements or
    programming errors reported by the driver.
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('severity', DatabaseErrorSeverity.MEDIUM)
        kwargs.setdefault('operation', DatabaseOperationType.READ)
        super().__init__(message, **kwargs)


# Checked in order; subclasses precede their bases.
SQLALCHEMY_ERROR_MAPPING: List[Tuple[Type[Exception], Type[DatabaseException]]] = [
    (sa_exc.IntegrityError, PersistenceError),
    (sa_exc.OperationalError, ConnectionException),
    (sa_exc.TimeoutError, TimeoutException),
    (sa_exc.ProgrammingError, QueryException),
    (sa_exc.SQLAlchemyError, DatabaseException),
]


def classify_sqlalchemy_error(error: Exception) -> Type[DatabaseException]:
    """
    Classify SQLAlchemy errors into the matching custom exception type.

    Args:
        error: The original SQLAlchemy exception

    Returns:
        Appropriate custom exception class
    """
    for error_type, exception_class in SQLALCHEMY_ERROR_MAPPING:
        if isinstance(error, error_type):
            return exception_class
    return DatabaseException


def handle_database_error(
    error: Exception,
    operation: DatabaseOperationType,
    entity: Optional[str] = None
) -> DatabaseException:
    """
    Convert an arbitrary error raised during a database operation into a
    DatabaseException subclass.

    Args:
        error: The original exception
        operation: Type of database operation
        entity: Entity or table name involved (optional)

    Returns:
        Appropriate custom database exception
    """
    if isinstance(error, DatabaseException):
        return error

    if isinstance(error, sa_exc.SQLAlchemyError):
        exception_class = classify_sqlalchemy_error(error)
        detail = getattr(error, 'orig', None) or error
        return exception_class(
            f"Database operation failed: {detail}",
            operation=operation,
            entity=entity,
            original_error=error
        )

    return DatabaseException(
        f"Unexpected database error: {error}",
        operation=operation,
        entity=entity,
        original_error=error
    )


def create_connection_retrying(max_attempts: int = 3, max_wait: float = 2.0) -> Retrying:
    """
    Create a tenacity Retrying object for transient connectivity errors.

    Only OperationalError is retried; integrity and programming errors are
    deterministic and surface immediately.
    """
    return Retrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=max_wait),
        retry=retry_if_exception_type(sa_exc.OperationalError),
        before_sleep=before_sleep_log(logging.getLogger(__name__), logging.WARNING),
        reraise=True
    )


def with_database_retry(
    operation_type: DatabaseOperationType = DatabaseOperationType.CONNECTION,
    max_attempts: int = 3,
    max_wait: float = 2.0
) -> Callable:
    """
    Decorator adding retry logic and error translation to database operations.

    Args:
        operation_type: Type of database operation used for error classification
        max_attempts: Total attempts before giving up
        max_wait: Upper bound for exponential backoff in seconds

    Returns:
        Configured retry decorator
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                for attempt in create_connection_retrying(max_attempts, max_wait):
                    with attempt:
                        return func(*args, **kwargs)
            except sa_exc.SQLAlchemyError as e:
                raise handle_database_error(e, operation_type) from e

        return wrapper
    return decorator
