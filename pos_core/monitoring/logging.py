"""
Structured Logging Implementation using structlog

This module configures structlog on top of the standard library logging module so that
every component of the POS core emits key/value structured events. JSON rendering is used
for log aggregation and a console renderer for local development.

Key Features:
- Single setup_structured_logging() entry point applied once per process
- stdlib integration: logger names, log levels and level filtering from logging
- ISO timestamps, exception formatting and an optional correlation id per operation
- Correlation ids carried through contextvars so async service calls keep their id
"""

import logging
import logging.config
import uuid
from contextvars import ContextVar
from typing import Any, Callable, Dict, Optional, Type

import structlog

from pos_core.config.settings import BaseConfig, get_config


correlation_id_context: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

_logging_configured = False


class CorrelationManager:
    """
    Correlation id management for tracing one workflow or validation run
    across repositories and services.
    """

    @staticmethod
    def generate_correlation_id() -> str:
        return uuid.uuid4().hex[:16]

    def set_correlation_id(self, correlation_id: Optional[str] = None) -> str:
        if correlation_id is None:
            correlation_id = self.generate_correlation_id()
        correlation_id_context.set(correlation_id)
        return correlation_id

    @staticmethod
    def get_correlation_id() -> Optional[str]:
        return correlation_id_context.get()

    @staticmethod
    def clear_correlation_id() -> None:
        correlation_id_context.set(None)


correlation_manager = CorrelationManager()


def create_correlation_processor() -> Callable:
    """
    Create structlog processor adding the active correlation id to each event.
    """
    def processor(logger, method_name, event_dict):
        correlation_id = correlation_id_context.get()
        if correlation_id:
            event_dict['correlation_id'] = correlation_id
        return event_dict

    return processor


def setup_structured_logging(
    config: Optional[Type[BaseConfig]] = None,
    force: bool = False
) -> structlog.stdlib.BoundLogger:
    """
    Setup structured logging for the POS core.

    Args:
        config: Configuration class providing LOG_LEVEL and LOG_FORMAT
        force: Reconfigure even if logging was already set up

    Returns:
        Configured structured logger instance
    """
    global _logging_configured

    config = config or get_config()

    if _logging_configured and not force:
        return structlog.get_logger(config.APP_NAME)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        create_correlation_processor(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.LOG_FORMAT == 'console':
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging_config: Dict[str, Any] = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'plain': {
                'format': '%(message)s'
            }
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'plain',
                'stream': 'ext://sys.stdout'
            }
        },
        'loggers': {
            'pos_core': {
                'handlers': ['console'],
                'level': config.LOG_LEVEL,
                'propagate': False
            },
            'sqlalchemy.engine': {
                'handlers': ['console'],
                'level': 'INFO' if config.DATABASE_ECHO else 'WARNING',
                'propagate': False
            }
        }
    }

    logging.config.dictConfig(logging_config)
    _logging_configured = True

    logger = structlog.get_logger(config.APP_NAME)
    logger.info(
        "Structured logging initialized",
        log_level=config.LOG_LEVEL,
        log_format=config.LOG_FORMAT,
        environment=config.ENVIRONMENT,
        version=config.APP_VERSION
    )

    return logger


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger bound to the given name."""
    return structlog.get_logger(name)
