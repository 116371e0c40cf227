"""
POS Core Configuration Classes

This module implements environment-specific settings (Development, Testing, Production)
for the POS core library. Environment variables are loaded via python-dotenv and read
into class attributes so that every component (persistence context, logging, metrics,
system integration checks) pulls its settings from one place.

Key Components:
- BaseConfig holding defaults shared across all environments
- Environment-specific subclasses overriding database and logging behaviour
- get_config() selecting the configuration class by environment name
- validate_configuration() reporting misconfiguration before the container is built

Environment Variables:
- POS_ENV: development, testing or production
- DATABASE_URL: SQLAlchemy URL, defaults to a private in-memory SQLite database
- DATABASE_ECHO: echo SQL statements through the engine logger
- DB_RETRY_ATTEMPTS: connectivity check attempts on transient operational errors
- LOG_LEVEL / LOG_FORMAT: structlog level and renderer (json or console)
- METRICS_ENABLED: record Prometheus metrics for repositories and services
- SUPPORTED_PLATFORMS: comma separated platform names checked for compatibility
"""

import os
import logging
from typing import Dict, List, Optional, Type

from dotenv import load_dotenv

# Load environment variables early
load_dotenv()

logger = logging.getLogger(__name__)


IN_MEMORY_DATABASE_URL = "sqlite+pysqlite:///:memory:"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == 'true'


class BaseConfig:
    """
    Base configuration class providing common settings for all environments.
    """

    APP_NAME = os.getenv('APP_NAME', 'pos-core')
    APP_VERSION = os.getenv('APP_VERSION', '1.0.0')
    ENVIRONMENT = os.getenv('POS_ENV', 'development')

    # Persistence
    DATABASE_URL = os.getenv('DATABASE_URL', IN_MEMORY_DATABASE_URL)
    DATABASE_ECHO = _env_flag('DATABASE_ECHO', 'false')
    DB_RETRY_ATTEMPTS = int(os.getenv('DB_RETRY_ATTEMPTS', '3'))
    DB_RETRY_MAX_WAIT = float(os.getenv('DB_RETRY_MAX_WAIT', '2.0'))

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')

    # Monitoring
    METRICS_ENABLED = _env_flag('METRICS_ENABLED', 'true')

    # System integration
    SUPPORTED_PLATFORMS = [
        platform.strip()
        for platform in os.getenv('SUPPORTED_PLATFORMS', 'core,desktop,mobile,server').split(',')
        if platform.strip()
    ]
    PLATFORM_REQUIREMENTS: Dict[str, List[str]] = {
        'core': [
            'customer_repository',
            'membership_repository',
            'benefit_repository',
            'preference_repository',
        ],
        'desktop': [
            'customer_repository',
            'user_service',
            'business_management_service',
            'membership_service',
        ],
        'mobile': [
            'customer_repository',
            'preference_repository',
            'membership_service',
            'customer_lookup_service',
        ],
        'server': [
            'user_repository',
            'business_repository',
            'shop_repository',
            'business_management_service',
        ],
    }

    # Password hashing for users
    PASSWORD_HASH_ITERATIONS = int(os.getenv('PASSWORD_HASH_ITERATIONS', '100000'))

    # Membership numbers
    MEMBERSHIP_NUMBER_PREFIX = os.getenv('MEMBERSHIP_NUMBER_PREFIX', 'MEM')


class DevelopmentConfig(BaseConfig):
    """
    Development configuration with console logging and SQL echo available.
    """

    DEBUG = True
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG').upper()
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'console')


class TestingConfig(BaseConfig):
    """
    Testing configuration optimized for automated tests.

    Always uses a private in-memory database, a single connectivity attempt and a cheap
    password hash so test runs stay fast and isolated.
    """

    TESTING = True
    DEBUG = True
    DATABASE_URL = IN_MEMORY_DATABASE_URL
    DATABASE_ECHO = False
    DB_RETRY_ATTEMPTS = 1
    LOG_LEVEL = 'WARNING'
    LOG_FORMAT = 'console'
    PASSWORD_HASH_ITERATIONS = 1000


class ProductionConfig(BaseConfig):
    """
    Production configuration with JSON logging and no SQL echo.
    """

    DEBUG = False
    DATABASE_ECHO = False
    LOG_FORMAT = 'json'


config_map: Dict[str, Type[BaseConfig]] = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}


def get_config(environment: Optional[str] = None) -> Type[BaseConfig]:
    """
    Get configuration class for the specified environment.

    Args:
        environment: Target environment name (defaults to POS_ENV)

    Returns:
        Configuration class for the specified environment

    Raises:
        ValueError: If environment is not supported
    """
    if environment is None:
        environment = os.getenv('POS_ENV', 'development')

    environment = environment.lower()

    if environment not in config_map:
        raise ValueError(
            f"Unsupported environment '{environment}'. "
            f"Supported environments: {list(config_map.keys())}"
        )

    config_class = config_map[environment]

    logger.debug(
        "Configuration class selected",
        extra={
            'environment': environment,
            'config_class': config_class.__name__
        }
    )

    return config_class


def validate_configuration(config: Type[BaseConfig]) -> List[str]:
    """
    Validate a configuration class and return a list of problems found.

    An empty list means the configuration is usable.
    """
    errors = []

    if not config.DATABASE_URL:
        errors.append("DATABASE_URL must not be empty")

    if config.DB_RETRY_ATTEMPTS < 1:
        errors.append("DB_RETRY_ATTEMPTS must be at least 1")

    if config.LOG_FORMAT not in ('json', 'console'):
        errors.append(f"LOG_FORMAT must be 'json' or 'console', got '{config.LOG_FORMAT}'")

    if config.LOG_LEVEL not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
        errors.append(f"LOG_LEVEL '{config.LOG_LEVEL}' is not a valid level")

    unknown_platforms = [
        platform for platform in config.SUPPORTED_PLATFORMS
        if platform not in config.PLATFORM_REQUIREMENTS
    ]
    if unknown_platforms:
        errors.append(f"No component requirements defined for platforms: {unknown_platforms}")

    return errors
