"""
Configuration package exposing environment specific settings classes.
"""

from pos_core.config.settings import (
    BaseConfig,
    DevelopmentConfig,
    TestingConfig,
    ProductionConfig,
    get_config,
    validate_configuration,
)

__all__ = [
    "BaseConfig",
    "DevelopmentConfig",
    "TestingConfig",
    "ProductionConfig",
    "get_config",
    "validate_configuration",
]
