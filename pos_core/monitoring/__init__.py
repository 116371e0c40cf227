"""
Monitoring package: structlog configuration and Prometheus collectors.
"""

from pos_core.monitoring.logging import (
    CorrelationManager,
    correlation_manager,
    get_logger,
    setup_structured_logging,
)
from pos_core.monitoring.metrics import POS_METRICS_REGISTRY, export_metrics

__all__ = [
    "CorrelationManager",
    "correlation_manager",
    "get_logger",
    "setup_structured_logging",
    "POS_METRICS_REGISTRY",
    "export_metrics",
]
