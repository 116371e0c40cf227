"""
Prometheus Metrics for the POS Core

Module-level Prometheus collectors shared by the repository layer, the business services
and the system integration service. All collectors live on a dedicated registry so the
library never collides with metrics an embedding application registers globally.
"""

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


POS_METRICS_REGISTRY = CollectorRegistry()

repository_operations_total = Counter(
    'pos_repository_operations_total',
    'Total repository operations by entity, operation and status',
    ['entity', 'operation', 'status'],
    registry=POS_METRICS_REGISTRY
)

database_errors_total = Counter(
    'pos_database_errors_total',
    'Total database errors by type, operation and severity',
    ['error_type', 'operation', 'severity'],
    registry=POS_METRICS_REGISTRY
)

database_commit_duration = Histogram(
    'pos_database_commit_duration_seconds',
    'Time spent committing the shared persistence context',
    registry=POS_METRICS_REGISTRY
)

business_exceptions_total = Counter(
    'pos_business_exceptions_total',
    'Total business exceptions by error code and severity',
    ['error_code', 'severity'],
    registry=POS_METRICS_REGISTRY
)

service_operations_total = Counter(
    'pos_service_operations_total',
    'Total business service operations by service, operation and status',
    ['service', 'operation', 'status'],
    registry=POS_METRICS_REGISTRY
)

service_operation_duration = Histogram(
    'pos_service_operation_duration_seconds',
    'Business service operation duration',
    ['service', 'operation'],
    registry=POS_METRICS_REGISTRY
)

workflow_steps_total = Counter(
    'pos_workflow_steps_total',
    'Business creation workflow steps by outcome',
    ['step', 'outcome'],
    registry=POS_METRICS_REGISTRY
)

health_check_duration = Histogram(
    'pos_health_check_duration_seconds',
    'Duration of component health checks',
    ['component'],
    registry=POS_METRICS_REGISTRY
)


def export_metrics() -> bytes:
    """Render the POS metrics registry in the Prometheus text exposition format."""
    return generate_latest(POS_METRICS_REGISTRY)
