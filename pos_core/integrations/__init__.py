"""
System integration checks: component wiring, business creation workflow,
health check and cross-platform compatibility.
"""

from pos_core.integrations.models import (
    BusinessCreationTestRequest,
    BusinessCreationWorkflowResult,
    ComponentHealth,
    CrossPlatformValidationResult,
    SystemHealthStatus,
    SystemIntegrationResult,
    WorkflowTestResult,
)
from pos_core.integrations.system_integration import (
    SystemIntegrationService,
    WorkflowStepFailed,
    create_system_integration_service,
)

__all__ = [
    'BusinessCreationTestRequest',
    'BusinessCreationWorkflowResult',
    'ComponentHealth',
    'CrossPlatformValidationResult',
    'SystemHealthStatus',
    'SystemIntegrationResult',
    'WorkflowTestResult',
    'SystemIntegrationService',
    'WorkflowStepFailed',
    'create_system_integration_service',
]
