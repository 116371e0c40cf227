"""
Result and request models of the system integration checks.

Result models are mutable accumulators: the checks append to their lists and fill
their dictionaries while running, then set the overall flag last.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pos_core.business.models import BaseBusinessModel
from pos_core.data.enums import BusinessType


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IntegrationResultModel(BaseModel):
    """Base for integration check results"""

    model_config = ConfigDict(validate_assignment=True, extra='forbid')


class SystemIntegrationResult(IntegrationResultModel):
    is_success: bool = False
    validated_components: List[str] = Field(default_factory=list)
    failed_components: List[str] = Field(default_factory=list)
    missing_dependencies: List[str] = Field(default_factory=list)
    # component name -> "Available", "Null" or "Error"
    component_metrics: Dict[str, str] = Field(default_factory=dict)
    validation_duration: float = 0.0
    validated_at: datetime = Field(default_factory=_utc_now)


class BusinessCreationTestRequest(BaseBusinessModel):
    """Input of the business creation workflow check"""

    business_name: str = Field("Test Business", min_length=1, max_length=200)
    business_type: BusinessType = BusinessType.GENERAL_RETAIL
    owner_username: str = Field("testowner", min_length=1, max_length=100)
    number_of_shops: int = Field(2, ge=0)
    test_with_custom_attributes: bool = True


class WorkflowTestResult(IntegrationResultModel):
    is_success: bool = False
    completed_steps: List[str] = Field(default_factory=list)
    failed_steps: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    duration: float = 0.0
    tested_at: datetime = Field(default_factory=_utc_now)


class BusinessCreationWorkflowResult(WorkflowTestResult):
    created_user_id: Optional[uuid.UUID] = None
    created_business_id: Optional[uuid.UUID] = None
    created_shop_ids: List[uuid.UUID] = Field(default_factory=list)
    required_product_attributes: List[str] = Field(default_factory=list)
    configuration_warnings: List[str] = Field(default_factory=list)


class ComponentHealth(IntegrationResultModel):
    component_name: str
    is_healthy: bool = False
    status: str = ''
    response_time_ms: float = 0.0
    metrics: Dict[str, Any] = Field(default_factory=dict)
    issues: List[str] = Field(default_factory=list)


class SystemHealthStatus(IntegrationResultModel):
    is_healthy: bool = False
    component_healths: List[ComponentHealth] = Field(default_factory=list)
    component_health_map: Dict[str, bool] = Field(default_factory=dict)
    system_metrics: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=_utc_now)


class CrossPlatformValidationResult(IntegrationResultModel):
    is_success: bool = False
    supported_platforms: List[str] = Field(default_factory=list)
    unsupported_platforms: List[str] = Field(default_factory=list)
    platform_specific_issues: Dict[str, List[str]] = Field(default_factory=dict)
    compatibility_metrics: Dict[str, Any] = Field(default_factory=dict)
