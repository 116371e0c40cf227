"""
System Integration Service

End-to-end validation facade over the service container. Four independent checks,
each returning a result model instead of raising for expected failures:

- validate_system_integration(): resolves every registered component and runs its
  liveness check
- test_business_creation_workflow(): scripted owner -> business -> shops pipeline with
  business type validation and a multi-tenant isolation check
- perform_system_health_check(): per-component liveness with response times, plus a
  database round trip
- validate_cross_platform_compatibility(): checks that every component required by each
  configured platform can be resolved

The workflow is a strictly ordered pipeline without retries or rollback: a failing step
stops the pipeline and everything committed by earlier steps stays in the store.

Example:
    with build_container(TestingConfig) as container:
        integration = container.resolve('system_integration_service')
        result = await integration.test_business_creation_workflow(
            BusinessCreationTestRequest(business_type=BusinessType.GROCERY, number_of_shops=3)
        )
        assert "Creating 3 shops" in result.completed_steps
"""

import time
from concurrent.futures import Executor
from typing import Any, List, Optional, Tuple, Type

import structlog

from pos_core.business.exceptions import BaseBusinessException, BusinessRuleViolationError
from pos_core.business.models import CreateBusinessRequest, CreateShopRequest
from pos_core.config.settings import BaseConfig
from pos_core.data.database import run_blocking
from pos_core.data.enums import UserRole
from pos_core.data.exceptions import DatabaseException
from pos_core.integrations.models import (
    BusinessCreationTestRequest,
    BusinessCreationWorkflowResult,
    ComponentHealth,
    CrossPlatformValidationResult,
    SystemHealthStatus,
    SystemIntegrationResult,
)
from pos_core.monitoring.logging import correlation_manager
from pos_core.monitoring.metrics import health_check_duration, workflow_steps_total


logger = structlog.get_logger(__name__)

WORKFLOW_TEST_PASSWORD = "TestPassword123"
SLOW_COMPONENT_THRESHOLD_MS = 1000.0
DATABASE_COMPONENT = 'database'


class WorkflowStepFailed(Exception):
    """A workflow step found an inconsistency in otherwise successful results."""


class SystemIntegrationService:
    """
    System integration checks over a ServiceContainer.

    Components are resolved lazily from the container on every check, so a
    component that fails to build is reported by the checks instead of
    preventing the integration service from being constructed.
    """

    def __init__(self, container, config: Optional[Type[BaseConfig]] = None):
        self.container = container
        self.config = config or container.config
        self.metrics_enabled = self.config.METRICS_ENABLED

    def _component_names(self) -> List[str]:
        return [
            name for name in self.container.registered_names()
            if name != 'system_integration_service'
        ]

    @staticmethod
    def _check_liveness(component: Any) -> None:
        """Run the component's own liveness check, if it has one."""
        check = getattr(component, 'check_liveness', None)
        if callable(check):
            check()
            return
        ping = getattr(component, 'ping', None)
        if callable(ping):
            ping()

    def _database_executor(self) -> Optional[Executor]:
        """Executor of the container's persistence context, None once it is gone."""
        manager = self.container.try_resolve('database_manager')
        if manager is None or manager.is_disposed:
            return None
        return manager.executor

    # Component validation

    def _validate_component(self, name: str) -> Tuple[str, Optional[str]]:
        try:
            component = self.container.resolve(name)
            if component is None:
                return 'Null', None
            self._check_liveness(component)
        except (BaseBusinessException, DatabaseException) as e:
            return 'Error', e.message
        except Exception as e:
            logger.error("Unexpected component failure", component=name, error=str(e), exc_info=True)
            return 'Error', str(e)
        return 'Available', None

    async def validate_system_integration(self) -> SystemIntegrationResult:
        """
        Resolve and check every registered component.

        Returns:
            SystemIntegrationResult with validated and failed component names; a
            component resolving to None is reported as "Null", a resolution or
            liveness failure as "Error" with a "name: error" missing dependency entry
        """
        correlation_manager.set_correlation_id()
        start_time = time.perf_counter()
        result = SystemIntegrationResult()

        logger.info("Starting system integration validation")

        executor = self._database_executor()
        for name in self._component_names():
            status, error = await run_blocking(executor, self._validate_component, name)
            result.component_metrics[name] = status
            if status == 'Available':
                result.validated_components.append(name)
            else:
                result.failed_components.append(name)
                if error is not None:
                    result.missing_dependencies.append(f"{name}: {error}")

        result.is_success = not result.failed_components
        result.validation_duration = time.perf_counter() - start_time

        logger.info(
            "System integration validation completed",
            success=result.is_success,
            validated=len(result.validated_components),
            failed=len(result.failed_components),
            duration=result.validation_duration
        )
        return result

    # Business creation workflow

    def _complete_step(self, result: BusinessCreationWorkflowResult, step_key: str, step_name: str) -> None:
        result.completed_steps.append(step_name)
        if self.metrics_enabled:
            workflow_steps_total.labels(step=step_key, outcome='completed').inc()
        logger.debug("Workflow step completed", step=step_name)

    def _fail_step(
        self,
        result: BusinessCreationWorkflowResult,
        step_key: str,
        step_name: str,
        error: Exception
    ) -> None:
        message = getattr(error, 'message', None) or str(error)
        result.failed_steps.append(step_name)
        result.errors.append(f"{step_name}: {message}")
        if self.metrics_enabled:
            workflow_steps_total.labels(step=step_key, outcome='failed').inc()
        logger.warning(
            "Workflow step failed",
            step=step_name,
            error_type=type(error).__name__,
            error=message
        )

    async def test_business_creation_workflow(
        self,
        request: Optional[BusinessCreationTestRequest] = None
    ) -> BusinessCreationWorkflowResult:
        """
        Run the business creation pipeline.

        Steps, in order:
            1. "Creating business owner user"
            2. "Creating business"
            3. "Creating {N} shops"
            4. "Testing business type validation" (only with custom attributes)
            5. "Verifying multi-tenant data isolation"

        A step name is recorded in completed_steps once the step succeeded. The
        first failing step is recorded in failed_steps with its error and the
        remaining steps are skipped. Work committed by earlier steps is kept.
        """
        request = request or BusinessCreationTestRequest()
        correlation_manager.set_correlation_id()
        start_time = time.perf_counter()
        result = BusinessCreationWorkflowResult()

        logger.info(
            "Starting business creation workflow test",
            business_name=request.business_name,
            business_type=request.business_type.value,
            number_of_shops=request.number_of_shops
        )

        step_key, step_name = 'owner', "Creating business owner user"
        try:
            user_service = self.container.resolve('user_service')
            business_service = self.container.resolve('business_management_service')

            owner = await user_service.create_user(
                username=request.owner_username,
                full_name=request.owner_username,
                email=f"{request.owner_username}@test.com",
                password=WORKFLOW_TEST_PASSWORD,
                role=UserRole.BUSINESS_OWNER
            )
            result.created_user_id = owner.id
            self._complete_step(result, step_key, step_name)

            step_key, step_name = 'business', "Creating business"
            business = await business_service.create_business(CreateBusinessRequest(
                name=request.business_name,
                business_type=request.business_type,
                owner_id=owner.id,
                description=f"Test {request.business_type.value} business"
            ))
            result.created_business_id = business.id
            self._complete_step(result, step_key, step_name)

            step_key, step_name = 'shops', f"Creating {request.number_of_shops} shops"
            for index in range(1, request.number_of_shops + 1):
                shop = await business_service.create_shop(CreateShopRequest(
                    business_id=business.id,
                    name=f"{request.business_name} - Shop {index}",
                    address=f"Test Address {index}"
                ))
                result.created_shop_ids.append(shop.id)
            self._complete_step(result, step_key, step_name)

            if request.test_with_custom_attributes:
                step_key, step_name = 'type_validation', "Testing business type validation"
                configuration = await business_service.get_business_configuration(business.id)
                validation = business_service.validate_business_type_configuration(
                    request.business_type, configuration
                )
                if not validation.is_valid:
                    raise BusinessRuleViolationError(
                        message=f"Business type validation failed: {', '.join(validation.errors)}",
                        error_code="BUSINESS_TYPE_VALIDATION_FAILED",
                        rule_name="business_type_configuration"
                    )
                result.configuration_warnings.extend(validation.warnings)
                result.required_product_attributes.extend(
                    business_service.get_required_product_attributes(request.business_type)
                )
                self._complete_step(result, step_key, step_name)

            step_key, step_name = 'isolation', "Verifying multi-tenant data isolation"
            owned_business_ids = {b.id for b in await business_service.get_businesses_by_owner(owner.id)}
            if business.id not in owned_business_ids:
                raise WorkflowStepFailed(f"Business {business.id} is not listed for its owner")

            shops = await business_service.get_shops_by_business(business.id)
            business_shop_ids = {shop.id for shop in shops if shop.business_id == business.id}
            foreign_shops = [str(shop_id) for shop_id in result.created_shop_ids if shop_id not in business_shop_ids]
            if foreign_shops:
                raise WorkflowStepFailed(
                    f"Shops not isolated to business {business.id}: {', '.join(foreign_shops)}"
                )
            self._complete_step(result, step_key, step_name)

        except (BaseBusinessException, DatabaseException, WorkflowStepFailed) as e:
            self._fail_step(result, step_key, step_name, e)
        except Exception as e:
            logger.error("Unexpected workflow failure", step=step_name, exc_info=True)
            self._fail_step(result, step_key, step_name, e)

        result.is_success = not result.failed_steps
        result.duration = time.perf_counter() - start_time

        logger.info(
            "Business creation workflow test completed",
            success=result.is_success,
            completed_steps=len(result.completed_steps),
            failed_steps=result.failed_steps,
            duration=result.duration
        )
        return result

    # Health check

    def _check_component(self, name: str) -> ComponentHealth:
        health = ComponentHealth(component_name=name)
        start_time = time.perf_counter()

        try:
            component = self.container.resolve(name)
            if component is None:
                health.status = 'Unavailable'
                health.issues.append(f"{name} resolved to None")
            else:
                self._check_liveness(component)
                health.is_healthy = True
                health.status = 'Healthy'
        except (BaseBusinessException, DatabaseException) as e:
            health.status = 'Error'
            health.issues.append(e.message)
        except Exception as e:
            logger.error("Unexpected health check failure", component=name, exc_info=True)
            health.status = 'Error'
            health.issues.append(str(e))

        duration = time.perf_counter() - start_time
        health.response_time_ms = duration * 1000
        if self.metrics_enabled:
            health_check_duration.labels(component=name).observe(duration)
        return health

    def _check_database(self) -> ComponentHealth:
        health = ComponentHealth(component_name=DATABASE_COMPONENT)
        start_time = time.perf_counter()

        try:
            database_status = self.container.resolve('database_manager').health_check()
        except BaseBusinessException as e:
            database_status = {'status': 'unhealthy', 'error': e.message}

        health.is_healthy = database_status['status'] == 'healthy'
        health.status = 'Healthy' if health.is_healthy else 'Error'
        if 'latency_ms' in database_status:
            health.metrics['latency_ms'] = database_status['latency_ms']
        if database_status.get('error'):
            health.issues.append(database_status['error'])

        duration = time.perf_counter() - start_time
        health.response_time_ms = duration * 1000
        if self.metrics_enabled:
            health_check_duration.labels(component=DATABASE_COMPONENT).observe(duration)
        return health

    async def perform_system_health_check(self) -> SystemHealthStatus:
        """
        Check the database and every registered component.

        Returns:
            SystemHealthStatus; is_healthy is true only when every component is
            healthy, and each issue of an unhealthy component is listed in errors
        """
        correlation_manager.set_correlation_id()
        start_time = time.perf_counter()
        result = SystemHealthStatus()

        logger.info("Starting system health check")

        executor = self._database_executor()
        healths = [await run_blocking(executor, self._check_database)]
        for name in self._component_names():
            healths.append(await run_blocking(executor, self._check_component, name))

        for health in healths:
            result.component_healths.append(health)
            result.component_health_map[health.component_name] = health.is_healthy
            if not health.is_healthy:
                result.errors.extend(f"{health.component_name}: {issue}" for issue in health.issues)
            elif health.response_time_ms > SLOW_COMPONENT_THRESHOLD_MS:
                result.warnings.append(
                    f"{health.component_name} responded slowly ({health.response_time_ms:.0f} ms)"
                )

        result.is_healthy = all(health.is_healthy for health in healths)
        result.system_metrics = {
            'component_count': len(healths),
            'healthy_components': sum(1 for health in healths if health.is_healthy),
            'check_duration_ms': (time.perf_counter() - start_time) * 1000,
        }

        logger.info(
            "System health check completed",
            healthy=result.is_healthy,
            components=len(healths),
            errors=len(result.errors)
        )
        return result

    # Cross-platform compatibility

    def _check_requirement(self, name: str) -> Tuple[str, Optional[str]]:
        try:
            component = self.container.resolve(name)
        except BaseBusinessException as e:
            return 'Error', f"{name}: {e.message}"
        if component is None:
            return 'Null', f"{name}: resolved to None"
        return 'Available', None

    async def validate_cross_platform_compatibility(self) -> CrossPlatformValidationResult:
        """
        Check that every component required by each configured platform resolves.

        A platform without declared requirements, or with an unresolvable
        component, is unsupported and gets an entry in platform_specific_issues.
        """
        correlation_manager.set_correlation_id()
        result = CrossPlatformValidationResult()

        logger.info("Starting cross-platform compatibility validation")

        executor = self._database_executor()
        for platform in self.config.SUPPORTED_PLATFORMS:
            issues = []
            requirements = self.config.PLATFORM_REQUIREMENTS.get(platform)

            if requirements is None:
                issues.append(f"No component requirements declared for platform '{platform}'")
            else:
                for name in requirements:
                    status, issue = await run_blocking(executor, self._check_requirement, name)
                    result.compatibility_metrics[name] = status
                    if issue is not None:
                        issues.append(issue)

            if issues:
                result.unsupported_platforms.append(platform)
                result.platform_specific_issues[platform] = issues
            else:
                result.supported_platforms.append(platform)

        result.is_success = not result.platform_specific_issues and bool(result.supported_platforms)

        logger.info(
            "Cross-platform compatibility validation completed",
            success=result.is_success,
            supported=result.supported_platforms,
            unsupported=result.unsupported_platforms
        )
        return result


def create_system_integration_service(container, config: Optional[Type[BaseConfig]] = None) -> SystemIntegrationService:
    service = SystemIntegrationService(container, config=config)
    logger.info("System integration service created")
    return service
