"""
Business Logic Exception Classes

Exception hierarchy for failures raised by the business services, the membership logic
and the dependency container. Each exception carries an error code, a severity and a
category, filters sensitive values out of its context, counts itself in Prometheus and
writes a structured log entry at a level matching its severity.

Exception Types:
- BaseBusinessException: common foundation with logging and serialization
- BusinessRuleViolationError: a business rule rejected the operation (duplicates, blank input)
- DataValidationError: request data failed validation
- ResourceNotFoundError: a referenced user, business, shop or customer does not exist
- ConfigurationError: invalid or inconsistent configuration
- ComponentResolutionError: the container could not build a requested component

Example:
    if not owner:
        raise ResourceNotFoundError(
            message="Business owner not found",
            error_code="OWNER_NOT_FOUND",
            resource_type="user",
            resource_id=owner_id
        )
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import structlog

from pos_core.monitoring.logging import correlation_manager
from pos_core.monitoring.metrics import business_exceptions_total


logger = structlog.get_logger(__name__)


class ErrorSeverity(Enum):
    """
    Error severity classification for business exceptions.
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """
    Error category classification for business exception types.
    """
    BUSINESS_RULE = "business_rule"
    DATA_VALIDATION = "data_validation"
    RESOURCE_ACCESS = "resource_access"
    CONFIGURATION = "configuration"
    DEPENDENCY_RESOLUTION = "dependency_resolution"


_SENSITIVE_PATTERNS = [
    r"password\s*[:=]\s*['\"]?[^'\"\s]*['\"]?",
    r"salt\s*[:=]\s*['\"]?[^'\"\s]*['\"]?",
    r"secret\s*[:=]\s*['\"]?[^'\"\s]*['\"]?",
]

_SENSITIVE_KEYS = {'password', 'salt', 'secret', 'token', 'credential', 'hash'}

MAX_MESSAGE_LENGTH = 500


class BaseBusinessException(Exception):
    """
    Base exception class for all business logic failures.

    Attributes:
        message (str): Error message with sensitive values redacted
        error_code (str): Unique error identifier
        severity (ErrorSeverity): Error severity level for monitoring
        category (ErrorCategory): Error category for classification
        context (Dict[str, Any]): Additional error context (filtered)
        cause (Optional[Exception]): Original exception, if any
        timestamp (datetime): Error occurrence timestamp
        correlation_id (Optional[str]): Correlation id active when raised
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.BUSINESS_RULE,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ) -> None:
        super().__init__(message)

        self.message = self._sanitize_message(message)
        self.error_code = error_code
        self.severity = severity
        self.category = category
        self.context = self._filter_sensitive_context(context or {})
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)
        self.correlation_id = correlation_manager.get_correlation_id()

        business_exceptions_total.labels(
            error_code=error_code,
            severity=severity.value
        ).inc()

        self._log_exception()

    def __str__(self) -> str:
        return self.message

    @staticmethod
    def _sanitize_message(message: str) -> str:
        sanitized = message
        for pattern in _SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, "[REDACTED]", sanitized, flags=re.IGNORECASE)

        if len(sanitized) > MAX_MESSAGE_LENGTH:
            sanitized = sanitized[:MAX_MESSAGE_LENGTH] + "... [TRUNCATED]"

        return sanitized

    def _filter_sensitive_context(self, context: Dict[str, Any]) -> Dict[str, Any]:
        filtered_context = {}
        for key, value in context.items():
            if any(sensitive_key in key.lower() for sensitive_key in _SENSITIVE_KEYS):
                filtered_context[key] = "[REDACTED]"
            elif isinstance(value, dict):
                filtered_context[key] = self._filter_sensitive_context(value)
            else:
                filtered_context[key] = value
        return filtered_context

    def _log_exception(self) -> None:
        log_data = {
            'event_type': 'business_exception',
            'exception_class': self.__class__.__name__,
            'error_code': self.error_code,
            'severity': self.severity.value,
            'category': self.category.value,
            'context': self.context,
            'cause': str(self.cause) if self.cause else None,
        }

        if self.severity == ErrorSeverity.CRITICAL:
            logger.error("Critical business exception occurred", **log_data)
        elif self.severity == ErrorSeverity.HIGH:
            logger.error("High severity business exception", **log_data)
        elif self.severity == ErrorSeverity.MEDIUM:
            logger.warning("Medium severity business exception", **log_data)
        else:
            logger.info("Low severity business exception", **log_data)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for JSON serialization.

        Returns:
            Dictionary representation with sensitive values removed
        """
        return {
            'error': {
                'message': self.message,
                'code': self.error_code,
                'severity': self.severity.value,
                'category': self.category.value,
                'timestamp': self.timestamp.isoformat(),
                'correlation_id': self.correlation_id,
                'context': self.context,
            }
        }


class BusinessRuleViolationError(BaseBusinessException):
    """
    Exception for business rule validation failures such as duplicate usernames,
    duplicate business or shop names, or blank required input.

    Example:
        if not shop_repository.is_shop_name_unique(name, business_id):
            raise BusinessRuleViolationError(
                message=f"Shop name '{name}' already exists in this business",
                error_code="DUPLICATE_SHOP_NAME",
                rule_name="unique_shop_name_per_business"
            )
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        rule_name: Optional[str] = None,
        rule_parameters: Optional[Dict[str, Any]] = None,
        **kwargs
    ) -> None:
        kwargs.setdefault('severity', ErrorSeverity.MEDIUM)
        kwargs.setdefault('category', ErrorCategory.BUSINESS_RULE)

        context = kwargs.get('context') or {}
        if rule_name:
            context['violated_rule'] = rule_name
        if rule_parameters:
            context['rule_parameters'] = rule_parameters
        kwargs['context'] = context

        super().__init__(message, error_code, **kwargs)

        self.rule_name = rule_name
        self.rule_parameters = rule_parameters or {}


class DataValidationError(BaseBusinessException):
    """
    Exception for request data that fails validation.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "DATA_VALIDATION_FAILED",
        validation_errors: Optional[List[Dict[str, Any]]] = None,
        **kwargs
    ) -> None:
        kwargs.setdefault('severity', ErrorSeverity.MEDIUM)
        kwargs.setdefault('category', ErrorCategory.DATA_VALIDATION)

        context = kwargs.get('context') or {}
        if validation_errors:
            context['validation_errors'] = validation_errors
        kwargs['context'] = context

        super().__init__(message, error_code, **kwargs)

        self.validation_errors = validation_errors or []


class ResourceNotFoundError(BaseBusinessException):
    """
    Exception raised when a referenced resource does not exist.
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[Union[str, Any]] = None,
        **kwargs
    ) -> None:
        kwargs.setdefault('severity', ErrorSeverity.MEDIUM)
        kwargs.setdefault('category', ErrorCategory.RESOURCE_ACCESS)

        context = kwargs.get('context') or {}
        if resource_type:
            context['resource_type'] = resource_type
        if resource_id is not None:
            context['resource_id'] = str(resource_id)
        kwargs['context'] = context

        super().__init__(message, error_code, **kwargs)

        self.resource_type = resource_type
        self.resource_id = resource_id


class ConfigurationError(BaseBusinessException):
    """
    Exception for invalid or inconsistent configuration.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIGURATION_ERROR",
        config_errors: Optional[List[str]] = None,
        **kwargs
    ) -> None:
        kwargs.setdefault('severity', ErrorSeverity.CRITICAL)
        kwargs.setdefault('category', ErrorCategory.CONFIGURATION)

        context = kwargs.get('context') or {}
        if config_errors:
            context['config_errors'] = config_errors
        kwargs['context'] = context

        super().__init__(message, error_code, **kwargs)

        self.config_errors = config_errors or []


class ComponentResolutionError(BaseBusinessException):
    """
    Exception raised by the service container when a component is not registered
    or its factory fails.
    """

    def __init__(
        self,
        message: str,
        component_name: str,
        error_code: str = "COMPONENT_RESOLUTION_FAILED",
        **kwargs
    ) -> None:
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('category', ErrorCategory.DEPENDENCY_RESOLUTION)

        context = kwargs.get('context') or {}
        context['component_name'] = component_name
        kwargs['context'] = context

        super().__init__(message, error_code, **kwargs)

        self.component_name = component_name
