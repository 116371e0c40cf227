"""
Business layer: request/response models, business exceptions, mobile number helpers
and the user, business management, membership and customer lookup services.
"""

from pos_core.business.exceptions import (
    BaseBusinessException,
    BusinessRuleViolationError,
    ComponentResolutionError,
    ConfigurationError,
    DataValidationError,
    ErrorCategory,
    ErrorSeverity,
    ResourceNotFoundError,
)
from pos_core.business.models import (
    BaseBusinessModel,
    BusinessResponse,
    CreateBusinessRequest,
    CreateShopRequest,
    CreateUserRequest,
    CustomerAnalytics,
    CustomerLookupResult,
    CustomerPreferences,
    CustomerSummary,
    CustomerValidationResult,
    MembershipDiscount,
    MobileNumberValidation,
    PurchaseRecord,
    RegisterCustomerRequest,
    ShopResponse,
)
from pos_core.business.services import (
    BaseBusinessService,
    BusinessManagementService,
    BusinessValidationResult,
    CustomerLookupService,
    MembershipService,
    ServiceConfiguration,
    ServiceMetrics,
    UserService,
    create_business_management_service,
    create_customer_lookup_service,
    create_membership_service,
    create_user_service,
)
from pos_core.business.utils import (
    format_mobile_number,
    normalize_mobile_number,
)

__all__ = [
    'BaseBusinessException',
    'BusinessRuleViolationError',
    'ComponentResolutionError',
    'ConfigurationError',
    'DataValidationError',
    'ErrorCategory',
    'ErrorSeverity',
    'ResourceNotFoundError',
    'BaseBusinessModel',
    'BusinessResponse',
    'CreateBusinessRequest',
    'CreateShopRequest',
    'CreateUserRequest',
    'CustomerAnalytics',
    'CustomerLookupResult',
    'CustomerPreferences',
    'CustomerSummary',
    'CustomerValidationResult',
    'MembershipDiscount',
    'MobileNumberValidation',
    'PurchaseRecord',
    'RegisterCustomerRequest',
    'ShopResponse',
    'BaseBusinessService',
    'BusinessManagementService',
    'BusinessValidationResult',
    'CustomerLookupService',
    'MembershipService',
    'ServiceConfiguration',
    'ServiceMetrics',
    'UserService',
    'create_business_management_service',
    'create_customer_lookup_service',
    'create_membership_service',
    'create_user_service',
    'format_mobile_number',
    'normalize_mobile_number',
]
