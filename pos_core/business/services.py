"""
Business Services for the POS Core

Service layer coordinating the repositories behind the shared persistence context:

- UserService: user creation with PBKDF2-HMAC-SHA256 password hashing and
  username/email uniqueness rules
- BusinessManagementService: business and shop creation, owner and business
  scoped listings, and business type configuration defaults and validation
- MembershipService: customer registration, tier calculation from total spending,
  tier discounts, purchase recording with automatic tier upgrades, membership
  discounts, customer validation and customer analytics
- CustomerLookupService: mobile number validation, lookup by mobile number with
  membership details, customer preferences and customer search

All service operations are coroutines executed inside ``service_operation()``, which
times the operation, records Prometheus metrics and logs failures with the service
and operation name before re-raising them. Repository work runs on the database
executor through ``run_blocking()``.

Example:
    user_service = create_user_service(user_repository, executor=database_manager.executor)
    owner = await user_service.create_user(
        username="grocery_owner",
        full_name="Grocery Owner",
        email="owner@example.com",
        password="s3cret",
        role=UserRole.BUSINESS_OWNER
    )
"""

import base64
import hmac
import json
import os
import random
import time
import uuid
from collections import Counter
from concurrent.futures import Executor
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

import structlog
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from email_validator import EmailNotValidError, validate_email

from pos_core.business.exceptions import (
    BusinessRuleViolationError,
    ErrorSeverity,
    ResourceNotFoundError,
)
from pos_core.business.models import (
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
from pos_core.business.utils import (
    MAX_MOBILE_DIGITS,
    MIN_MOBILE_DIGITS,
    MOBILE_NUMBER_PATTERN,
    digits_only,
    extract_country_code,
    format_mobile_number,
    mask_mobile_number,
    normalize_mobile_number,
)
from pos_core.config.settings import BaseConfig
from pos_core.data.database import run_blocking
from pos_core.data.entities import (
    Business,
    Customer,
    CustomerMembership,
    Shop,
    User,
    utcnow,
)
from pos_core.data.enums import BusinessType, MembershipTier, UserRole
from pos_core.monitoring.metrics import (
    service_operation_duration,
    service_operations_total,
)
from pos_core.repositories import (
    BusinessRepository,
    CustomerMembershipRepository,
    CustomerPreferenceRepository,
    CustomerRepository,
    MembershipBenefitRepository,
    ShopRepository,
    UserRepository,
)


logger = structlog.get_logger("pos_core.business.services")

T = TypeVar('T')

CENT = Decimal('0.01')


class ServiceConfiguration:
    """
    Service configuration for business operations.

    Class attributes hold the business constants; an instance can override the
    environment-dependent ones from a settings class.
    """

    ENABLE_METRICS: bool = True

    PASSWORD_HASH_ITERATIONS: int = 100000
    PASSWORD_SALT_BYTES: int = 16

    MEMBERSHIP_NUMBER_PREFIX: str = "MEM"
    MEMBERSHIP_NUMBER_MAX_ATTEMPTS: int = 100

    # Minimum total spending to qualify for each tier
    TIER_THRESHOLDS: Dict[MembershipTier, Decimal] = {
        MembershipTier.BRONZE: Decimal('0'),
        MembershipTier.SILVER: Decimal('1000'),
        MembershipTier.GOLD: Decimal('5000'),
        MembershipTier.PLATINUM: Decimal('15000'),
    }

    TIER_DISCOUNT_PERCENTAGES: Dict[MembershipTier, Decimal] = {
        MembershipTier.NONE: Decimal('0'),
        MembershipTier.BRONZE: Decimal('2'),
        MembershipTier.SILVER: Decimal('5'),
        MembershipTier.GOLD: Decimal('8'),
        MembershipTier.PLATINUM: Decimal('12'),
    }

    # Loyalty points per whole currency unit spent
    POINTS_PER_CURRENCY_UNIT: int = 1

    DEFAULT_CURRENCY: str = "USD"

    TOP_CUSTOMERS_COUNT: int = 10

    def __init__(self, settings: Optional[Type[BaseConfig]] = None):
        if settings is not None:
            self.ENABLE_METRICS = settings.METRICS_ENABLED
            self.PASSWORD_HASH_ITERATIONS = settings.PASSWORD_HASH_ITERATIONS
            self.MEMBERSHIP_NUMBER_PREFIX = settings.MEMBERSHIP_NUMBER_PREFIX


class ServiceMetrics:
    """
    In-process operation statistics for a service instance, complementing the
    Prometheus counters with per-instance averages.
    """

    def __init__(self):
        self.metrics: Dict[str, Dict[str, Any]] = {}

    def start_operation(self, operation_name: str) -> float:
        self.metrics.setdefault(operation_name, {
            'count': 0,
            'total_time': 0.0,
            'min_time': float('inf'),
            'max_time': 0.0,
            'error_count': 0,
        })
        return time.perf_counter()

    def end_operation(self, operation_name: str, start_time: float, success: bool = True) -> float:
        duration = time.perf_counter() - start_time
        metrics = self.metrics[operation_name]
        metrics['count'] += 1
        metrics['total_time'] += duration
        metrics['min_time'] = min(metrics['min_time'], duration)
        metrics['max_time'] = max(metrics['max_time'], duration)
        if not success:
            metrics['error_count'] += 1
        return duration

    def get_service_metrics(self) -> Dict[str, Any]:
        report = {}
        for operation_name, metrics in self.metrics.items():
            if metrics['count'] > 0:
                report[operation_name] = {
                    'count': metrics['count'],
                    'average_time': round(metrics['total_time'] / metrics['count'], 4),
                    'min_time': round(metrics['min_time'], 4),
                    'max_time': round(metrics['max_time'], 4),
                    'error_count': metrics['error_count'],
                    'error_rate': round(metrics['error_count'] / metrics['count'], 4),
                }
        return report


class BaseBusinessService:
    """
    Base class for all business services.

    Subclasses pass their repositories to ``__init__`` so the base class can
    check their liveness. Repository calls block on the database, so service
    coroutines hand them to ``run_blocking()``, which runs them on the database
    executor (one worker thread per persistence context) while the event loop
    keeps serving other tasks.

    Example:
        class CustomService(BaseBusinessService):
            async def perform_operation(self, data):
                async with self.service_operation("perform_operation"):
                    return await self.run_blocking(self._execute, data)
    """

    def __init__(
        self,
        *repositories,
        config: Optional[ServiceConfiguration] = None,
        enable_metrics: Optional[bool] = None,
        executor: Optional[Executor] = None
    ):
        self.config = config or ServiceConfiguration()
        self.enable_metrics = self.config.ENABLE_METRICS if enable_metrics is None else enable_metrics
        self.metrics = ServiceMetrics() if self.enable_metrics else None
        self.executor = executor
        self._repositories = repositories
        self._service_id = str(uuid.uuid4())

        logger.debug(
            "Business service initialized",
            service_type=self.__class__.__name__,
            service_id=self._service_id
        )

    async def run_blocking(self, func: Callable[..., T], *args, **kwargs) -> T:
        return await run_blocking(self.executor, func, *args, **kwargs)

    @asynccontextmanager
    async def service_operation(self, operation_name: str):
        """
        Context manager wrapping one service operation with timing, metrics
        and failure logging.

        Yields:
            Operation context dictionary
        """
        service_name = self.__class__.__name__
        operation_context = {
            'operation_id': str(uuid.uuid4()),
            'operation_name': operation_name,
            'service_id': self._service_id,
            'start_time': datetime.now(timezone.utc),
        }
        start_time = self.metrics.start_operation(operation_name) if self.metrics else time.perf_counter()
        success = True

        try:
            yield operation_context
        except Exception as e:
            success = False
            logger.warning(
                "Service operation failed",
                service_type=service_name,
                operation=operation_name,
                operation_id=operation_context['operation_id'],
                error_type=type(e).__name__,
                error=str(e)
            )
            raise
        finally:
            if self.metrics:
                duration = self.metrics.end_operation(operation_name, start_time, success)
            else:
                duration = time.perf_counter() - start_time

            if self.enable_metrics:
                service_operations_total.labels(
                    service=service_name,
                    operation=operation_name,
                    status='success' if success else 'error'
                ).inc()
                service_operation_duration.labels(
                    service=service_name,
                    operation=operation_name
                ).observe(duration)

            logger.debug(
                "Service operation completed",
                service_type=service_name,
                operation=operation_name,
                duration=duration,
                success=success
            )

    def check_liveness(self) -> bool:
        """Liveness check: every repository of the service answers a query."""
        for repository in self._repositories:
            repository.check_liveness()
        return True

    def get_service_metrics(self) -> Dict[str, Any]:
        return self.metrics.get_service_metrics() if self.metrics else {}


class UserService(BaseBusinessService):
    """
    User management service.

    Passwords are never stored; only a PBKDF2-HMAC-SHA256 derived key and its
    random salt, both base64 encoded.
    """

    def __init__(self, user_repository: UserRepository, **kwargs):
        super().__init__(user_repository, **kwargs)
        self.user_repository = user_repository

    def hash_password(self, password: str, salt: Optional[bytes] = None) -> Dict[str, str]:
        salt = salt or os.urandom(self.config.PASSWORD_SALT_BYTES)
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self.config.PASSWORD_HASH_ITERATIONS,
        )
        key = kdf.derive(password.encode('utf-8'))
        return {
            'password_hash': base64.urlsafe_b64encode(key).decode('ascii'),
            'salt': base64.urlsafe_b64encode(salt).decode('ascii'),
        }

    def verify_password(self, user: User, password: str) -> bool:
        salt = base64.urlsafe_b64decode(user.salt.encode('ascii'))
        candidate = self.hash_password(password, salt)['password_hash']
        return hmac.compare_digest(candidate, user.password_hash)

    async def create_user(
        self,
        username: str,
        full_name: str,
        email: str,
        password: str,
        role: UserRole = UserRole.CASHIER
    ) -> User:
        """
        Create and persist a user.

        Raises:
            BusinessRuleViolationError: Blank username or password, or the
                username or email is already taken
            DataValidationError: Malformed email or over-long fields
        """
        async with self.service_operation("create_user"):
            if not username or not username.strip():
                raise BusinessRuleViolationError(
                    message="Username is required",
                    error_code="USERNAME_REQUIRED",
                    rule_name="username_required"
                )
            if not password:
                raise BusinessRuleViolationError(
                    message="Password is required",
                    error_code="PASSWORD_REQUIRED",
                    rule_name="password_required"
                )

            request = CreateUserRequest(
                username=username,
                full_name=full_name,
                email=email,
                password=password,
                role=role
            )
            user = await self.run_blocking(self._create_user, request)

            logger.info("User created", user_id=str(user.id), username=user.username, role=user.role.value)
            return user

    def _create_user(self, request: CreateUserRequest) -> User:
        if self.user_repository.username_exists(request.username):
            raise BusinessRuleViolationError(
                message=f"Username '{request.username}' already exists",
                error_code="DUPLICATE_USERNAME",
                rule_name="unique_username"
            )
        if self.user_repository.email_exists(request.email):
            raise BusinessRuleViolationError(
                message=f"Email '{request.email}' is already registered",
                error_code="DUPLICATE_EMAIL",
                rule_name="unique_email"
            )

        credentials = self.hash_password(request.password)
        user = User(
            username=request.username,
            full_name=request.full_name,
            email=request.email,
            password_hash=credentials['password_hash'],
            salt=credentials['salt'],
            role=request.role
        )

        self.user_repository.add(user)
        self.user_repository.save_changes()
        return user

    async def get_user_by_username(self, username: str) -> Optional[User]:
        async with self.service_operation("get_user_by_username"):
            return await self.run_blocking(self.user_repository.get_by_username, username)


class BusinessValidationResult:
    """Outcome of a business type configuration validation"""

    def __init__(self):
        self.is_valid = True
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def add_error(self, message: str) -> None:
        self.is_valid = False
        self.errors.append(message)


class BusinessManagementService(BaseBusinessService):
    """
    Business and shop management service.

    Businesses are unique by name per owner and shops by name per business.
    Configurations are stored as JSON; a business created without one gets the
    defaults of its business type.
    """

    def __init__(
        self,
        business_repository: BusinessRepository,
        shop_repository: ShopRepository,
        user_repository: UserRepository,
        **kwargs
    ):
        super().__init__(business_repository, shop_repository, user_repository, **kwargs)
        self.business_repository = business_repository
        self.shop_repository = shop_repository
        self.user_repository = user_repository

    # Business type configuration

    def get_default_business_configuration(self, business_type: BusinessType) -> Dict[str, Any]:
        type_settings = {
            'enable_expiry_tracking': False,
            'enable_batch_tracking': False,
            'enable_weight_based_pricing': False,
            'enable_volume_measurements': False,
            'required_attributes': [],
            'optional_attributes': [],
        }

        if business_type == BusinessType.PHARMACY:
            type_settings.update(
                enable_expiry_tracking=True,
                enable_batch_tracking=True,
                required_attributes=['expiry_date', 'manufacturer', 'batch_number'],
                optional_attributes=['generic_name', 'dosage'],
            )
        elif business_type == BusinessType.GROCERY:
            type_settings.update(
                enable_weight_based_pricing=True,
                enable_volume_measurements=True,
                required_attributes=['unit'],
                optional_attributes=['weight', 'volume'],
            )
        elif business_type == BusinessType.SUPER_SHOP:
            type_settings.update(
                enable_weight_based_pricing=True,
                enable_volume_measurements=True,
                optional_attributes=['weight', 'volume', 'unit'],
            )

        return {
            'currency': self.config.DEFAULT_CURRENCY,
            'default_tax_rate': 0.0,
            'type_settings': type_settings,
        }

    def validate_business_type_configuration(
        self,
        business_type: BusinessType,
        configuration: Dict[str, Any]
    ) -> BusinessValidationResult:
        """
        Validate a business configuration against its business type.

        Missing type-specific features produce warnings; a tax rate outside
        0..1 makes the configuration invalid.
        """
        result = BusinessValidationResult()
        type_settings = configuration.get('type_settings', {})

        if business_type == BusinessType.PHARMACY:
            if not type_settings.get('enable_expiry_tracking'):
                result.warnings.append("Expiry tracking is recommended for pharmacy businesses")
            if not type_settings.get('enable_batch_tracking'):
                result.warnings.append("Batch tracking is recommended for pharmacy businesses")
        elif business_type == BusinessType.GROCERY:
            if not type_settings.get('enable_weight_based_pricing'):
                result.warnings.append("Weight-based pricing is recommended for grocery businesses")
            if not type_settings.get('enable_volume_measurements'):
                result.warnings.append("Volume measurements are recommended for grocery businesses")

        tax_rate = configuration.get('default_tax_rate', 0.0)
        try:
            tax_rate = float(tax_rate)
        except (TypeError, ValueError):
            result.add_error("Tax rate must be a number")
        else:
            if tax_rate < 0 or tax_rate > 1:
                result.add_error("Tax rate must be between 0 and 1 (0% to 100%)")

        return result

    def get_required_product_attributes(self, business_type: BusinessType) -> List[str]:
        return self.get_default_business_configuration(business_type)['type_settings']['required_attributes']

    def get_optional_product_attributes(self, business_type: BusinessType) -> List[str]:
        return self.get_default_business_configuration(business_type)['type_settings']['optional_attributes']

    async def get_business_configuration(self, business_id: uuid.UUID) -> Dict[str, Any]:
        """Stored configuration of a business, falling back to its type defaults."""
        async with self.service_operation("get_business_configuration"):
            business = await self.run_blocking(self._require_business, business_id)
            if business.configuration:
                try:
                    return json.loads(business.configuration)
                except ValueError:
                    logger.warning(
                        "Stored business configuration is not valid JSON, using defaults",
                        business_id=str(business_id)
                    )
            return self.get_default_business_configuration(business.business_type)

    # Businesses

    def _require_business(self, business_id: uuid.UUID) -> Business:
        business = self.business_repository.get_by_id(business_id)
        if business is None:
            raise ResourceNotFoundError(
                message=f"Business with ID {business_id} not found",
                error_code="BUSINESS_NOT_FOUND",
                resource_type="business",
                resource_id=business_id
            )
        return business

    async def create_business(self, request: CreateBusinessRequest) -> BusinessResponse:
        """
        Create and persist a business for an existing owner.

        Raises:
            ResourceNotFoundError: The owner does not exist
            BusinessRuleViolationError: The owner already has a business with this
                name, or the configuration is invalid for the business type
        """
        async with self.service_operation("create_business"):
            configuration = request.configuration or self.get_default_business_configuration(request.business_type)
            validation = self.validate_business_type_configuration(request.business_type, configuration)

            business = await self.run_blocking(self._create_business, request, configuration, validation)

            logger.info(
                "Business created",
                business_id=str(business.id),
                name=business.name,
                business_type=business.business_type.value,
                owner_id=str(business.owner_id),
                warnings=validation.warnings
            )
            return BusinessResponse.model_validate(business)

    def _create_business(
        self,
        request: CreateBusinessRequest,
        configuration: Dict[str, Any],
        validation: BusinessValidationResult
    ) -> Business:
        owner = self.user_repository.get_by_id(request.owner_id)
        if owner is None:
            raise ResourceNotFoundError(
                message=f"Owner with ID {request.owner_id} not found",
                error_code="OWNER_NOT_FOUND",
                resource_type="user",
                resource_id=request.owner_id
            )

        if not self.business_repository.is_business_name_unique(request.name, request.owner_id):
            raise BusinessRuleViolationError(
                message=f"Business name '{request.name}' already exists for this owner",
                error_code="DUPLICATE_BUSINESS_NAME",
                rule_name="unique_business_name_per_owner"
            )

        if not validation.is_valid:
            raise BusinessRuleViolationError(
                message=f"Invalid configuration: {', '.join(validation.errors)}",
                error_code="INVALID_BUSINESS_CONFIGURATION",
                rule_name="business_type_configuration",
                rule_parameters={'errors': validation.errors}
            )

        business = Business(
            name=request.name,
            business_type=request.business_type,
            owner_id=request.owner_id,
            description=request.description,
            address=request.address,
            phone=request.phone,
            email=request.email,
            tax_id=request.tax_id,
            configuration=json.dumps(configuration)
        )

        self.business_repository.add(business)
        self.business_repository.save_changes()
        return business

    async def get_businesses_by_owner(self, owner_id: uuid.UUID) -> List[BusinessResponse]:
        async with self.service_operation("get_businesses_by_owner"):
            businesses = await self.run_blocking(self.business_repository.get_businesses_by_owner, owner_id)
            return [BusinessResponse.model_validate(business) for business in businesses]

    async def get_businesses_by_type(self, business_type: BusinessType) -> List[BusinessResponse]:
        async with self.service_operation("get_businesses_by_type"):
            businesses = await self.run_blocking(self.business_repository.get_businesses_by_type, business_type)
            return [BusinessResponse.model_validate(business) for business in businesses]

    # Shops

    async def create_shop(self, request: CreateShopRequest) -> ShopResponse:
        """
        Create and persist a shop for an existing business.

        Raises:
            ResourceNotFoundError: The business does not exist
            BusinessRuleViolationError: The business already has a shop with this name
        """
        async with self.service_operation("create_shop"):
            shop = await self.run_blocking(self._create_shop, request)

            logger.info(
                "Shop created",
                shop_id=str(shop.id),
                business_id=str(shop.business_id),
                name=shop.name
            )
            return ShopResponse.model_validate(shop)

    def _create_shop(self, request: CreateShopRequest) -> Shop:
        self._require_business(request.business_id)

        if not self.shop_repository.is_shop_name_unique(request.name, request.business_id):
            raise BusinessRuleViolationError(
                message=f"Shop name '{request.name}' already exists in this business",
                error_code="DUPLICATE_SHOP_NAME",
                rule_name="unique_shop_name_per_business"
            )

        shop = Shop(
            business_id=request.business_id,
            name=request.name,
            address=request.address,
            phone=request.phone,
            email=request.email,
            configuration=json.dumps(request.configuration) if request.configuration else None
        )

        self.shop_repository.add(shop)
        self.shop_repository.save_changes()
        return shop

    async def get_shops_by_business(self, business_id: uuid.UUID) -> List[ShopResponse]:
        async with self.service_operation("get_shops_by_business"):
            shops = await self.run_blocking(self.shop_repository.get_shops_by_business, business_id)
            return [ShopResponse.model_validate(shop) for shop in shops]


class MembershipService(BaseBusinessService):
    """
    Customer membership service: registration, tiers, discounts, purchases and
    customer analytics.
    """

    def __init__(
        self,
        customer_repository: CustomerRepository,
        membership_repository: CustomerMembershipRepository,
        benefit_repository: MembershipBenefitRepository,
        **kwargs
    ):
        super().__init__(customer_repository, membership_repository, benefit_repository, **kwargs)
        self.customer_repository = customer_repository
        self.membership_repository = membership_repository
        self.benefit_repository = benefit_repository

    def calculate_tier(self, total_spent: Decimal) -> MembershipTier:
        """Highest tier whose spending threshold ``total_spent`` reaches."""
        total_spent = Decimal(total_spent)
        qualifying_tier = MembershipTier.NONE
        for tier, threshold in sorted(self.config.TIER_THRESHOLDS.items(), key=lambda item: item[1], reverse=True):
            if total_spent >= threshold:
                qualifying_tier = tier
                break
        return qualifying_tier

    def tier_discount(self, tier: MembershipTier) -> Decimal:
        return self.config.TIER_DISCOUNT_PERCENTAGES.get(tier, Decimal('0'))

    def next_tier(self, tier: MembershipTier) -> Optional[MembershipTier]:
        """Lowest tier above ``tier``, None at the top."""
        higher_tiers = [candidate for candidate in self.config.TIER_THRESHOLDS if candidate > tier]
        return min(higher_tiers) if higher_tiers else None

    def amount_to_next_tier(self, tier: MembershipTier, total_spent: Decimal) -> Decimal:
        next_tier = self.next_tier(tier)
        if next_tier is None:
            return Decimal('0')
        return max(Decimal('0'), self.config.TIER_THRESHOLDS[next_tier] - Decimal(total_spent))

    def generate_unique_membership_number(self) -> str:
        """
        Generate a membership number in the format PREFIX-YYYYMMDD-NNNN that no
        customer holds yet.

        Raises:
            BusinessRuleViolationError: No free number found within the attempt limit
        """
        date_prefix = datetime.now(timezone.utc).strftime('%Y%m%d')
        for _ in range(self.config.MEMBERSHIP_NUMBER_MAX_ATTEMPTS):
            membership_number = f"{self.config.MEMBERSHIP_NUMBER_PREFIX}-{date_prefix}-{random.randint(1000, 9999)}"
            if self.customer_repository.is_membership_number_unique(membership_number):
                return membership_number

        raise BusinessRuleViolationError(
            message="Unable to generate unique membership number after maximum attempts",
            error_code="MEMBERSHIP_NUMBER_EXHAUSTED",
            rule_name="unique_membership_number",
            severity=ErrorSeverity.HIGH
        )

    def _require_customer(self, customer_id: uuid.UUID) -> Customer:
        customer = self.customer_repository.get_by_id(customer_id)
        if customer is None:
            raise ResourceNotFoundError(
                message=f"Customer with ID {customer_id} not found",
                error_code="CUSTOMER_NOT_FOUND",
                resource_type="customer",
                resource_id=customer_id
            )
        return customer

    @staticmethod
    def _require_non_negative(amount: Decimal) -> Decimal:
        amount = Decimal(amount)
        if amount < 0:
            raise BusinessRuleViolationError(
                message="Purchase amount must not be negative",
                error_code="NEGATIVE_PURCHASE_AMOUNT",
                rule_name="non_negative_purchase"
            )
        return amount

    async def register_customer(self, request: RegisterCustomerRequest) -> Customer:
        """
        Register a customer together with a membership at the requested tier.

        Raises:
            BusinessRuleViolationError: Phone or membership number already in use
        """
        async with self.service_operation("register_customer"):
            customer = await self.run_blocking(self._register_customer, request)

            logger.info(
                "Customer registered",
                customer_id=str(customer.id),
                membership_number=customer.membership_number,
                tier=customer.tier.name
            )
            return customer

    def _register_customer(self, request: RegisterCustomerRequest) -> Customer:
        if request.phone and not self.customer_repository.is_mobile_number_unique(request.phone):
            raise BusinessRuleViolationError(
                message=f"Mobile number '{request.phone}' is already registered",
                error_code="DUPLICATE_MOBILE_NUMBER",
                rule_name="unique_mobile_number"
            )

        membership_number = request.membership_number
        if membership_number:
            if not self.customer_repository.is_membership_number_unique(membership_number):
                raise BusinessRuleViolationError(
                    message=f"Membership number '{membership_number}' already exists",
                    error_code="DUPLICATE_MEMBERSHIP_NUMBER",
                    rule_name="unique_membership_number"
                )
        else:
            membership_number = self.generate_unique_membership_number()

        customer = Customer(
            membership_number=membership_number,
            name=request.name,
            email=request.email,
            phone=request.phone,
            tier=request.initial_tier,
            device_id=request.device_id
        )
        customer.membership = CustomerMembership(
            tier=request.initial_tier,
            discount_percentage=self.tier_discount(request.initial_tier),
            device_id=request.device_id
        )

        self.customer_repository.add(customer)
        self.customer_repository.save_changes()
        return customer

    async def record_purchase(self, customer_id: uuid.UUID, amount: Decimal) -> PurchaseRecord:
        """
        Add a purchase to the customer's history, award points and upgrade the
        tier (customer and membership) when a new threshold is reached.

        Raises:
            ResourceNotFoundError: The customer does not exist
            BusinessRuleViolationError: The amount is negative
        """
        async with self.service_operation("record_purchase"):
            amount = self._require_non_negative(amount)
            return await self.run_blocking(self._record_purchase, customer_id, amount)

    def _record_purchase(self, customer_id: uuid.UUID, amount: Decimal) -> PurchaseRecord:
        customer = self._require_customer(customer_id)

        # Loaded before any change: this query refreshes the customer from the store.
        membership = self.membership_repository.get_by_customer_id(customer_id)

        previous_tier = customer.tier
        customer.total_spent = Decimal(customer.total_spent) + amount
        customer.visit_count += 1
        customer.last_visit = utcnow()

        new_tier = self.calculate_tier(customer.total_spent)
        tier_upgraded = new_tier > previous_tier
        if tier_upgraded:
            logger.info(
                "Customer tier upgraded",
                membership_number=customer.membership_number,
                previous_tier=previous_tier.name,
                new_tier=new_tier.name
            )
            customer.tier = new_tier

        points_earned = int(amount) * self.config.POINTS_PER_CURRENCY_UNIT
        if membership is not None:
            membership.points += points_earned
            if tier_upgraded:
                self.membership_repository.update_membership_tier(membership.id, new_tier, customer.total_spent)
                membership.discount_percentage = self.tier_discount(new_tier)
            else:
                membership.last_updated = utcnow()

        self.customer_repository.update(customer)
        self.customer_repository.save_changes()

        return PurchaseRecord(
            customer_id=customer.id,
            amount=amount,
            total_spent=customer.total_spent,
            visit_count=customer.visit_count,
            previous_tier=previous_tier,
            new_tier=customer.tier,
            tier_upgraded=tier_upgraded,
            points_earned=points_earned
        )

    def membership_discount(self, customer: Customer, purchase_amount: Decimal) -> MembershipDiscount:
        """
        Tier discount of ``customer`` applied to ``purchase_amount``, rounded to
        cents. Inactive customers get no discount.
        """
        purchase_amount = Decimal(purchase_amount)
        if not customer.is_active:
            return MembershipDiscount(
                customer_id=customer.id,
                tier=customer.tier,
                discount_percentage=Decimal('0'),
                discount_amount=Decimal('0.00'),
                final_amount=purchase_amount,
                reason="Customer is not active"
            )

        discount_percentage = self.tier_discount(customer.tier)
        discount_amount = (purchase_amount * discount_percentage / Decimal('100')).quantize(
            CENT, rounding=ROUND_HALF_UP
        )
        return MembershipDiscount(
            customer_id=customer.id,
            tier=customer.tier,
            discount_percentage=discount_percentage,
            discount_amount=discount_amount,
            final_amount=purchase_amount - discount_amount,
            reason=f"{customer.tier.name.title()} membership discount ({discount_percentage}%)"
        )

    async def calculate_membership_discount(
        self,
        customer_id: uuid.UUID,
        purchase_amount: Decimal
    ) -> MembershipDiscount:
        """
        Raises:
            ResourceNotFoundError: The customer does not exist
            BusinessRuleViolationError: The amount is negative
        """
        async with self.service_operation("calculate_membership_discount"):
            purchase_amount = self._require_non_negative(purchase_amount)
            customer = await self.run_blocking(self._require_customer, customer_id)
            return self.membership_discount(customer, purchase_amount)

    async def get_customer_analytics(self) -> CustomerAnalytics:
        """Customer counts, revenue and tier distribution; spending figures cover active customers only."""
        async with self.service_operation("get_customer_analytics"):
            return await self.run_blocking(self._customer_analytics)

    def _customer_analytics(self) -> CustomerAnalytics:
        customers = self.customer_repository.get_all()

        active_customers = [customer for customer in customers if customer.is_active]
        total_revenue = sum((Decimal(customer.total_spent) for customer in active_customers), Decimal('0'))
        if active_customers:
            average_spend = (total_revenue / len(active_customers)).quantize(CENT, rounding=ROUND_HALF_UP)
        else:
            average_spend = Decimal('0')

        top_customers = sorted(
            active_customers,
            key=lambda customer: (-Decimal(customer.total_spent), customer.name)
        )[:self.config.TOP_CUSTOMERS_COUNT]

        return CustomerAnalytics(
            total_customers=len(customers),
            active_customers=len(active_customers),
            total_revenue=total_revenue,
            average_spend=average_spend,
            customers_by_tier=dict(Counter(customer.tier for customer in active_customers)),
            top_customers=[CustomerSummary.model_validate(customer) for customer in top_customers]
        )

    async def validate_customer(self, customer: Customer) -> CustomerValidationResult:
        """
        Check a customer before it is saved: name and membership number present,
        membership number held by no other customer, email well formed.
        """
        async with self.service_operation("validate_customer"):
            result = CustomerValidationResult()

            if not customer.name or not customer.name.strip():
                result.errors.append("Name is required")

            if not customer.membership_number or not customer.membership_number.strip():
                result.errors.append("Membership number is required")
            elif not await self.run_blocking(
                self.customer_repository.is_membership_number_unique,
                customer.membership_number,
                customer.id
            ):
                result.errors.append(f"Membership number '{customer.membership_number}' already exists")

            if customer.email and customer.email.strip():
                try:
                    validate_email(customer.email, check_deliverability=False)
                except EmailNotValidError as e:
                    result.errors.append(f"Invalid email address: {e}")

            result.is_valid = not result.errors
            return result


class CustomerLookupService(BaseBusinessService):
    """
    Point of sale customer lookup: mobile number validation, lookup by mobile
    number with membership details, preferences and search.

    Mobile numbers are normalized before they reach the repository, so
    "(555) 123-4567", "555-123-4567" and "+1 555 123 4567" find the same customer.
    """

    def __init__(
        self,
        customer_repository: CustomerRepository,
        preference_repository: CustomerPreferenceRepository,
        membership_service: MembershipService,
        **kwargs
    ):
        super().__init__(customer_repository, preference_repository, **kwargs)
        self.customer_repository = customer_repository
        self.preference_repository = preference_repository
        self.membership_service = membership_service

    def validate_mobile_number(self, mobile_number: Optional[str]) -> MobileNumberValidation:
        if not mobile_number or not mobile_number.strip():
            return MobileNumberValidation(is_valid=False, error_message="Mobile number is required")

        mobile_number = mobile_number.strip()
        if not MOBILE_NUMBER_PATTERN.match(mobile_number):
            return MobileNumberValidation(
                is_valid=False,
                error_message="Invalid mobile number format. Please enter a valid phone number."
            )

        if not MIN_MOBILE_DIGITS <= len(digits_only(mobile_number)) <= MAX_MOBILE_DIGITS:
            return MobileNumberValidation(
                is_valid=False,
                error_message=f"Mobile number must be between {MIN_MOBILE_DIGITS} and {MAX_MOBILE_DIGITS} digits."
            )

        normalized_number = normalize_mobile_number(mobile_number)
        return MobileNumberValidation(
            is_valid=True,
            normalized_number=normalized_number,
            formatted_number=format_mobile_number(normalized_number),
            country_code=extract_country_code(mobile_number)
        )

    async def lookup_by_mobile_number(self, mobile_number: Optional[str]) -> Optional[CustomerLookupResult]:
        """
        Active customer with this mobile number, in any accepted notation.

        Returns:
            The customer with membership details and preferences, or None
        """
        async with self.service_operation("lookup_by_mobile_number"):
            normalized_number = normalize_mobile_number(mobile_number)
            if not normalized_number:
                logger.warning("Mobile number lookup attempted with an empty number")
                return None

            result = await self.run_blocking(self._lookup_by_mobile_number, normalized_number)
            logger.debug(
                "Customer lookup by mobile number",
                mobile_number=mask_mobile_number(normalized_number),
                found=result is not None
            )
            return result

    def _lookup_by_mobile_number(self, normalized_number: str) -> Optional[CustomerLookupResult]:
        customer = self.customer_repository.get_by_mobile_number(normalized_number)
        if customer is None:
            return None

        membership = customer.membership
        stored_preferences = self.preference_repository.get_preferences_dictionary(customer.id)

        return CustomerLookupResult(
            id=customer.id,
            membership_number=customer.membership_number,
            name=customer.name,
            email=customer.email,
            phone=customer.phone,
            tier=customer.tier,
            total_spent=customer.total_spent,
            visit_count=customer.visit_count,
            last_visit=customer.last_visit,
            is_active=customer.is_active,
            discount_percentage=(
                membership.discount_percentage if membership is not None
                else self.membership_service.tier_discount(customer.tier)
            ),
            points=membership.points if membership is not None else 0,
            next_tier=self.membership_service.next_tier(customer.tier),
            amount_to_next_tier=self.membership_service.amount_to_next_tier(customer.tier, customer.total_spent),
            benefits=[
                benefit.name for benefit in (membership.benefits if membership is not None else [])
                if benefit.is_available()
            ],
            preferences=self._build_preferences(customer.id, stored_preferences)
        )

    @staticmethod
    def _build_preferences(customer_id: uuid.UUID, stored_preferences: Dict[str, str]) -> CustomerPreferences:
        custom_preferences = dict(stored_preferences)
        return CustomerPreferences(
            customer_id=customer_id,
            receive_promotions=_as_bool(custom_preferences.pop('receive_promotions', 'true')),
            receive_sms_notifications=_as_bool(custom_preferences.pop('receive_sms_notifications', 'true')),
            preferred_language=custom_preferences.pop('preferred_language', '') or 'en',
            custom_preferences=custom_preferences
        )

    async def get_customer_preferences(self, customer_id: uuid.UUID) -> Optional[CustomerPreferences]:
        """Preferences of a customer over the defaults, None for an unknown customer."""
        async with self.service_operation("get_customer_preferences"):
            return await self.run_blocking(self._get_customer_preferences, customer_id)

    def _get_customer_preferences(self, customer_id: uuid.UUID) -> Optional[CustomerPreferences]:
        if self.customer_repository.get_by_id(customer_id) is None:
            return None
        return self._build_preferences(
            customer_id,
            self.preference_repository.get_preferences_dictionary(customer_id)
        )

    async def search_customers(self, search_term: Optional[str], max_results: int = 10) -> List[CustomerSummary]:
        async with self.service_operation("search_customers"):
            if not search_term or not search_term.strip():
                return []
            return await self.run_blocking(self._search_customers, search_term.strip(), max_results)

    def _search_customers(self, search_term: str, max_results: int) -> List[CustomerSummary]:
        return [
            CustomerSummary.model_validate(customer)
            for customer in self.customer_repository.search_by_name_or_membership(search_term, max_results)
        ]


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ('true', '1', 'yes', 'on')


# Factory functions used by the service container

def create_user_service(
    user_repository: UserRepository,
    config: Optional[ServiceConfiguration] = None,
    executor: Optional[Executor] = None
) -> UserService:
    """
    Create user service over the given user repository.

    Args:
        user_repository: Repository bound to the shared persistence context
        config: Service configuration
        executor: Executor owning the persistence context's thread

    Returns:
        Configured user service instance
    """
    service = UserService(user_repository, config=config, executor=executor)
    logger.info("User service created", service_id=service._service_id)
    return service


def create_business_management_service(
    business_repository: BusinessRepository,
    shop_repository: ShopRepository,
    user_repository: UserRepository,
    config: Optional[ServiceConfiguration] = None,
    executor: Optional[Executor] = None
) -> BusinessManagementService:
    service = BusinessManagementService(
        business_repository, shop_repository, user_repository, config=config, executor=executor
    )
    logger.info("Business management service created", service_id=service._service_id)
    return service


def create_membership_service(
    customer_repository: CustomerRepository,
    membership_repository: CustomerMembershipRepository,
    benefit_repository: MembershipBenefitRepository,
    config: Optional[ServiceConfiguration] = None,
    executor: Optional[Executor] = None
) -> MembershipService:
    service = MembershipService(
        customer_repository, membership_repository, benefit_repository, config=config, executor=executor
    )
    logger.info("Membership service created", service_id=service._service_id)
    return service


def create_customer_lookup_service(
    customer_repository: CustomerRepository,
    preference_repository: CustomerPreferenceRepository,
    membership_service: MembershipService,
    config: Optional[ServiceConfiguration] = None,
    executor: Optional[Executor] = None
) -> CustomerLookupService:
    service = CustomerLookupService(
        customer_repository, preference_repository, membership_service, config=config, executor=executor
    )
    logger.info("Customer lookup service created", service_id=service._service_id)
    return service
