"""
Business Data Models using Pydantic

Request and response models for the business services: user creation, business and shop
creation, customer registration and purchases. All models share BaseBusinessModel, which
strips whitespace, forbids unknown fields, validates on assignment and converts pydantic
validation failures into DataValidationError.

Example:
    request = CreateBusinessRequest(
        name="Corner Grocery",
        business_type=BusinessType.GROCERY,
        owner_id=owner.id
    )
    business = await business_service.create_business(request)
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
)

from pos_core.business.exceptions import DataValidationError
from pos_core.business.utils import (
    MAX_MOBILE_DIGITS,
    MIN_MOBILE_DIGITS,
    MOBILE_NUMBER_PATTERN,
    digits_only,
    normalize_mobile_number,
)
from pos_core.data.enums import BusinessType, MembershipTier, UserRole


logger = structlog.get_logger(__name__)


class BaseBusinessModel(BaseModel):
    """
    Base class for all business data models.

    Converts pydantic validation errors into DataValidationError so callers
    handle one exception hierarchy for bad input.
    """

    model_config = ConfigDict(
        validate_assignment=True,
        str_strip_whitespace=True,
        extra='forbid',
        hide_input_in_errors=True,
    )

    def __init__(self, **data):
        try:
            super().__init__(**data)
        except PydanticValidationError as e:
            error_details = [
                {
                    'field': '.'.join(str(loc) for loc in error['loc']),
                    'message': error['msg'],
                    'type': error['type'],
                }
                for error in e.errors()
            ]
            raise DataValidationError(
                message=f"Validation failed for {self.__class__.__name__}",
                error_code="MODEL_VALIDATION_FAILED",
                validation_errors=error_details,
                cause=e
            ) from e


class CreateUserRequest(BaseBusinessModel):
    """Input for UserService.create_user"""

    username: str = Field(..., min_length=1, max_length=100)
    full_name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)
    role: UserRole = UserRole.CASHIER


class CreateBusinessRequest(BaseBusinessModel):
    """Input for BusinessManagementService.create_business"""

    name: str = Field(..., min_length=1, max_length=200)
    business_type: BusinessType
    owner_id: uuid.UUID
    description: Optional[str] = Field(None, max_length=1000)
    address: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    tax_id: Optional[str] = Field(None, max_length=50)
    configuration: Dict[str, Any] = Field(default_factory=dict)


class CreateShopRequest(BaseBusinessModel):
    """Input for BusinessManagementService.create_shop"""

    business_id: uuid.UUID
    name: str = Field(..., min_length=1, max_length=200)
    address: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    configuration: Dict[str, Any] = Field(default_factory=dict)


class BusinessResponse(BaseBusinessModel):
    """Business as returned by the business management service"""

    model_config = ConfigDict(from_attributes=True, extra='ignore')

    id: uuid.UUID
    name: str
    business_type: BusinessType
    owner_id: uuid.UUID
    description: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    tax_id: Optional[str] = None
    configuration: Optional[str] = None
    is_active: bool
    created_at: datetime


class ShopResponse(BaseBusinessModel):
    """Shop as returned by the business management service"""

    model_config = ConfigDict(from_attributes=True, extra='ignore')

    id: uuid.UUID
    business_id: uuid.UUID
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    configuration: Optional[str] = None
    is_active: bool
    created_at: datetime


class RegisterCustomerRequest(BaseBusinessModel):
    """Input for MembershipService.register_customer"""

    name: str = Field(..., min_length=1, max_length=200)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    membership_number: Optional[str] = Field(None, max_length=50)
    initial_tier: MembershipTier = MembershipTier.BRONZE
    device_id: Optional[uuid.UUID] = None

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == '':
            return None
        if not MOBILE_NUMBER_PATTERN.match(value):
            raise ValueError("phone must be a valid mobile number")
        if not MIN_MOBILE_DIGITS <= len(digits_only(value)) <= MAX_MOBILE_DIGITS:
            raise ValueError(f"phone must have between {MIN_MOBILE_DIGITS} and {MAX_MOBILE_DIGITS} digits")
        return normalize_mobile_number(value)

    @field_validator('initial_tier')
    @classmethod
    def validate_initial_tier(cls, value: MembershipTier) -> MembershipTier:
        if value == MembershipTier.NONE:
            raise ValueError("registered members need a tier above NONE")
        return value


class PurchaseRecord(BaseBusinessModel):
    """Outcome of MembershipService.record_purchase"""

    customer_id: uuid.UUID
    amount: Decimal
    total_spent: Decimal
    visit_count: int
    previous_tier: MembershipTier
    new_tier: MembershipTier
    tier_upgraded: bool
    points_earned: int


class MobileNumberValidation(BaseBusinessModel):
    """Outcome of CustomerLookupService.validate_mobile_number"""

    is_valid: bool
    error_message: Optional[str] = None
    normalized_number: Optional[str] = None
    formatted_number: Optional[str] = None
    country_code: Optional[str] = None


class CustomerSummary(BaseBusinessModel):
    """Customer search hit"""

    model_config = ConfigDict(from_attributes=True, extra='ignore')

    id: uuid.UUID
    membership_number: str
    name: str
    phone: Optional[str] = None
    tier: MembershipTier
    total_spent: Decimal
    last_visit: Optional[datetime] = None
    is_active: bool


class CustomerPreferences(BaseBusinessModel):
    """Communication settings of a customer plus every other stored preference"""

    customer_id: uuid.UUID
    receive_promotions: bool = True
    receive_sms_notifications: bool = True
    preferred_language: str = "en"
    custom_preferences: Dict[str, str] = Field(default_factory=dict)


class CustomerLookupResult(BaseBusinessModel):
    """Customer found at the point of sale, with membership details"""

    id: uuid.UUID
    membership_number: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    tier: MembershipTier
    total_spent: Decimal
    visit_count: int
    last_visit: Optional[datetime] = None
    is_active: bool
    discount_percentage: Decimal
    points: int = 0
    next_tier: Optional[MembershipTier] = None
    amount_to_next_tier: Decimal = Decimal('0')
    benefits: List[str] = Field(default_factory=list)
    preferences: Optional[CustomerPreferences] = None


class MembershipDiscount(BaseBusinessModel):
    """Outcome of MembershipService.calculate_membership_discount"""

    customer_id: uuid.UUID
    tier: MembershipTier
    discount_percentage: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    reason: str


class CustomerAnalytics(BaseBusinessModel):
    """Spending statistics over the active customers"""

    total_customers: int
    active_customers: int
    total_revenue: Decimal
    average_spend: Decimal
    customers_by_tier: Dict[MembershipTier, int] = Field(default_factory=dict)
    top_customers: List[CustomerSummary] = Field(default_factory=list)


class CustomerValidationResult(BaseBusinessModel):
    """Outcome of MembershipService.validate_customer"""

    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
