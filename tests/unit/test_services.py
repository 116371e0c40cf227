"""
Unit tests for the business services: user creation and password hashing,
business and shop management with business type configuration, and customer
membership tiers, discounts and purchases.
"""

import asyncio
import json
import re
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from pos_core.business.exceptions import (
    BusinessRuleViolationError,
    DataValidationError,
    ResourceNotFoundError,
)
from pos_core.business.models import (
    CreateBusinessRequest,
    CreateShopRequest,
    RegisterCustomerRequest,
)
from pos_core.business.services import MembershipService, ServiceConfiguration
from pos_core.config.settings import TestingConfig
from pos_core.data.entities import Customer
from pos_core.data.enums import BusinessType, MembershipTier, UserRole


async def _create_owner(user_service, username="owner"):
    return await user_service.create_user(
        username=username,
        full_name="Business Owner",
        email=f"{username}@example.com",
        password="s3cret-pass",
        role=UserRole.BUSINESS_OWNER
    )


@pytest.mark.unit
class TestServiceConfiguration:
    """Test settings driven service configuration"""

    def test_defaults_without_settings(self):
        config = ServiceConfiguration()

        assert config.PASSWORD_HASH_ITERATIONS == 100000
        assert config.MEMBERSHIP_NUMBER_PREFIX == "MEM"

    def test_settings_override_environment_dependent_values(self):
        config = ServiceConfiguration(TestingConfig)

        assert config.PASSWORD_HASH_ITERATIONS == TestingConfig.PASSWORD_HASH_ITERATIONS
        assert config.ENABLE_METRICS == TestingConfig.METRICS_ENABLED


@pytest.mark.unit
@pytest.mark.database
class TestUserService:
    """Test user creation rules and password hashing"""

    @pytest.mark.asyncio
    async def test_create_user_persists_hashed_credentials(self, user_service, user_repository):
        user = await _create_owner(user_service)

        assert user_repository.get_by_username("owner") is user
        assert user.role == UserRole.BUSINESS_OWNER
        assert user.password_hash != "s3cret-pass"
        assert user_service.verify_password(user, "s3cret-pass") is True
        assert user_service.verify_password(user, "wrong") is False

    @pytest.mark.asyncio
    async def test_same_password_gets_different_salts(self, user_service):
        first = await _create_owner(user_service, "first")
        second = await _create_owner(user_service, "second")

        assert first.salt != second.salt
        assert first.password_hash != second.password_hash

    @pytest.mark.asyncio
    async def test_hashing_uses_configured_iterations(self, user_service):
        assert user_service.config.PASSWORD_HASH_ITERATIONS == TestingConfig.PASSWORD_HASH_ITERATIONS

    @pytest.mark.asyncio
    async def test_duplicate_username_is_rejected(self, user_service):
        await _create_owner(user_service, "taken")

        with pytest.raises(BusinessRuleViolationError) as exc_info:
            await user_service.create_user("taken", "Other", "other@example.com", "pw")

        assert exc_info.value.error_code == "DUPLICATE_USERNAME"

    @pytest.mark.asyncio
    async def test_duplicate_email_is_rejected_case_insensitively(self, user_service):
        await _create_owner(user_service, "owner")

        with pytest.raises(BusinessRuleViolationError) as exc_info:
            await user_service.create_user("someone", "Someone", "OWNER@example.com", "pw")

        assert exc_info.value.error_code == "DUPLICATE_EMAIL"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("username, password, error_code", [
        ("", "pw", "USERNAME_REQUIRED"),
        ("   ", "pw", "USERNAME_REQUIRED"),
        ("someone", "", "PASSWORD_REQUIRED"),
    ])
    async def test_blank_input_is_rejected(self, user_service, username, password, error_code):
        with pytest.raises(BusinessRuleViolationError) as exc_info:
            await user_service.create_user(username, "Someone", "someone@example.com", password)

        assert exc_info.value.error_code == error_code

    @pytest.mark.asyncio
    async def test_malformed_email_is_a_validation_error(self, user_service):
        with pytest.raises(DataValidationError) as exc_info:
            await user_service.create_user("someone", "Someone", "not-an-email", "pw")

        assert any(error['field'] == 'email' for error in exc_info.value.validation_errors)

    @pytest.mark.asyncio
    async def test_operations_are_recorded_in_service_metrics(self, user_service):
        await _create_owner(user_service)
        with pytest.raises(BusinessRuleViolationError):
            await _create_owner(user_service)

        metrics = user_service.get_service_metrics()['create_user']

        assert metrics['count'] == 2
        assert metrics['error_count'] == 1

    def test_check_liveness(self, user_service):
        assert user_service.check_liveness() is True


@pytest.mark.unit
@pytest.mark.database
class TestBusinessManagementService:
    """Test business and shop creation and business type configuration"""

    @pytest.mark.asyncio
    async def test_create_business_stores_type_defaults(self, user_service, business_service):
        owner = await _create_owner(user_service)

        business = await business_service.create_business(CreateBusinessRequest(
            name="City Pharmacy",
            business_type=BusinessType.PHARMACY,
            owner_id=owner.id
        ))

        configuration = json.loads(business.configuration)
        assert business.owner_id == owner.id
        assert business.is_active is True
        assert configuration['type_settings']['enable_expiry_tracking'] is True
        assert configuration['currency'] == "USD"

    @pytest.mark.asyncio
    async def test_create_business_for_unknown_owner(self, business_service):
        with pytest.raises(ResourceNotFoundError) as exc_info:
            await business_service.create_business(CreateBusinessRequest(
                name="Ghost Store",
                business_type=BusinessType.GROCERY,
                owner_id=uuid.uuid4()
            ))

        assert exc_info.value.error_code == "OWNER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_duplicate_business_name_for_owner(self, user_service, business_service):
        owner = await _create_owner(user_service)
        request = CreateBusinessRequest(name="Corner Shop", business_type=BusinessType.GROCERY, owner_id=owner.id)
        await business_service.create_business(request)

        with pytest.raises(BusinessRuleViolationError) as exc_info:
            await business_service.create_business(request)

        assert exc_info.value.error_code == "DUPLICATE_BUSINESS_NAME"

    @pytest.mark.asyncio
    async def test_invalid_tax_rate_is_rejected(self, user_service, business_service):
        owner = await _create_owner(user_service)

        with pytest.raises(BusinessRuleViolationError) as exc_info:
            await business_service.create_business(CreateBusinessRequest(
                name="Taxing Store",
                business_type=BusinessType.GENERAL_RETAIL,
                owner_id=owner.id,
                configuration={'default_tax_rate': 1.5}
            ))

        assert exc_info.value.error_code == "INVALID_BUSINESS_CONFIGURATION"

    @pytest.mark.asyncio
    async def test_create_shops_and_list_them(self, user_service, business_service):
        owner = await _create_owner(user_service)
        business = await business_service.create_business(CreateBusinessRequest(
            name="Market", business_type=BusinessType.SUPER_SHOP, owner_id=owner.id
        ))

        await business_service.create_shop(CreateShopRequest(business_id=business.id, name="Market - North"))
        await business_service.create_shop(CreateShopRequest(business_id=business.id, name="Market - East"))

        shops = await business_service.get_shops_by_business(business.id)
        assert [shop.name for shop in shops] == ["Market - East", "Market - North"]
        assert all(shop.business_id == business.id for shop in shops)

        businesses = await business_service.get_businesses_by_owner(owner.id)
        assert [b.id for b in businesses] == [business.id]
        assert [b.id for b in await business_service.get_businesses_by_type(BusinessType.SUPER_SHOP)] == [business.id]

    @pytest.mark.asyncio
    async def test_duplicate_shop_name_in_business(self, user_service, business_service):
        owner = await _create_owner(user_service)
        business = await business_service.create_business(CreateBusinessRequest(
            name="Market", business_type=BusinessType.GROCERY, owner_id=owner.id
        ))
        request = CreateShopRequest(business_id=business.id, name="Main Street")
        await business_service.create_shop(request)

        with pytest.raises(BusinessRuleViolationError) as exc_info:
            await business_service.create_shop(request)

        assert exc_info.value.error_code == "DUPLICATE_SHOP_NAME"

    @pytest.mark.asyncio
    async def test_create_shop_for_unknown_business(self, business_service):
        with pytest.raises(ResourceNotFoundError) as exc_info:
            await business_service.create_shop(CreateShopRequest(business_id=uuid.uuid4(), name="Nowhere"))

        assert exc_info.value.error_code == "BUSINESS_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_stored_configuration_round_trips(self, user_service, business_service):
        owner = await _create_owner(user_service)
        business = await business_service.create_business(CreateBusinessRequest(
            name="Fresh Foods", business_type=BusinessType.GROCERY, owner_id=owner.id
        ))

        configuration = await business_service.get_business_configuration(business.id)

        assert configuration == business_service.get_default_business_configuration(BusinessType.GROCERY)

    def test_pharmacy_without_tracking_gets_warnings(self, business_service):
        result = business_service.validate_business_type_configuration(BusinessType.PHARMACY, {})

        assert result.is_valid is True
        assert len(result.warnings) == 2
        assert result.errors == []

    @pytest.mark.parametrize("tax_rate", [-0.1, 1.01, "abc"])
    def test_invalid_tax_rates(self, business_service, tax_rate):
        result = business_service.validate_business_type_configuration(
            BusinessType.GENERAL_RETAIL, {'default_tax_rate': tax_rate}
        )

        assert result.is_valid is False
        assert len(result.errors) == 1

    def test_default_configurations_validate_cleanly(self, business_service):
        for business_type in BusinessType:
            configuration = business_service.get_default_business_configuration(business_type)
            result = business_service.validate_business_type_configuration(business_type, configuration)

            assert result.is_valid is True
            assert result.warnings == []

    def test_product_attributes_per_business_type(self, business_service):
        assert business_service.get_required_product_attributes(BusinessType.PHARMACY) == [
            'expiry_date', 'manufacturer', 'batch_number'
        ]
        assert business_service.get_required_product_attributes(BusinessType.GROCERY) == ['unit']
        assert business_service.get_optional_product_attributes(BusinessType.SUPER_SHOP) == [
            'weight', 'volume', 'unit'
        ]
        assert business_service.get_required_product_attributes(BusinessType.GENERAL_RETAIL) == []


@pytest.mark.unit
@pytest.mark.database
class TestMembershipService:
    """Test membership registration, tiers and purchases"""

    @pytest.mark.parametrize("total_spent, expected_tier", [
        (Decimal('-1'), MembershipTier.NONE),
        (Decimal('0'), MembershipTier.BRONZE),
        (Decimal('999.99'), MembershipTier.BRONZE),
        (Decimal('1000'), MembershipTier.SILVER),
        (Decimal('4999.99'), MembershipTier.SILVER),
        (Decimal('5000'), MembershipTier.GOLD),
        (Decimal('15000'), MembershipTier.PLATINUM),
        (Decimal('250000'), MembershipTier.PLATINUM),
    ])
    def test_calculate_tier(self, membership_service, total_spent, expected_tier):
        assert membership_service.calculate_tier(total_spent) == expected_tier

    @pytest.mark.parametrize("tier, discount", [
        (MembershipTier.NONE, Decimal('0')),
        (MembershipTier.BRONZE, Decimal('2')),
        (MembershipTier.SILVER, Decimal('5')),
        (MembershipTier.GOLD, Decimal('8')),
        (MembershipTier.PLATINUM, Decimal('12')),
    ])
    def test_tier_discount(self, membership_service, tier, discount):
        assert membership_service.tier_discount(tier) == discount

    @pytest.mark.asyncio
    async def test_register_customer_generates_membership_number(self, membership_service, customer_repository):
        customer = await membership_service.register_customer(RegisterCustomerRequest(
            name="Jane Doe",
            phone="5550001111"
        ))

        assert re.fullmatch(r"MEM-\d{8}-\d{4}", customer.membership_number)
        assert customer.tier == MembershipTier.BRONZE
        assert customer.membership.tier == MembershipTier.BRONZE
        assert customer.membership.discount_percentage == Decimal('2')
        assert customer_repository.get_by_mobile_number("5550001111") is customer

    @pytest.mark.asyncio
    async def test_register_customer_with_explicit_number_and_tier(self, membership_service):
        customer = await membership_service.register_customer(RegisterCustomerRequest(
            name="Gold Member",
            membership_number="MEM-GOLD-1",
            initial_tier=MembershipTier.GOLD
        ))

        assert customer.membership_number == "MEM-GOLD-1"
        assert customer.membership.discount_percentage == Decimal('8')

    @pytest.mark.asyncio
    async def test_duplicate_mobile_number_is_rejected(self, membership_service):
        await membership_service.register_customer(RegisterCustomerRequest(name="First", phone="5550002222"))

        with pytest.raises(BusinessRuleViolationError) as exc_info:
            await membership_service.register_customer(RegisterCustomerRequest(name="Second", phone="5550002222"))

        assert exc_info.value.error_code == "DUPLICATE_MOBILE_NUMBER"

    @pytest.mark.asyncio
    async def test_duplicate_membership_number_is_rejected(self, membership_service):
        await membership_service.register_customer(RegisterCustomerRequest(name="First", membership_number="MEM-X"))

        with pytest.raises(BusinessRuleViolationError) as exc_info:
            await membership_service.register_customer(RegisterCustomerRequest(name="Second", membership_number="MEM-X"))

        assert exc_info.value.error_code == "DUPLICATE_MEMBERSHIP_NUMBER"

    def test_registration_requires_a_tier(self):
        with pytest.raises(DataValidationError):
            RegisterCustomerRequest(name="Nobody", initial_tier=MembershipTier.NONE)

    def test_registration_rejects_malformed_phone(self):
        with pytest.raises(DataValidationError):
            RegisterCustomerRequest(name="Nobody", phone="call me")

    @pytest.mark.asyncio
    async def test_record_purchase_upgrades_tier(self, membership_service, membership_repository):
        customer = await membership_service.register_customer(RegisterCustomerRequest(name="Shopper"))

        record = await membership_service.record_purchase(customer.id, Decimal('1200.50'))

        assert record.tier_upgraded is True
        assert record.previous_tier == MembershipTier.BRONZE
        assert record.new_tier == MembershipTier.SILVER
        assert record.points_earned == 1200
        assert record.visit_count == 1
        assert customer.last_visit is not None

        membership = membership_repository.get_by_customer_id(customer.id)
        assert membership.tier == MembershipTier.SILVER
        assert membership.discount_percentage == Decimal('5')
        assert membership.points == 1200
        assert membership.total_spent_for_tier == Decimal('1200.50')

    @pytest.mark.asyncio
    async def test_small_purchase_keeps_tier(self, membership_service):
        customer = await membership_service.register_customer(RegisterCustomerRequest(name="Shopper"))

        first = await membership_service.record_purchase(customer.id, Decimal('100'))
        second = await membership_service.record_purchase(customer.id, Decimal('50'))

        assert first.tier_upgraded is False
        assert second.total_spent == Decimal('150')
        assert second.visit_count == 2
        assert second.new_tier == MembershipTier.BRONZE

    @pytest.mark.asyncio
    async def test_purchase_never_downgrades(self, membership_service):
        customer = await membership_service.register_customer(RegisterCustomerRequest(
            name="Vip", initial_tier=MembershipTier.PLATINUM
        ))

        record = await membership_service.record_purchase(customer.id, Decimal('10'))

        assert record.new_tier == MembershipTier.PLATINUM
        assert record.tier_upgraded is False

    @pytest.mark.asyncio
    async def test_purchase_for_unknown_customer(self, membership_service):
        with pytest.raises(ResourceNotFoundError):
            await membership_service.record_purchase(uuid.uuid4(), Decimal('10'))

    @pytest.mark.asyncio
    async def test_negative_purchase_is_rejected(self, membership_service):
        customer = await membership_service.register_customer(RegisterCustomerRequest(name="Shopper"))

        with pytest.raises(BusinessRuleViolationError) as exc_info:
            await membership_service.record_purchase(customer.id, Decimal('-5'))

        assert exc_info.value.error_code == "NEGATIVE_PURCHASE_AMOUNT"

    @pytest.mark.asyncio
    async def test_membership_number_generation_gives_up(self, membership_service, monkeypatch):
        date_prefix = datetime.now(timezone.utc).strftime('%Y%m%d')
        await membership_service.register_customer(RegisterCustomerRequest(
            name="Holder", membership_number=f"MEM-{date_prefix}-1234"
        ))
        monkeypatch.setattr("pos_core.business.services.random.randint", lambda low, high: 1234)

        with pytest.raises(BusinessRuleViolationError) as exc_info:
            membership_service.generate_unique_membership_number()

        assert exc_info.value.error_code == "MEMBERSHIP_NUMBER_EXHAUSTED"


@pytest.mark.unit
@pytest.mark.database
class TestMembershipDiscountsAndAnalytics:
    """Test membership discounts, customer validation and customer analytics"""

    @pytest.mark.parametrize("raw_phone", [
        "5550003333",
        "555-000-3333",
        "(555) 000-3333",
        "+1 555 000 3333",
    ])
    def test_registration_normalizes_phone(self, raw_phone):
        assert RegisterCustomerRequest(name="Caller", phone=raw_phone).phone == "5550003333"

    @pytest.mark.parametrize("raw_phone", ["12345", "1234567890123456"])
    def test_registration_rejects_phone_with_wrong_digit_count(self, raw_phone):
        with pytest.raises(DataValidationError):
            RegisterCustomerRequest(name="Caller", phone=raw_phone)

    @pytest.mark.asyncio
    async def test_duplicate_mobile_number_in_other_notation_is_rejected(self, membership_service):
        await membership_service.register_customer(RegisterCustomerRequest(name="First", phone="5550004444"))

        with pytest.raises(BusinessRuleViolationError) as exc_info:
            await membership_service.register_customer(RegisterCustomerRequest(name="Second", phone="555-000-4444"))

        assert exc_info.value.error_code == "DUPLICATE_MOBILE_NUMBER"

    @pytest.mark.asyncio
    async def test_membership_discount_is_rounded_to_cents(self, membership_service):
        customer = await membership_service.register_customer(RegisterCustomerRequest(
            name="Gold Member", initial_tier=MembershipTier.GOLD
        ))

        discount = await membership_service.calculate_membership_discount(customer.id, Decimal('199.99'))

        assert discount.customer_id == customer.id
        assert discount.tier == MembershipTier.GOLD
        assert discount.discount_percentage == Decimal('8')
        assert discount.discount_amount == Decimal('16.00')
        assert discount.final_amount == Decimal('183.99')
        assert discount.reason == "Gold membership discount (8%)"

    @pytest.mark.asyncio
    async def test_inactive_customer_gets_no_discount(self, membership_service, customer_repository):
        customer = await membership_service.register_customer(RegisterCustomerRequest(
            name="Lapsed", initial_tier=MembershipTier.PLATINUM
        ))
        customer.is_active = False
        customer_repository.update(customer)
        customer_repository.save_changes()

        discount = await membership_service.calculate_membership_discount(customer.id, Decimal('100'))

        assert discount.discount_percentage == Decimal('0')
        assert discount.discount_amount == Decimal('0')
        assert discount.final_amount == Decimal('100')
        assert discount.reason == "Customer is not active"

    @pytest.mark.asyncio
    async def test_discount_for_unknown_customer(self, membership_service):
        with pytest.raises(ResourceNotFoundError):
            await membership_service.calculate_membership_discount(uuid.uuid4(), Decimal('10'))

    @pytest.mark.asyncio
    async def test_discount_on_negative_amount_is_rejected(self, membership_service):
        customer = await membership_service.register_customer(RegisterCustomerRequest(name="Shopper"))

        with pytest.raises(BusinessRuleViolationError) as exc_info:
            await membership_service.calculate_membership_discount(customer.id, Decimal('-1'))

        assert exc_info.value.error_code == "NEGATIVE_PURCHASE_AMOUNT"

    @pytest.mark.parametrize("tier, total_spent, next_tier, remaining", [
        (MembershipTier.BRONZE, Decimal('250'), MembershipTier.SILVER, Decimal('750')),
        (MembershipTier.SILVER, Decimal('1200'), MembershipTier.GOLD, Decimal('3800')),
        (MembershipTier.GOLD, Decimal('16000'), MembershipTier.PLATINUM, Decimal('0')),
        (MembershipTier.PLATINUM, Decimal('20000'), None, Decimal('0')),
    ])
    def test_next_tier_and_remaining_amount(self, membership_service, tier, total_spent, next_tier, remaining):
        assert membership_service.next_tier(tier) == next_tier
        assert membership_service.amount_to_next_tier(tier, total_spent) == remaining

    @pytest.mark.asyncio
    async def test_analytics_without_customers(self, membership_service):
        analytics = await membership_service.get_customer_analytics()

        assert analytics.total_customers == 0
        assert analytics.active_customers == 0
        assert analytics.total_revenue == Decimal('0')
        assert analytics.average_spend == Decimal('0')
        assert analytics.customers_by_tier == {}
        assert analytics.top_customers == []

    @pytest.mark.asyncio
    async def test_analytics_cover_active_customers(self, membership_service, customer_repository):
        big = await membership_service.register_customer(RegisterCustomerRequest(name="Big Spender"))
        small = await membership_service.register_customer(RegisterCustomerRequest(name="Small Spender"))
        lapsed = await membership_service.register_customer(RegisterCustomerRequest(name="Lapsed"))
        await membership_service.record_purchase(big.id, Decimal('1200'))
        await membership_service.record_purchase(small.id, Decimal('300'))
        await membership_service.record_purchase(lapsed.id, Decimal('50'))
        lapsed.is_active = False
        customer_repository.update(lapsed)
        customer_repository.save_changes()

        analytics = await membership_service.get_customer_analytics()

        assert analytics.total_customers == 3
        assert analytics.active_customers == 2
        assert analytics.total_revenue == Decimal('1500')
        assert analytics.average_spend == Decimal('750.00')
        assert analytics.customers_by_tier == {MembershipTier.SILVER: 1, MembershipTier.BRONZE: 1}
        assert [summary.name for summary in analytics.top_customers] == ["Big Spender", "Small Spender"]

    @pytest.mark.asyncio
    async def test_valid_customer(self, membership_service):
        result = await membership_service.validate_customer(Customer(
            membership_number="MEM-NEW-1",
            name="Valid Customer",
            email="valid@example.com"
        ))

        assert result.is_valid is True
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_customer_missing_fields_and_bad_email(self, membership_service):
        result = await membership_service.validate_customer(Customer(
            membership_number=" ",
            name="",
            email="not-an-email"
        ))

        assert result.is_valid is False
        assert len(result.errors) == 3
        assert "Name is required" in result.errors
        assert "Membership number is required" in result.errors

    @pytest.mark.asyncio
    async def test_membership_number_taken_by_another_customer(self, membership_service):
        holder = await membership_service.register_customer(RegisterCustomerRequest(
            name="Holder", membership_number="MEM-DUP"
        ))

        other = await membership_service.validate_customer(Customer(membership_number="MEM-DUP", name="Other"))
        itself = await membership_service.validate_customer(holder)

        assert other.is_valid is False
        assert other.errors == ["Membership number 'MEM-DUP' already exists"]
        assert itself.is_valid is True


@pytest.mark.unit
@pytest.mark.database
class TestServiceConcurrency:
    """Test that service coroutines yield to the event loop while the database works"""

    @pytest.mark.asyncio
    async def test_concurrent_registrations_all_succeed(self, membership_service, customer_repository):
        customers = await asyncio.gather(*(
            membership_service.register_customer(RegisterCustomerRequest(
                name=f"Concurrent {index}", phone=f"55500100{index:02d}"
            ))
            for index in range(10)
        ))

        assert len({customer.id for customer in customers}) == 10
        assert len({customer.membership_number for customer in customers}) == 10
        assert customer_repository.count() == 10

    @pytest.mark.asyncio
    async def test_event_loop_keeps_running_during_service_calls(self, user_service):
        ticks = 0
        finished = asyncio.Event()

        async def ticker():
            nonlocal ticks
            while not finished.is_set():
                ticks += 1
                await asyncio.sleep(0)

        ticker_task = asyncio.create_task(ticker())
        try:
            for index in range(5):
                await _create_owner(user_service, username=f"owner{index}")
        finally:
            finished.set()
            await ticker_task

        assert ticks > 0

    @pytest.mark.asyncio
    async def test_service_without_executor_uses_loop_default(
        self, customer_repository, membership_repository, benefit_repository
    ):
        service = MembershipService(customer_repository, membership_repository, benefit_repository)

        customer = await service.register_customer(RegisterCustomerRequest(name="Standalone"))

        assert service.executor is None
        assert customer_repository.get_by_id(customer.id) is customer
