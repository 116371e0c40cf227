"""
Unit tests for the repository layer over the shared persistence context.

Covers the stage-then-commit contract of BaseRepository, soft deletion, store
constraint rejections and the entity specific queries of every repository.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from pos_core.data.entities import Customer, utcnow
from pos_core.data.enums import BenefitType, BusinessType, MembershipTier
from pos_core.data.exceptions import PersistenceError
from pos_core.repositories import CustomerRepository

from tests.fixtures.factory_fixtures import (
    BusinessFactory,
    CustomerFactory,
    CustomerMembershipFactory,
    CustomerPreferenceFactory,
    MembershipBenefitFactory,
    ShopFactory,
    UserFactory,
)


def _save_customer(customer_repository, **overrides):
    customer = CustomerFactory(**overrides)
    customer_repository.add(customer)
    customer_repository.save_changes()
    return customer


def _save_membership(membership_repository, customer, **overrides):
    membership = CustomerMembershipFactory(customer_id=customer.id, **overrides)
    membership_repository.add(membership)
    membership_repository.save_changes()
    return membership


@pytest.mark.unit
@pytest.mark.database
class TestBaseRepository:
    """Test the generic stage-then-commit contract"""

    def test_session_is_required(self):
        with pytest.raises(ValueError):
            CustomerRepository(None)

    def test_added_entity_is_invisible_until_saved(self, customer_repository):
        customer = CustomerFactory()
        customer_repository.add(customer)

        assert customer.id is not None
        assert customer_repository.get_by_id(customer.id) is None

        assert customer_repository.save_changes() == 1
        assert customer_repository.get_by_id(customer.id) is customer

    def test_add_rejects_other_entity_types(self, customer_repository):
        with pytest.raises(TypeError):
            customer_repository.add(UserFactory())

    def test_changes_staged_by_any_repository_commit_together(
        self, customer_repository, preference_repository, persisted_customer
    ):
        preference_repository.add(CustomerPreferenceFactory(customer_id=persisted_customer.id))
        customer_repository.add(CustomerFactory())

        assert customer_repository.save_changes() == 2
        assert customer_repository.count() == 2
        assert len(preference_repository.get_by_customer_id(persisted_customer.id)) == 1

    def test_soft_delete_hides_entity(self, customer_repository, persisted_customer):
        assert customer_repository.delete(persisted_customer.id) is True
        customer_repository.save_changes()

        assert customer_repository.get_by_id(persisted_customer.id) is None
        assert customer_repository.count() == 0
        assert persisted_customer.is_deleted is True
        assert persisted_customer.deleted_at is not None

    def test_delete_of_missing_entity_returns_false(self, customer_repository):
        assert customer_repository.delete(uuid.uuid4()) is False

    def test_find_applies_criteria(self, customer_repository):
        gold = _save_customer(customer_repository, tier=MembershipTier.GOLD)
        _save_customer(customer_repository, tier=MembershipTier.SILVER)

        assert customer_repository.find(Customer.tier == MembershipTier.GOLD) == [gold]

    def test_update_refreshes_updated_at(self, user_repository):
        user = UserFactory()
        user_repository.add(user)
        user_repository.save_changes()
        previous = user.updated_at

        user.full_name = "Renamed User"
        user_repository.update(user)
        user_repository.save_changes()

        assert user.updated_at >= previous
        assert user_repository.get_by_id(user.id).full_name == "Renamed User"

    def test_unique_violation_raises_persistence_error_and_rolls_back(self, customer_repository):
        _save_customer(customer_repository, membership_number="MEM-DUP")
        customer_repository.add(CustomerFactory(membership_number="MEM-DUP"))

        with pytest.raises(PersistenceError) as exc_info:
            customer_repository.save_changes()

        assert exc_info.value.entity == 'Customer'
        customer_repository.add(CustomerFactory(membership_number="MEM-AFTER-ROLLBACK"))
        customer_repository.save_changes()
        assert customer_repository.count() == 2

    def test_check_constraint_violation_raises_persistence_error(self, customer_repository):
        customer_repository.add(CustomerFactory(total_spent=Decimal('-1')))

        with pytest.raises(PersistenceError):
            customer_repository.save_changes()

    def test_foreign_key_violation_raises_persistence_error(self, preference_repository):
        preference_repository.add(CustomerPreferenceFactory(customer_id=uuid.uuid4()))

        with pytest.raises(PersistenceError):
            preference_repository.save_changes()

    def test_check_liveness(self, customer_repository):
        assert customer_repository.check_liveness() is True


@pytest.mark.unit
@pytest.mark.database
class TestCustomerRepository:
    """Test customer lookups and uniqueness checks"""

    def test_unknown_mobile_number_returns_none(self, customer_repository):
        assert customer_repository.get_by_mobile_number("0000000000") is None

    def test_inactive_customers_are_not_found_by_mobile_number(self, customer_repository):
        _save_customer(customer_repository, phone="5551112222", is_active=False)

        assert customer_repository.get_by_mobile_number("5551112222") is None

    def test_get_by_membership_number(self, customer_repository):
        customer = _save_customer(customer_repository, membership_number="MEM-LOOKUP")

        assert customer_repository.get_by_membership_number("MEM-LOOKUP") is customer

    def test_get_by_tier(self, customer_repository):
        platinum = _save_customer(customer_repository, tier=MembershipTier.PLATINUM)
        _save_customer(customer_repository, tier=MembershipTier.BRONZE)

        assert customer_repository.get_by_tier(MembershipTier.PLATINUM) == [platinum]

    def test_top_customers_by_spending(self, customer_repository):
        low = _save_customer(customer_repository, total_spent=Decimal('10'))
        high = _save_customer(customer_repository, total_spent=Decimal('900'))
        middle = _save_customer(customer_repository, total_spent=Decimal('250'))

        assert customer_repository.get_top_customers_by_spending(2) == [high, middle]
        assert low not in customer_repository.get_top_customers_by_spending(2)

    def test_customers_joined_after(self, customer_repository):
        _save_customer(customer_repository, join_date=utcnow() - timedelta(days=30))
        recent = _save_customer(customer_repository, join_date=utcnow())

        assert customer_repository.get_customers_joined_after(utcnow() - timedelta(days=1)) == [recent]

    def test_search_is_case_insensitive(self, customer_repository):
        customer = _save_customer(customer_repository, name="Alice Johnson")
        _save_customer(customer_repository, name="Bob Smith")

        assert customer_repository.search_by_name_or_membership("alice") == [customer]

    @pytest.mark.parametrize("search_term", ["%", "_", "\\"])
    def test_search_treats_like_wildcards_literally(self, customer_repository, search_term):
        _save_customer(customer_repository, name="Alice Johnson")
        _save_customer(customer_repository, name="Bob Smith")

        assert customer_repository.search_by_name_or_membership(search_term) == []

    def test_search_matches_literal_wildcard_characters(self, customer_repository):
        discounted = _save_customer(customer_repository, name="10% Off Club")
        _save_customer(customer_repository, name="100 Off Club")

        assert customer_repository.search_by_name_or_membership("10%") == [discounted]

    def test_search_covers_membership_number_and_phone(self, customer_repository):
        by_number = _save_customer(customer_repository, name="Zed", membership_number="MEM-FIND-1")
        by_phone = _save_customer(customer_repository, name="Amy", phone="5557770001")

        assert customer_repository.search_by_name_or_membership("find-1") == [by_number]
        assert customer_repository.search_by_name_or_membership("777000") == [by_phone]

    def test_search_respects_max_results(self, customer_repository):
        for index in range(3):
            _save_customer(customer_repository, name=f"Johnson {index}")

        assert len(customer_repository.search_by_name_or_membership("johnson", max_results=2)) == 2

    def test_total_spent_and_visit_count_by_customer(self, customer_repository):
        customer = _save_customer(customer_repository, total_spent=Decimal('125.50'), visit_count=4)

        assert customer_repository.get_total_spent_by_customer(customer.id) == Decimal('125.50')
        assert customer_repository.get_visit_count_by_customer(customer.id) == 4

    def test_total_spent_and_visit_count_of_unknown_customer_are_zero(self, customer_repository):
        missing_id = uuid.uuid4()

        assert customer_repository.get_total_spent_by_customer(missing_id) == Decimal('0')
        assert customer_repository.get_visit_count_by_customer(missing_id) == 0

    def test_membership_number_uniqueness_includes_deleted_customers(self, customer_repository):
        customer = _save_customer(customer_repository, membership_number="MEM-TAKEN")
        customer_repository.delete(customer.id)
        customer_repository.save_changes()

        assert customer_repository.is_membership_number_unique("MEM-TAKEN") is False
        assert customer_repository.is_membership_number_unique("MEM-FREE") is True
        assert customer_repository.is_membership_number_unique("MEM-TAKEN", exclude_customer_id=customer.id)

    def test_mobile_number_uniqueness(self, customer_repository):
        _save_customer(customer_repository, phone="5559990000")

        assert customer_repository.is_mobile_number_unique("5559990000") is False
        assert customer_repository.is_mobile_number_unique("5559990001") is True


@pytest.mark.unit
@pytest.mark.database
class TestCustomerMembershipRepository:
    """Test membership queries and tier updates"""

    def test_unknown_customer_has_no_membership(self, membership_repository):
        assert membership_repository.get_by_customer_id(uuid.uuid4()) is None

    def test_one_membership_per_customer(self, membership_repository, persisted_customer):
        _save_membership(membership_repository, persisted_customer)
        membership_repository.add(CustomerMembershipFactory(customer_id=persisted_customer.id))

        with pytest.raises(PersistenceError):
            membership_repository.save_changes()

    def test_discount_percentage_must_be_within_bounds(self, membership_repository, persisted_customer):
        membership_repository.add(CustomerMembershipFactory(
            customer_id=persisted_customer.id,
            discount_percentage=Decimal('150')
        ))

        with pytest.raises(PersistenceError):
            membership_repository.save_changes()

    @pytest.mark.parametrize("overrides", [
        {'discount_percentage': Decimal('-1')},
        {'points': -1},
        {'total_spent_for_tier': Decimal('-0.01')},
    ])
    def test_negative_membership_values_are_rejected(self, membership_repository, persisted_customer, overrides):
        membership_repository.add(CustomerMembershipFactory(customer_id=persisted_customer.id, **overrides))

        with pytest.raises(PersistenceError):
            membership_repository.save_changes()

        assert membership_repository.get_by_customer_id(persisted_customer.id) is None

    def test_get_by_tier(self, customer_repository, membership_repository):
        gold = _save_membership(
            membership_repository, _save_customer(customer_repository), tier=MembershipTier.GOLD
        )
        _save_membership(membership_repository, _save_customer(customer_repository))

        assert membership_repository.get_by_tier(MembershipTier.GOLD) == [gold]

    def test_expiring_memberships(self, customer_repository, membership_repository):
        soon = _save_membership(
            membership_repository, _save_customer(customer_repository),
            expiry_date=utcnow() + timedelta(days=5)
        )
        _save_membership(
            membership_repository, _save_customer(customer_repository),
            expiry_date=utcnow() + timedelta(days=60)
        )
        _save_membership(membership_repository, _save_customer(customer_repository))

        assert membership_repository.get_expiring_memberships(10) == [soon]

    def test_update_membership_tier(self, membership_repository, persisted_customer):
        membership = _save_membership(membership_repository, persisted_customer)

        assert membership_repository.update_membership_tier(
            membership.id, MembershipTier.GOLD, Decimal('5200')
        ) is True
        membership_repository.save_changes()

        stored = membership_repository.get_by_customer_id(persisted_customer.id)
        assert stored.tier == MembershipTier.GOLD
        assert stored.total_spent_for_tier == Decimal('5200')

    def test_update_missing_membership_tier_returns_false(self, membership_repository):
        assert membership_repository.update_membership_tier(
            uuid.uuid4(), MembershipTier.GOLD, Decimal('0')
        ) is False

    def test_statistics_by_tier(self, customer_repository, membership_repository):
        for tier in (MembershipTier.BRONZE, MembershipTier.BRONZE, MembershipTier.GOLD):
            _save_membership(membership_repository, _save_customer(customer_repository), tier=tier)

        assert membership_repository.get_membership_statistics_by_tier() == {
            MembershipTier.BRONZE: 2,
            MembershipTier.GOLD: 1,
        }

    def test_active_memberships_with_benefits(
        self, membership_repository, benefit_repository, persisted_customer
    ):
        membership = _save_membership(membership_repository, persisted_customer)
        benefit_repository.add(MembershipBenefitFactory(customer_membership_id=membership.id))
        benefit_repository.add(MembershipBenefitFactory(
            customer_membership_id=membership.id, is_active=False
        ))
        benefit_repository.save_changes()

        memberships = membership_repository.get_active_memberships_with_benefits()

        assert memberships == [membership]
        assert len(memberships[0].benefits) == 1


@pytest.mark.unit
@pytest.mark.database
class TestMembershipBenefitRepository:
    """Test benefit availability rules and usage tracking"""

    @pytest.fixture
    def membership(self, membership_repository, persisted_customer):
        return _save_membership(membership_repository, persisted_customer)

    def test_active_benefits_exclude_expired_exhausted_and_inactive(self, benefit_repository, membership):
        now = utcnow()
        available = MembershipBenefitFactory(
            customer_membership_id=membership.id, end_date=now + timedelta(days=10)
        )
        benefit_repository.add(available)
        benefit_repository.add(MembershipBenefitFactory(
            customer_membership_id=membership.id, end_date=now - timedelta(days=1)
        ))
        benefit_repository.add(MembershipBenefitFactory(
            customer_membership_id=membership.id, max_usages=2, usage_count=2
        ))
        benefit_repository.add(MembershipBenefitFactory(
            customer_membership_id=membership.id, start_date=now + timedelta(days=3)
        ))
        benefit_repository.add(MembershipBenefitFactory(
            customer_membership_id=membership.id, is_active=False
        ))
        benefit_repository.save_changes()

        assert benefit_repository.get_active_benefits_by_customer_membership_id(membership.id) == [available]
        assert len(benefit_repository.get_by_customer_membership_id(membership.id)) == 5

    def test_is_available_matches_query_rules(self):
        now = utcnow()

        assert MembershipBenefitFactory().is_available(now)
        assert not MembershipBenefitFactory(max_usages=1, usage_count=1).is_available(now)
        assert not MembershipBenefitFactory(end_date=now - timedelta(seconds=1)).is_available(now)
        assert not MembershipBenefitFactory(is_active=False).is_available(now)

    def test_get_by_type(self, benefit_repository, membership):
        points = MembershipBenefitFactory(
            customer_membership_id=membership.id, benefit_type=BenefitType.BONUS_POINTS
        )
        benefit_repository.add(points)
        benefit_repository.add(MembershipBenefitFactory(customer_membership_id=membership.id))
        benefit_repository.save_changes()

        assert benefit_repository.get_by_type(BenefitType.BONUS_POINTS) == [points]

    def test_expiring_benefits(self, benefit_repository, membership):
        expiring = MembershipBenefitFactory(
            customer_membership_id=membership.id, end_date=utcnow() + timedelta(days=2)
        )
        benefit_repository.add(expiring)
        benefit_repository.add(MembershipBenefitFactory(
            customer_membership_id=membership.id, end_date=utcnow() + timedelta(days=90)
        ))
        benefit_repository.save_changes()

        assert benefit_repository.get_expiring_benefits(7) == [expiring]

    def test_update_usage_count(self, benefit_repository, membership):
        benefit = MembershipBenefitFactory(customer_membership_id=membership.id, max_usages=3)
        benefit_repository.add(benefit)
        benefit_repository.save_changes()

        assert benefit_repository.update_usage_count(benefit.id, 3) is True
        benefit_repository.save_changes()

        assert benefit_repository.get_active_benefits_by_customer_membership_id(membership.id) == []
        assert benefit_repository.update_usage_count(uuid.uuid4(), 1) is False

    def test_available_benefits_for_customer(self, benefit_repository, membership, persisted_customer):
        benefit = MembershipBenefitFactory(customer_membership_id=membership.id)
        benefit_repository.add(benefit)
        benefit_repository.save_changes()

        assert benefit_repository.get_available_benefits_for_customer(persisted_customer.id) == [benefit]
        assert benefit_repository.get_available_benefits_for_customer(uuid.uuid4()) == []


@pytest.mark.unit
@pytest.mark.database
class TestCustomerPreferenceRepository:
    """Test upsert-by-key preferences"""

    def test_set_preference_upserts_by_key(self, preference_repository, persisted_customer):
        preference_repository.set_preference(persisted_customer.id, "theme", "light", "ui")
        preference_repository.set_preference(persisted_customer.id, "theme", "dark", "ui")

        preferences = preference_repository.get_by_customer_id(persisted_customer.id)

        assert len(preferences) == 1
        assert preference_repository.get_preferences_dictionary(persisted_customer.id) == {"theme": "dark"}

    def test_removed_preference_can_be_set_again(self, preference_repository, persisted_customer):
        preference_repository.set_preference(persisted_customer.id, "newsletter", "true", "communication")

        assert preference_repository.remove_preference(persisted_customer.id, "newsletter") is True
        assert preference_repository.get_preferences_dictionary(persisted_customer.id) == {}

        preference_repository.set_preference(persisted_customer.id, "newsletter", "false", "communication")

        assert preference_repository.get_preferences_dictionary(persisted_customer.id) == {"newsletter": "false"}

    def test_remove_missing_preference_returns_false(self, preference_repository, persisted_customer):
        assert preference_repository.remove_preference(persisted_customer.id, "missing") is False

    def test_preferences_are_ordered_by_category_then_key(self, preference_repository, persisted_customer):
        preference_repository.set_preference(persisted_customer.id, "zoom", "100", "ui")
        preference_repository.set_preference(persisted_customer.id, "payment", "card", "billing")
        preference_repository.set_preference(persisted_customer.id, "language", "en", "ui")

        keys = [p.key for p in preference_repository.get_by_customer_id(persisted_customer.id)]

        assert keys == ["payment", "language", "zoom"]

    def test_dictionary_can_be_limited_to_category(self, preference_repository, persisted_customer):
        preference_repository.set_preference(persisted_customer.id, "language", "en", "ui")
        preference_repository.set_preference(persisted_customer.id, "payment", "card", "billing")

        assert preference_repository.get_preferences_dictionary(persisted_customer.id, category="billing") == {
            "payment": "card"
        }
        assert len(preference_repository.get_by_category("ui")) == 1
        assert preference_repository.get_by_customer_id_and_key(persisted_customer.id, "language").value == "en"

    def test_empty_category_selects_uncategorized_preferences(self, preference_repository, persisted_customer):
        preference_repository.set_preference(persisted_customer.id, "nickname", "Al")
        preference_repository.set_preference(persisted_customer.id, "payment", "card", "billing")

        assert preference_repository.get_preferences_dictionary(persisted_customer.id, category="") == {
            "nickname": "Al"
        }
        assert preference_repository.get_preferences_dictionary(persisted_customer.id) == {
            "nickname": "Al",
            "payment": "card",
        }

    def test_preference_for_unknown_customer_is_rejected(self, preference_repository):
        with pytest.raises(PersistenceError):
            preference_repository.set_preference(uuid.uuid4(), "language", "en", "ui")


@pytest.mark.unit
@pytest.mark.database
class TestUserBusinessShopRepositories:
    """Test user lookups and per-tenant uniqueness of businesses and shops"""

    def test_user_lookups(self, user_repository):
        user = UserFactory(username="cashier1", email="Cashier1@Example.com")
        user_repository.add(user)
        user_repository.save_changes()

        assert user_repository.get_by_username("cashier1") is user
        assert user_repository.get_by_email("cashier1@example.com") is user
        assert user_repository.username_exists("cashier1") is True
        assert user_repository.email_exists("CASHIER1@example.com") is True
        assert user_repository.username_exists("nobody") is False
        assert user_repository.get_active_users() == [user]

    def test_business_names_are_unique_per_owner(self, user_repository, business_repository, persisted_owner):
        other_owner = UserFactory()
        user_repository.add(other_owner)
        user_repository.save_changes()

        business_repository.add(BusinessFactory(name="Corner Shop", owner_id=persisted_owner.id))
        business_repository.save_changes()

        assert business_repository.is_business_name_unique("Corner Shop", persisted_owner.id) is False
        assert business_repository.is_business_name_unique("Corner Shop", other_owner.id) is True

        business_repository.add(BusinessFactory(name="Corner Shop", owner_id=persisted_owner.id))
        with pytest.raises(PersistenceError):
            business_repository.save_changes()

    def test_businesses_by_owner_and_type(self, business_repository, persisted_owner):
        pharmacy = BusinessFactory(owner_id=persisted_owner.id, business_type=BusinessType.PHARMACY)
        grocery = BusinessFactory(owner_id=persisted_owner.id, business_type=BusinessType.GROCERY)
        business_repository.add(pharmacy)
        business_repository.add(grocery)
        business_repository.save_changes()

        assert set(business_repository.get_businesses_by_owner(persisted_owner.id)) == {pharmacy, grocery}
        assert business_repository.get_businesses_by_type(BusinessType.PHARMACY) == [pharmacy]
        assert business_repository.get_businesses_by_owner(uuid.uuid4()) == []

    def test_shops_of_a_business(self, business_repository, shop_repository, persisted_owner):
        business = BusinessFactory(owner_id=persisted_owner.id)
        business_repository.add(business)
        business_repository.save_changes()

        shop_repository.add(ShopFactory(business_id=business.id, name="B Shop"))
        shop_repository.add(ShopFactory(business_id=business.id, name="A Shop"))
        shop_repository.save_changes()

        assert [shop.name for shop in shop_repository.get_shops_by_business(business.id)] == ["A Shop", "B Shop"]
        assert shop_repository.is_shop_name_unique("A Shop", business.id) is False
        assert shop_repository.is_shop_name_unique("C Shop", business.id) is True

        loaded = business_repository.get_business_with_shops(business.id)
        assert len(loaded.shops) == 2

        shop = shop_repository.get_shops_by_business(business.id)[0]
        assert shop_repository.get_shop_with_business(shop.id).business is business
