"""
Customer repository: lookups by mobile number and membership number, tier and spending
queries, and uniqueness checks used before registering customers.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import exists, or_, select
from sqlalchemy.orm import selectinload

from pos_core.data.entities import (
    Customer,
    CustomerMembership,
    CustomerPreference,
    MembershipBenefit,
)
from pos_core.data.enums import MembershipTier
from pos_core.repositories.base import BaseRepository


class CustomerRepository(BaseRepository[Customer]):
    """Repository for Customer entities"""

    entity_class = Customer

    def _active_customers(self):
        return self._active_query().where(Customer.is_active.is_(True))

    def get_by_mobile_number(self, mobile_number: str) -> Optional[Customer]:
        """
        Get the active customer with the given phone number.

        The membership (with its benefits) and the customer's preferences are loaded
        with the customer, refreshed from the store even if the customer is already
        present in the session.

        Returns:
            The customer, or None when no active customer has this number
        """
        statement = (
            self._active_customers()
            .where(Customer.phone == mobile_number)
            .options(
                selectinload(
                    Customer.membership.and_(CustomerMembership.is_deleted.is_(False))
                ).selectinload(
                    CustomerMembership.benefits.and_(MembershipBenefit.is_deleted.is_(False))
                ),
                selectinload(
                    Customer.preferences.and_(CustomerPreference.is_deleted.is_(False))
                ),
            )
            .execution_options(populate_existing=True)
        )
        return self._fetch_one(statement, 'get_by_mobile_number')

    def get_by_membership_number(self, membership_number: str) -> Optional[Customer]:
        statement = self._active_customers().where(Customer.membership_number == membership_number)
        return self._fetch_one(statement, 'get_by_membership_number')

    def get_by_tier(self, tier: MembershipTier) -> List[Customer]:
        statement = self._active_customers().where(Customer.tier == tier).order_by(Customer.name)
        return self._fetch_all(statement, 'get_by_tier')

    def get_active_customers(self) -> List[Customer]:
        statement = self._active_customers().order_by(Customer.name)
        return self._fetch_all(statement, 'get_active_customers')

    def get_top_customers_by_spending(self, count: int) -> List[Customer]:
        statement = (
            self._active_customers()
            .order_by(Customer.total_spent.desc(), Customer.name)
            .limit(count)
        )
        return self._fetch_all(statement, 'get_top_customers_by_spending')

    def get_customers_joined_after(self, date: datetime) -> List[Customer]:
        statement = (
            self._active_customers()
            .where(Customer.join_date >= date)
            .order_by(Customer.join_date)
        )
        return self._fetch_all(statement, 'get_customers_joined_after')

    def is_membership_number_unique(
        self,
        membership_number: str,
        exclude_customer_id: Optional[uuid.UUID] = None
    ) -> bool:
        # Soft-deleted rows still hold the unique index entry.
        criteria = [Customer.membership_number == membership_number]
        if exclude_customer_id is not None:
            criteria.append(Customer.id != exclude_customer_id)
        return not self._scalar(select(exists().where(*criteria)), 'is_membership_number_unique')

    def is_mobile_number_unique(
        self,
        mobile_number: str,
        exclude_customer_id: Optional[uuid.UUID] = None
    ) -> bool:
        criteria = [Customer.phone == mobile_number]
        if exclude_customer_id is not None:
            criteria.append(Customer.id != exclude_customer_id)
        return not self._scalar(select(exists().where(*criteria)), 'is_mobile_number_unique')

    def search_by_name_or_membership(self, search_term: str, max_results: int = 10) -> List[Customer]:
        """
        Case-insensitive substring search over name, membership number and phone.

        LIKE wildcards in ``search_term`` match literally.
        """
        statement = (
            self._active_customers()
            .where(or_(
                Customer.name.icontains(search_term, autoescape=True),
                Customer.membership_number.icontains(search_term, autoescape=True),
                Customer.phone.icontains(search_term, autoescape=True),
            ))
            .order_by(Customer.name)
            .limit(max_results)
        )
        return self._fetch_all(statement, 'search_by_name_or_membership')

    def get_total_spent_by_customer(self, customer_id: uuid.UUID) -> Decimal:
        """Total spending of a customer, zero when the customer does not exist."""
        statement = select(Customer.total_spent).where(
            Customer.id == customer_id,
            Customer.is_deleted.is_(False)
        )
        total_spent = self._scalar(statement, 'get_total_spent_by_customer')
        return Decimal(total_spent) if total_spent is not None else Decimal('0')

    def get_visit_count_by_customer(self, customer_id: uuid.UUID) -> int:
        statement = select(Customer.visit_count).where(
            Customer.id == customer_id,
            Customer.is_deleted.is_(False)
        )
        return self._scalar(statement, 'get_visit_count_by_customer') or 0
