"""
Membership benefit repository: benefits of a membership, availability filtering
by validity window and usage limit, and usage tracking.
"""

import uuid
from datetime import timedelta
from typing import List

from sqlalchemy import or_
from sqlalchemy.orm import selectinload

from pos_core.data.entities import CustomerMembership, MembershipBenefit, utcnow
from pos_core.data.enums import BenefitType
from pos_core.repositories.base import BaseRepository


class MembershipBenefitRepository(BaseRepository[MembershipBenefit]):
    """Repository for MembershipBenefit entities"""

    entity_class = MembershipBenefit

    @staticmethod
    def _available_criteria(now):
        return (
            MembershipBenefit.is_active.is_(True),
            or_(MembershipBenefit.start_date.is_(None), MembershipBenefit.start_date <= now),
            or_(MembershipBenefit.end_date.is_(None), MembershipBenefit.end_date >= now),
            or_(
                MembershipBenefit.max_usages.is_(None),
                MembershipBenefit.usage_count < MembershipBenefit.max_usages,
            ),
        )

    def get_by_customer_membership_id(self, customer_membership_id: uuid.UUID) -> List[MembershipBenefit]:
        """All benefits of a membership in creation order."""
        statement = (
            self._active_query()
            .where(MembershipBenefit.customer_membership_id == customer_membership_id)
            .order_by(MembershipBenefit.created_at)
        )
        return self._fetch_all(statement, 'get_by_customer_membership_id')

    def get_active_benefits_by_customer_membership_id(
        self,
        customer_membership_id: uuid.UUID
    ) -> List[MembershipBenefit]:
        statement = (
            self._active_query()
            .where(
                MembershipBenefit.customer_membership_id == customer_membership_id,
                *self._available_criteria(utcnow()),
            )
            .order_by(MembershipBenefit.created_at)
        )
        return self._fetch_all(statement, 'get_active_benefits_by_customer_membership_id')

    def get_by_type(self, benefit_type: BenefitType) -> List[MembershipBenefit]:
        statement = (
            self._active_query()
            .where(
                MembershipBenefit.benefit_type == benefit_type,
                MembershipBenefit.is_active.is_(True),
            )
            .options(
                selectinload(MembershipBenefit.customer_membership)
                .selectinload(CustomerMembership.customer)
            )
            .order_by(MembershipBenefit.created_at)
        )
        return self._fetch_all(statement, 'get_by_type')

    def get_expiring_benefits(self, days_from_now: int) -> List[MembershipBenefit]:
        cutoff = utcnow() + timedelta(days=days_from_now)
        statement = (
            self._active_query()
            .where(
                MembershipBenefit.end_date.is_not(None),
                MembershipBenefit.end_date <= cutoff,
                MembershipBenefit.is_active.is_(True),
            )
            .options(selectinload(MembershipBenefit.customer_membership))
            .order_by(MembershipBenefit.end_date)
        )
        return self._fetch_all(statement, 'get_expiring_benefits')

    def update_usage_count(self, benefit_id: uuid.UUID, usage_count: int) -> bool:
        """Stage a new usage count. Returns False when the benefit does not exist."""
        benefit = self.get_by_id(benefit_id)
        if benefit is None:
            return False

        benefit.usage_count = usage_count
        self.update(benefit)
        return True

    def get_available_benefits_for_customer(self, customer_id: uuid.UUID) -> List[MembershipBenefit]:
        """Usable benefits across the customer's active membership, by type then value."""
        statement = (
            self._active_query()
            .join(MembershipBenefit.customer_membership)
            .where(
                CustomerMembership.customer_id == customer_id,
                CustomerMembership.is_active.is_(True),
                CustomerMembership.is_deleted.is_(False),
                *self._available_criteria(utcnow()),
            )
            .order_by(MembershipBenefit.benefit_type, MembershipBenefit.value)
        )
        return self._fetch_all(statement, 'get_available_benefits_for_customer')
