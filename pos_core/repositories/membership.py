"""
Customer membership repository: one membership per customer, tier queries,
expiry tracking and tier statistics.
"""

import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from pos_core.data.entities import CustomerMembership, MembershipBenefit, utcnow
from pos_core.data.enums import MembershipTier
from pos_core.data.exceptions import DatabaseOperationType, handle_database_error
from pos_core.repositories.base import BaseRepository


class CustomerMembershipRepository(BaseRepository[CustomerMembership]):
    """Repository for CustomerMembership entities"""

    entity_class = CustomerMembership

    def _active_memberships(self):
        return self._active_query().where(CustomerMembership.is_active.is_(True))

    def get_by_customer_id(self, customer_id: uuid.UUID) -> Optional[CustomerMembership]:
        """Get the membership of a customer with its benefits, or None."""
        statement = (
            self._active_query()
            .where(CustomerMembership.customer_id == customer_id)
            .options(
                selectinload(
                    CustomerMembership.benefits.and_(MembershipBenefit.is_deleted.is_(False))
                ),
                selectinload(CustomerMembership.customer),
            )
            .execution_options(populate_existing=True)
        )
        return self._fetch_one(statement, 'get_by_customer_id')

    def get_by_tier(self, tier: MembershipTier) -> List[CustomerMembership]:
        statement = (
            self._active_memberships()
            .where(CustomerMembership.tier == tier)
            .options(selectinload(CustomerMembership.customer))
            .order_by(CustomerMembership.join_date)
        )
        return self._fetch_all(statement, 'get_by_tier')

    def get_expiring_memberships(self, days_from_now: int) -> List[CustomerMembership]:
        """Active memberships whose expiry date falls within the next ``days_from_now`` days."""
        cutoff = utcnow() + timedelta(days=days_from_now)
        statement = (
            self._active_memberships()
            .where(
                CustomerMembership.expiry_date.is_not(None),
                CustomerMembership.expiry_date <= cutoff,
            )
            .options(selectinload(CustomerMembership.customer))
            .order_by(CustomerMembership.expiry_date)
        )
        return self._fetch_all(statement, 'get_expiring_memberships')

    def get_active_memberships_with_benefits(self) -> List[CustomerMembership]:
        statement = (
            self._active_memberships()
            .options(
                selectinload(CustomerMembership.customer),
                selectinload(
                    CustomerMembership.benefits.and_(
                        MembershipBenefit.is_active.is_(True),
                        MembershipBenefit.is_deleted.is_(False),
                    )
                ),
            )
            .execution_options(populate_existing=True)
        )
        return self._fetch_all(statement, 'get_active_memberships_with_benefits')

    def update_membership_tier(
        self,
        customer_membership_id: uuid.UUID,
        new_tier: MembershipTier,
        total_spent: Decimal
    ) -> bool:
        """
        Stage a tier change for a membership.

        Returns:
            False when the membership does not exist
        """
        membership = self.get_by_id(customer_membership_id)
        if membership is None:
            return False

        membership.tier = new_tier
        membership.total_spent_for_tier = total_spent
        membership.last_updated = utcnow()
        self.update(membership)
        return True

    def get_membership_statistics_by_tier(self) -> Dict[MembershipTier, int]:
        """Count of active memberships per tier; tiers without members are omitted."""
        statement = (
            select(CustomerMembership.tier, func.count(CustomerMembership.id))
            .where(
                CustomerMembership.is_active.is_(True),
                CustomerMembership.is_deleted.is_(False),
            )
            .group_by(CustomerMembership.tier)
        )
        try:
            rows = self.session.execute(statement).all()
        except SQLAlchemyError as e:
            self._record('get_membership_statistics_by_tier', 'error')
            raise handle_database_error(e, DatabaseOperationType.READ, self.entity_name) from e

        self._record('get_membership_statistics_by_tier')
        return {MembershipTier(tier): count for tier, count in rows}
