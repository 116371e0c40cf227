"""
Repository layer over the shared persistence context.

All repositories accept the same SQLAlchemy Session; changes staged through any of
them are committed together by save_changes().
"""

from pos_core.repositories.base import BaseRepository
from pos_core.repositories.benefit import MembershipBenefitRepository
from pos_core.repositories.business import BusinessRepository
from pos_core.repositories.customer import CustomerRepository
from pos_core.repositories.membership import CustomerMembershipRepository
from pos_core.repositories.preference import CustomerPreferenceRepository
from pos_core.repositories.shop import ShopRepository
from pos_core.repositories.user import UserRepository

__all__ = [
    "BaseRepository",
    "BusinessRepository",
    "CustomerMembershipRepository",
    "CustomerPreferenceRepository",
    "CustomerRepository",
    "MembershipBenefitRepository",
    "ShopRepository",
    "UserRepository",
]
