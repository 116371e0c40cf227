"""
Enumerations shared by the POS core entities, repositories and services.
"""

from enum import Enum, IntEnum


class MembershipTier(IntEnum):
    """
    Customer membership tiers. Ordered so that tiers can be compared
    directly (Bronze < Silver < Gold < Platinum). NONE marks customers
    without a membership.
    """
    NONE = 0
    BRONZE = 1
    SILVER = 2
    GOLD = 3
    PLATINUM = 4


class BenefitType(str, Enum):
    """Kinds of benefit attached to a membership"""
    PERCENTAGE_DISCOUNT = "percentage_discount"
    FIXED_AMOUNT_DISCOUNT = "fixed_amount_discount"
    FREE_SHIPPING = "free_shipping"
    EARLY_ACCESS = "early_access"
    BONUS_POINTS = "bonus_points"
    OTHER = "other"


class BusinessType(str, Enum):
    """Business categories with their own default shop attributes"""
    GROCERY = "grocery"
    SUPER_SHOP = "super_shop"
    PHARMACY = "pharmacy"
    GENERAL_RETAIL = "general_retail"
    CUSTOM = "custom"


class UserRole(str, Enum):
    """Roles a POS user can hold"""
    CASHIER = "cashier"
    INVENTORY_STAFF = "inventory_staff"
    SHOP_MANAGER = "shop_manager"
    BUSINESS_OWNER = "business_owner"
    ADMINISTRATOR = "administrator"


class SyncStatus(str, Enum):
    """Synchronization state of device-local records"""
    NOT_SYNCED = "not_synced"
    SYNCED = "synced"
    SYNC_PENDING = "sync_pending"
    SYNC_FAILED = "sync_failed"
