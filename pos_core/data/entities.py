"""
SQLAlchemy Entity Definitions

Relational model for the POS core: customers with their one-to-one membership, the
benefits attached to a membership, key/value customer preferences, and the users,
businesses and shops created by the business management workflows.

Every entity carries soft-delete fields (is_deleted, deleted_at); device-local entities
also carry device and synchronization tracking. Entities are plain declarative classes
whose constructor fills in default values at construction time, so a freshly created
entity already exposes its id, tier, counters and timestamps before it is saved.

Constraints enforced by the store and surfaced as PersistenceError on save:
- customers.membership_number unique, customers.phone unique when present
- non-negative totals, visit counts, points, benefit values and usage counts
- membership discount percentage within 0..100
- one membership per customer, one preference per (customer, key)
- business names unique per owner, shop names unique per business
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship

from pos_core.data.enums import (
    BenefitType,
    BusinessType,
    MembershipTier,
    SyncStatus,
    UserRole,
)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the store round-trips."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _entity_constructor(self, **kwargs):
    cls_ = type(self)
    for key, default in getattr(cls_, '__entity_defaults__', {}).items():
        if key not in kwargs:
            kwargs[key] = default() if callable(default) else default
    for key, value in kwargs.items():
        if not hasattr(cls_, key):
            raise TypeError(f"{key!r} is an invalid keyword argument for {cls_.__name__}")
        setattr(self, key, value)


Base = declarative_base(constructor=_entity_constructor)


_SOFT_DELETE_DEFAULTS: Dict[str, Any] = {
    'id': uuid.uuid4,
    'is_deleted': False,
    'sync_status': SyncStatus.NOT_SYNCED,
}


class SoftDeleteMixin:
    """Soft-delete and device synchronization columns shared by all entities"""

    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)
    device_id = Column(Uuid, nullable=True)
    server_synced_at = Column(DateTime, nullable=True)
    sync_status = Column(
        SAEnum(SyncStatus, name='sync_status'),
        nullable=False,
        default=SyncStatus.NOT_SYNCED
    )

    def mark_deleted(self) -> None:
        self.is_deleted = True
        self.deleted_at = utcnow()


class Customer(SoftDeleteMixin, Base):
    """Customer with optional membership and preferences"""

    __tablename__ = 'customers'
    __table_args__ = (
        CheckConstraint('total_spent >= 0', name='ck_customers_total_spent'),
        CheckConstraint('visit_count >= 0', name='ck_customers_visit_count'),
    )
    __entity_defaults__ = {
        **_SOFT_DELETE_DEFAULTS,
        'join_date': utcnow,
        'tier': MembershipTier.NONE,
        'total_spent': Decimal('0'),
        'visit_count': 0,
        'is_active': True,
    }

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    membership_number = Column(String(50), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True, unique=True)
    join_date = Column(DateTime, nullable=False, default=utcnow)
    tier = Column(SAEnum(MembershipTier, name='membership_tier'), nullable=False, default=MembershipTier.NONE)
    total_spent = Column(Numeric(18, 2), nullable=False, default=Decimal('0'))
    visit_count = Column(Integer, nullable=False, default=0)
    last_visit = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    membership = relationship(
        'CustomerMembership',
        back_populates='customer',
        uselist=False,
        cascade='all, delete-orphan'
    )
    preferences = relationship(
        'CustomerPreference',
        back_populates='customer',
        cascade='all, delete-orphan',
        order_by=lambda: [CustomerPreference.category, CustomerPreference.key]
    )

    def __repr__(self):
        return f"<Customer(id={self.id}, membership_number='{self.membership_number}', name='{self.name}')>"


class CustomerMembership(SoftDeleteMixin, Base):
    """Membership record of a customer, one per customer"""

    __tablename__ = 'customer_memberships'
    __table_args__ = (
        CheckConstraint(
            'discount_percentage >= 0 AND discount_percentage <= 100',
            name='ck_memberships_discount_percentage'
        ),
        CheckConstraint('points >= 0', name='ck_memberships_points'),
        CheckConstraint('total_spent_for_tier >= 0', name='ck_memberships_total_spent_for_tier'),
    )
    __entity_defaults__ = {
        **_SOFT_DELETE_DEFAULTS,
        'tier': MembershipTier.BRONZE,
        'join_date': utcnow,
        'discount_percentage': Decimal('0'),
        'points': 0,
        'total_spent_for_tier': Decimal('0'),
        'is_active': True,
        'last_updated': utcnow,
    }

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id = Column(Uuid, ForeignKey('customers.id'), nullable=False, unique=True)
    tier = Column(SAEnum(MembershipTier, name='membership_tier'), nullable=False, default=MembershipTier.BRONZE)
    join_date = Column(DateTime, nullable=False, default=utcnow)
    expiry_date = Column(DateTime, nullable=True)
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=Decimal('0'))
    points = Column(Integer, nullable=False, default=0)
    total_spent_for_tier = Column(Numeric(18, 2), nullable=False, default=Decimal('0'))
    is_active = Column(Boolean, nullable=False, default=True)
    last_updated = Column(DateTime, nullable=False, default=utcnow)

    customer = relationship('Customer', back_populates='membership')
    benefits = relationship(
        'MembershipBenefit',
        back_populates='customer_membership',
        cascade='all, delete-orphan',
        order_by=lambda: MembershipBenefit.created_at
    )

    def __repr__(self):
        return f"<CustomerMembership(id={self.id}, customer_id={self.customer_id}, tier={self.tier.name})>"


class MembershipBenefit(SoftDeleteMixin, Base):
    """Benefit granted by a membership"""

    __tablename__ = 'membership_benefits'
    __table_args__ = (
        CheckConstraint('value >= 0', name='ck_benefits_value'),
        CheckConstraint('usage_count >= 0', name='ck_benefits_usage_count'),
    )
    __entity_defaults__ = {
        **_SOFT_DELETE_DEFAULTS,
        'description': '',
        'value': Decimal('0'),
        'is_active': True,
        'usage_count': 0,
        'created_at': utcnow,
    }

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_membership_id = Column(Uuid, ForeignKey('customer_memberships.id'), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=False, default='')
    benefit_type = Column(SAEnum(BenefitType, name='benefit_type'), nullable=False)
    value = Column(Numeric(18, 2), nullable=False, default=Decimal('0'))
    is_active = Column(Boolean, nullable=False, default=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    max_usages = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    customer_membership = relationship('CustomerMembership', back_populates='benefits')

    def is_available(self, at: datetime = None) -> bool:
        """Active, inside its validity window and below its usage limit."""
        at = at or utcnow()
        if not self.is_active or self.is_deleted:
            return False
        if self.start_date is not None and self.start_date > at:
            return False
        if self.end_date is not None and self.end_date < at:
            return False
        if self.max_usages is not None and self.usage_count >= self.max_usages:
            return False
        return True

    def __repr__(self):
        return f"<MembershipBenefit(id={self.id}, name='{self.name}', type={self.benefit_type.value})>"


class CustomerPreference(SoftDeleteMixin, Base):
    """Key/value preference of a customer"""

    __tablename__ = 'customer_preferences'
    __table_args__ = (
        UniqueConstraint('customer_id', 'key', name='uq_customer_preferences_customer_key'),
    )
    __entity_defaults__ = {
        **_SOFT_DELETE_DEFAULTS,
        'category': '',
        'is_active': True,
        'created_at': utcnow,
        'updated_at': utcnow,
    }

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id = Column(Uuid, ForeignKey('customers.id'), nullable=False, index=True)
    key = Column(String(100), nullable=False)
    value = Column(String(500), nullable=False)
    category = Column(String(50), nullable=False, default='')
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    customer = relationship('Customer', back_populates='preferences')

    def __repr__(self):
        return f"<CustomerPreference(customer_id={self.customer_id}, key='{self.key}', value='{self.value}')>"


class User(SoftDeleteMixin, Base):
    """POS user; business owners own businesses"""

    __tablename__ = 'users'
    __entity_defaults__ = {
        **_SOFT_DELETE_DEFAULTS,
        'role': UserRole.CASHIER,
        'is_active': True,
        'created_at': utcnow,
        'updated_at': utcnow,
    }

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    username = Column(String(100), nullable=False, unique=True)
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    salt = Column(String(255), nullable=False)
    role = Column(SAEnum(UserRole, name='user_role'), nullable=False, default=UserRole.CASHIER)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    last_login_at = Column(DateTime, nullable=True)

    businesses = relationship('Business', back_populates='owner')

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', role={self.role.value})>"


class Business(SoftDeleteMixin, Base):
    """Business owned by a user, grouping one or more shops"""

    __tablename__ = 'businesses'
    __table_args__ = (
        UniqueConstraint('owner_id', 'name', name='uq_businesses_owner_name'),
    )
    __entity_defaults__ = {
        **_SOFT_DELETE_DEFAULTS,
        'is_active': True,
        'created_at': utcnow,
        'updated_at': utcnow,
    }

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    business_type = Column(SAEnum(BusinessType, name='business_type'), nullable=False)
    owner_id = Column(Uuid, ForeignKey('users.id'), nullable=False, index=True)
    description = Column(String(1000), nullable=True)
    address = Column(String(500), nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    tax_id = Column(String(50), nullable=True)
    configuration = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    owner = relationship('User', back_populates='businesses')
    shops = relationship('Shop', back_populates='business', order_by=lambda: Shop.created_at)

    def __repr__(self):
        return f"<Business(id={self.id}, name='{self.name}', type={self.business_type.value})>"


class Shop(SoftDeleteMixin, Base):
    """Physical shop belonging to a business"""

    __tablename__ = 'shops'
    __table_args__ = (
        UniqueConstraint('business_id', 'name', name='uq_shops_business_name'),
    )
    __entity_defaults__ = {
        **_SOFT_DELETE_DEFAULTS,
        'is_active': True,
        'created_at': utcnow,
        'updated_at': utcnow,
    }

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey('businesses.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    address = Column(String(500), nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    configuration = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    business = relationship('Business', back_populates='shops')

    def __repr__(self):
        return f"<Shop(id={self.id}, business_id={self.business_id}, name='{self.name}')>"
