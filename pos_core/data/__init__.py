"""
Data access layer: SQLAlchemy entities, the database manager owning the engine and
session factory, and the database exception hierarchy.

Usage:
    from pos_core.data import create_database_manager

    manager = create_database_manager()
    session = manager.create_session()
"""

from pos_core.data.database import DatabaseManager, create_database_manager
from pos_core.data.entities import (
    Base,
    Business,
    Customer,
    CustomerMembership,
    CustomerPreference,
    MembershipBenefit,
    Shop,
    User,
    utcnow,
)
from pos_core.data.enums import (
    BenefitType,
    BusinessType,
    MembershipTier,
    SyncStatus,
    UserRole,
)
from pos_core.data.exceptions import (
    ConnectionException,
    DatabaseErrorCategory,
    DatabaseErrorSeverity,
    DatabaseException,
    DatabaseOperationType,
    PersistenceError,
    QueryException,
    TimeoutException,
    handle_database_error,
)

__all__ = [
    "DatabaseManager",
    "create_database_manager",
    "Base",
    "Business",
    "Customer",
    "CustomerMembership",
    "CustomerPreference",
    "MembershipBenefit",
    "Shop",
    "User",
    "utcnow",
    "BenefitType",
    "BusinessType",
    "MembershipTier",
    "SyncStatus",
    "UserRole",
    "ConnectionException",
    "DatabaseErrorCategory",
    "DatabaseErrorSeverity",
    "DatabaseException",
    "DatabaseOperationType",
    "PersistenceError",
    "QueryException",
    "TimeoutException",
    "handle_database_error",
]
