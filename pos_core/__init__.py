"""
POS Core Package Initialization
===============================

Core data layer and system integration package for the point-of-sale platform.
Bundles the relational persistence context, the repository layer for customers,
memberships, benefits and preferences, the business services used for business
and shop setup, and the system integration service that validates how all of
these components are wired together.

Package Structure:
- config: environment driven configuration classes
- monitoring: structlog logging setup and Prometheus metrics
- data: SQLAlchemy engine/session management, entities and database exceptions
- repositories: repository layer over the shared persistence context
- business: business exceptions, pydantic request/result models and services
- integrations: system integration validation service
- container: named component registry building everything around one session
"""

__version__ = "1.0.0"
__title__ = "POS Core"
__description__ = "Customer membership data layer and system integration for POS"

PACKAGE_NAME = "pos_core"

__all__ = [
    "__version__",
    "__title__",
    "__description__",
    "PACKAGE_NAME",
]
