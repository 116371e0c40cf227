"""
Global pytest configuration for the POS core test suite.

Every test gets a freshly built ServiceContainer over a private in-memory SQLite
database (TestingConfig), so tests never share rows. The container is closed on
teardown, which closes the session and disposes the engine.

Fixture Organization:
- test_config: the TestingConfig class
- container: built container, closed after the test
- session: the shared SQLAlchemy session of the container
- *_repository / *_service fixtures: components resolved from the container
  (services run repository work on the container's database executor)
- factory fixtures: re-exported from tests.fixtures.factory_fixtures
"""

import pytest

from pos_core.config.settings import TestingConfig
from pos_core.container import build_container
from pos_core.monitoring.logging import setup_structured_logging

from tests.fixtures.factory_fixtures import (  # noqa: F401
    BusinessFactory,
    CustomerFactory,
    CustomerMembershipFactory,
    CustomerPreferenceFactory,
    MembershipBenefitFactory,
    ShopFactory,
    UserFactory,
    persisted_customer,
    persisted_owner,
)


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "unit: Unit tests with isolated component testing"
    )
    config.addinivalue_line(
        "markers",
        "integration: Integration tests across repositories, services and the container"
    )
    config.addinivalue_line(
        "markers",
        "database: Tests running against the in-memory SQLite store"
    )


@pytest.fixture(scope="session", autouse=True)
def structured_logging():
    setup_structured_logging(TestingConfig, force=True)


@pytest.fixture
def test_config():
    return TestingConfig


@pytest.fixture
def container(test_config):
    container = build_container(test_config)
    yield container
    container.close()


@pytest.fixture
def session(container):
    return container.resolve('session')


@pytest.fixture
def database_manager(container):
    return container.resolve('database_manager')


@pytest.fixture
def customer_repository(container):
    return container.resolve('customer_repository')


@pytest.fixture
def membership_repository(container):
    return container.resolve('membership_repository')


@pytest.fixture
def benefit_repository(container):
    return container.resolve('benefit_repository')


@pytest.fixture
def preference_repository(container):
    return container.resolve('preference_repository')


@pytest.fixture
def user_repository(container):
    return container.resolve('user_repository')


@pytest.fixture
def business_repository(container):
    return container.resolve('business_repository')


@pytest.fixture
def shop_repository(container):
    return container.resolve('shop_repository')


@pytest.fixture
def user_service(container):
    return container.resolve('user_service')


@pytest.fixture
def business_service(container):
    return container.resolve('business_management_service')


@pytest.fixture
def membership_service(container):
    return container.resolve('membership_service')


@pytest.fixture
def integration_service(container):
    return container.resolve('system_integration_service')


@pytest.fixture
def customer_lookup_service(container):
    return container.resolve('customer_lookup_service')
