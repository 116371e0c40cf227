"""
Service Container

Named-factory dependency container scoping one persistence context. Factories run
lazily on first resolution and their result is cached for the lifetime of the
container, so every repository and service resolved from one container shares the
same SQLAlchemy Session.

build_container() wires the complete POS core:

- database_manager, session
- customer_repository, membership_repository, benefit_repository,
  preference_repository, user_repository, business_repository, shop_repository
- user_service, business_management_service, membership_service,
  customer_lookup_service (services run repository work on the database executor)
- system_integration_service

Example:
    with build_container(TestingConfig) as container:
        customers = container.resolve('customer_repository')
        customer = customers.get_by_mobile_number("9876543210")
"""

from concurrent.futures import Executor
from typing import Any, Callable, Dict, List, Optional, Type

import structlog

from pos_core.business.exceptions import ComponentResolutionError, ConfigurationError
from pos_core.business.services import (
    ServiceConfiguration,
    create_business_management_service,
    create_customer_lookup_service,
    create_membership_service,
    create_user_service,
)
from pos_core.config.settings import BaseConfig, get_config, validate_configuration
from pos_core.data.database import create_database_manager
from pos_core.integrations.system_integration import create_system_integration_service
from pos_core.repositories import (
    BusinessRepository,
    CustomerMembershipRepository,
    CustomerPreferenceRepository,
    CustomerRepository,
    MembershipBenefitRepository,
    ShopRepository,
    UserRepository,
)


logger = structlog.get_logger(__name__)

Factory = Callable[['ServiceContainer'], Any]
Disposer = Callable[[Any], None]


class ServiceContainer:
    """
    Dependency container with singleton-per-container components.

    Args:
        config: Configuration class shared by all components
    """

    def __init__(self, config: Optional[Type[BaseConfig]] = None):
        self.config = config or get_config()
        self._factories: Dict[str, Factory] = {}
        self._disposers: Dict[str, Disposer] = {}
        self._instances: Dict[str, Any] = {}
        self._creation_order: List[str] = []
        self._resolving: List[str] = []
        self._closed = False

    def register(self, name: str, factory: Factory, disposer: Optional[Disposer] = None) -> None:
        """
        Register a component factory under ``name``, replacing any earlier one.

        The factory receives the container; ``disposer`` is called with the built
        instance when the container closes. An instance already built by the
        replaced registration is disposed with the replaced disposer.
        """
        if self._closed:
            raise ComponentResolutionError(
                message="Cannot register components on a closed container",
                component_name=name,
                error_code="CONTAINER_CLOSED"
            )

        if name in self._instances:
            self._dispose(name, self._instances.pop(name))
            self._creation_order.remove(name)

        self._factories[name] = factory
        if disposer is not None:
            self._disposers[name] = disposer
        else:
            self._disposers.pop(name, None)

    def _dispose(self, name: str, instance: Any) -> None:
        disposer = self._disposers.get(name)
        if disposer is None:
            return
        try:
            disposer(instance)
        except Exception as e:
            logger.error("Component disposal failed", component=name, error=str(e))

    def registered_names(self) -> List[str]:
        return list(self._factories)

    def is_registered(self, name: str) -> bool:
        return name in self._factories

    def resolve(self, name: str) -> Any:
        """
        Get the component registered under ``name``, building it on first use.

        Raises:
            ComponentResolutionError: Unknown name, circular dependency, closed
                container or failing factory
        """
        if self._closed:
            raise ComponentResolutionError(
                message=f"Cannot resolve '{name}': container is closed",
                component_name=name,
                error_code="CONTAINER_CLOSED"
            )

        if name in self._instances:
            return self._instances[name]

        factory = self._factories.get(name)
        if factory is None:
            raise ComponentResolutionError(
                message=f"No component registered under '{name}'",
                component_name=name,
                error_code="COMPONENT_NOT_REGISTERED"
            )

        if name in self._resolving:
            chain = ' -> '.join(self._resolving + [name])
            raise ComponentResolutionError(
                message=f"Circular dependency detected: {chain}",
                component_name=name,
                error_code="CIRCULAR_DEPENDENCY"
            )

        self._resolving.append(name)
        try:
            instance = factory(self)
        except ComponentResolutionError:
            raise
        except Exception as e:
            raise ComponentResolutionError(
                message=f"Failed to build component '{name}': {e}",
                component_name=name,
                cause=e
            ) from e
        finally:
            self._resolving.pop()

        self._instances[name] = instance
        self._creation_order.append(name)
        logger.debug("Component resolved", component=name, component_type=type(instance).__name__)
        return instance

    def try_resolve(self, name: str) -> Optional[Any]:
        """Like resolve(), but returns None when the component cannot be built."""
        try:
            return self.resolve(name)
        except ComponentResolutionError:
            return None

    @property
    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Dispose built components in reverse creation order. Safe to call twice."""
        if self._closed:
            return
        self._closed = True

        for name in reversed(self._creation_order):
            self._dispose(name, self._instances[name])

        self._instances.clear()
        self._creation_order.clear()
        logger.debug("Service container closed")

    def __enter__(self) -> 'ServiceContainer':
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()


def _repository_factory(repository_class) -> Factory:
    def factory(container: ServiceContainer):
        return repository_class(
            container.resolve('session'),
            metrics_enabled=container.config.METRICS_ENABLED
        )
    return factory


def _database_executor(container: ServiceContainer) -> Executor:
    return container.resolve('database_manager').executor


def build_container(config: Optional[Type[BaseConfig]] = None) -> ServiceContainer:
    """
    Build a container wired with the complete POS core.

    Args:
        config: Configuration class (defaults to the active environment)

    Returns:
        ServiceContainer with every component registered; nothing is built yet

    Raises:
        ConfigurationError: If the configuration fails validation
    """
    config = config or get_config()

    config_errors = validate_configuration(config)
    if config_errors:
        raise ConfigurationError(
            message=f"Invalid configuration: {'; '.join(config_errors)}",
            config_errors=config_errors
        )

    container = ServiceContainer(config)
    service_config = ServiceConfiguration(config)

    container.register(
        'database_manager',
        lambda c: create_database_manager(c.config),
        disposer=lambda manager: manager.dispose()
    )
    container.register(
        'session',
        lambda c: c.resolve('database_manager').create_session(),
        disposer=lambda session: session.close()
    )

    container.register('customer_repository', _repository_factory(CustomerRepository))
    container.register('membership_repository', _repository_factory(CustomerMembershipRepository))
    container.register('benefit_repository', _repository_factory(MembershipBenefitRepository))
    container.register('preference_repository', _repository_factory(CustomerPreferenceRepository))
    container.register('user_repository', _repository_factory(UserRepository))
    container.register('business_repository', _repository_factory(BusinessRepository))
    container.register('shop_repository', _repository_factory(ShopRepository))

    container.register('user_service', lambda c: create_user_service(
        c.resolve('user_repository'),
        config=service_config,
        executor=_database_executor(c)
    ))
    container.register('business_management_service', lambda c: create_business_management_service(
        c.resolve('business_repository'),
        c.resolve('shop_repository'),
        c.resolve('user_repository'),
        config=service_config,
        executor=_database_executor(c)
    ))
    container.register('membership_service', lambda c: create_membership_service(
        c.resolve('customer_repository'),
        c.resolve('membership_repository'),
        c.resolve('benefit_repository'),
        config=service_config,
        executor=_database_executor(c)
    ))
    container.register('customer_lookup_service', lambda c: create_customer_lookup_service(
        c.resolve('customer_repository'),
        c.resolve('preference_repository'),
        c.resolve('membership_service'),
        config=service_config,
        executor=_database_executor(c)
    ))

    container.register(
        'system_integration_service',
        lambda c: create_system_integration_service(c, config=c.config)
    )

    logger.info(
        "Service container built",
        environment=config.ENVIRONMENT,
        components=len(container.registered_names())
    )
    return container
