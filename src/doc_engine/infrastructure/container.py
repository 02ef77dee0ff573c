"""Dependency injection container."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, TypeVar

from doc_engine.infrastructure.config import Config, get_config
from doc_engine.infrastructure.metrics import MetricsRegistry, get_metrics

if TYPE_CHECKING:
    from prometheus_client import CollectorRegistry

T = TypeVar("T")


class Container:
    """
    Simple dependency injection container.

    Supports singleton and factory registrations with lazy initialization.
    """

    def __init__(self) -> None:
        """Initialize the container."""
        self._singletons: dict[type, Any] = {}
        self._factories: dict[type, Callable[[Container], Any]] = {}
        self._instances: dict[type, Any] = {}

    def register_singleton(self, interface: type[T], instance: T) -> None:
        """
        Register a singleton instance.

        Args:
            interface: The interface/type to register
            instance: The singleton instance
        """
        self._singletons[interface] = instance
        self._instances[interface] = instance

    def register_factory(
        self,
        interface: type[T],
        factory: Callable[[Container], T],
    ) -> None:
        """
        Register a factory function for lazy instantiation.

        Args:
            interface: The interface/type to register
            factory: Factory function that takes the container and returns an instance
        """
        self._factories[interface] = factory
        self._instances.pop(interface, None)

    def resolve(self, interface: type[T]) -> T:
        """
        Resolve a dependency.

        Args:
            interface: The interface/type to resolve

        Returns:
            The resolved instance

        Raises:
            KeyError: If no registration exists for the interface
        """
        if interface in self._instances:
            return self._instances[interface]

        if interface in self._factories:
            instance = self._factories[interface](self)
            self._instances[interface] = instance
            return instance

        raise KeyError(f"No registration found for {interface}")

    def has(self, interface: type) -> bool:
        """Check if an interface is registered."""
        return (
            interface in self._singletons
            or interface in self._factories
            or interface in self._instances
        )

    def clear(self) -> None:
        """Clear all registrations and instances."""
        self._singletons.clear()
        self._factories.clear()
        self._instances.clear()


def build_container(
    config: Config | None = None,
    registry: CollectorRegistry | None = None,
) -> Container:
    """
    Wire the engine components.

    The store is registered as a lazy factory, so each container owns
    exactly one store, created on first resolve and dropped with the
    container.

    Args:
        config: Engine configuration (defaults to the environment)
        registry: Prometheus registry for a private metrics set

    Returns:
        A container resolving Config, MetricsRegistry and DocumentStore
    """
    from doc_engine.application.document_store import DocumentStore

    container = Container()
    container.register_singleton(Config, config or get_config())
    if registry is not None:
        container.register_singleton(MetricsRegistry, MetricsRegistry(registry))
    else:
        container.register_factory(MetricsRegistry, lambda c: get_metrics())
    container.register_factory(
        DocumentStore,
        lambda c: DocumentStore(config=c.resolve(Config), metrics=c.resolve(MetricsRegistry)),
    )
    return container


# Global container instance
_container: Container | None = None


def get_container() -> Container:
    """Get the global container instance."""
    global _container
    if _container is None:
        _container = build_container()
    return _container


def reset_container() -> None:
    """Reset the global container (useful for testing)."""
    global _container
    if _container is not None:
        _container.clear()
    _container = None
