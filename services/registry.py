"""
Service Registry - lazy wiring of the portal services
Factories are registered in create_app() and resolved on first use.
Services bound to the request session are registered as transient so each
lookup gets instances over the current scoped session.
"""
from typing import Any, Callable, Dict, List, Optional
from enum import Enum
import threading
import logging

logger = logging.getLogger(__name__)


class ServiceLifecycle(Enum):
    """Service lifecycle management options"""
    SINGLETON = "singleton"  # Single instance per application
    TRANSIENT = "transient"  # New instance per lookup


class ServiceDescriptor:
    """Describes a service registration"""

    def __init__(self, name: str, factory: Optional[Callable] = None, instance: Any = None,
                 lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
                 dependencies: Optional[List[str]] = None):
        self.name = name
        self.factory = factory
        self.instance = instance
        self.lifecycle = lifecycle
        self.dependencies = dependencies or []
        self.lock = threading.Lock()


class ServiceRegistry:
    """
    Registry with lazy factories and dependency resolution.

    Dependencies are passed to the factory as keyword arguments named after
    the dependency.
    """

    def __init__(self):
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        self._thread_local = threading.local()
        self._lock = threading.Lock()

    def register(self, name: str, service: Any = None, factory: Callable = None,
                 lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
                 dependencies: Optional[List[str]] = None) -> None:
        """
        Register a service instance or a factory.

        Args:
            name: Service identifier
            service: Pre-instantiated service
            factory: Factory function for lazy loading
            lifecycle: Service lifecycle type
            dependencies: Names of services passed to the factory
        """
        if service is None and factory is None:
            raise ValueError(f"Either service instance or factory must be provided for '{name}'")

        with self._lock:
            self._descriptors[name] = ServiceDescriptor(
                name=name, factory=factory, instance=service,
                lifecycle=lifecycle, dependencies=dependencies
            )

    def register_singleton(self, name: str, factory: Callable, **kwargs) -> None:
        self.register(name, factory=factory, lifecycle=ServiceLifecycle.SINGLETON, **kwargs)

    def register_transient(self, name: str, factory: Callable, **kwargs) -> None:
        self.register(name, factory=factory, lifecycle=ServiceLifecycle.TRANSIENT, **kwargs)

    def get(self, name: str) -> Any:
        """
        Resolve a service by name.

        Raises:
            ValueError: If service is not registered
            RuntimeError: If circular dependency detected
        """
        if name not in self._descriptors:
            raise ValueError(f"Service '{name}' is not registered")

        descriptor = self._descriptors[name]
        stack = self._initialization_stack()
        if name in stack:
            cycle = " -> ".join(stack + [name])
            raise RuntimeError(f"Circular dependency detected: {cycle}")

        if descriptor.lifecycle == ServiceLifecycle.TRANSIENT:
            return self._create_instance(descriptor)

        if descriptor.instance is not None:
            return descriptor.instance
        with descriptor.lock:
            if descriptor.instance is None:
                descriptor.instance = self._create_instance(descriptor)
            return descriptor.instance

    def _initialization_stack(self) -> List[str]:
        if not hasattr(self._thread_local, 'initialization_stack'):
            self._thread_local.initialization_stack = []
        return self._thread_local.initialization_stack

    def _create_instance(self, descriptor: ServiceDescriptor) -> Any:
        if descriptor.factory is None:
            raise ValueError(f"No factory registered for '{descriptor.name}'")

        stack = self._initialization_stack()
        stack.append(descriptor.name)
        try:
            deps = {dep: self.get(dep) for dep in descriptor.dependencies}
            instance = descriptor.factory(**deps)
            logger.debug(f"Created service instance: {descriptor.name}")
            return instance
        finally:
            stack.pop()

    def has(self, name: str) -> bool:
        return name in self._descriptors

    def reset_service(self, name: str) -> None:
        """Forget a singleton instance so the next lookup rebuilds it"""
        descriptor = self._descriptors.get(name)
        if descriptor is not None and descriptor.factory is not None:
            with descriptor.lock:
                descriptor.instance = None

    def list_services(self) -> List[str]:
        return sorted(self._descriptors.keys())

    def validate_dependencies(self) -> List[str]:
        """
        Validate all service dependencies are registered.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        for name, descriptor in self._descriptors.items():
            for dep in descriptor.dependencies:
                if dep not in self._descriptors:
                    errors.append(f"Service '{name}' depends on unregistered service '{dep}'")
        return errors
