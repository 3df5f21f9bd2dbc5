"""
Service Registry
Lazily builds the engine's services from registered factories, resolving
declared dependencies, and closes them again on shutdown.
"""
from typing import Dict, Any, Callable, Optional, Set, List
from enum import Enum
import threading
import logging

logger = logging.getLogger(__name__)


class ServiceLifecycle(Enum):
    """Service lifecycle management options"""
    SINGLETON = "singleton"  # One instance per application
    TRANSIENT = "transient"  # New instance per lookup


class ServiceDescriptor:
    """Describes a service registration"""

    def __init__(
        self,
        name: str,
        factory: Callable,
        lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
        dependencies: Optional[List[str]] = None
    ):
        self.name = name
        self.factory = factory
        self.lifecycle = lifecycle
        self.dependencies = dependencies or []
        self.instance: Any = None
        self.lock = threading.Lock()


class ServiceRegistry:
    """
    Registry of named service factories.

    Singletons are created on first get() (thread-safe, double-checked) with
    their dependencies passed as keyword arguments named after the
    dependency. shutdown() calls close() on every instantiated singleton in
    reverse initialization order.
    """

    def __init__(self):
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        self._thread_local = threading.local()
        self._lock = threading.Lock()

    def register_factory(
        self,
        name: str,
        factory: Callable,
        lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
        dependencies: Optional[List[str]] = None
    ) -> None:
        """
        Register a factory function for lazy service instantiation.

        Args:
            name: Service identifier
            factory: Callable that returns a service instance
            lifecycle: Service lifecycle type
            dependencies: Services passed to the factory as keyword arguments
        """
        descriptor = ServiceDescriptor(name, factory, lifecycle, dependencies)
        with self._lock:
            self._descriptors[name] = descriptor

    def register_singleton(self, name: str, factory: Callable, **kwargs) -> None:
        self.register_factory(name, factory, ServiceLifecycle.SINGLETON, **kwargs)

    def register_instance(self, name: str, instance: Any) -> None:
        """Register an already-built service (used by tests to swap collaborators)"""
        self.register_factory(name, lambda: instance)
        self._descriptors[name].instance = instance

    def get(self, name: str) -> Any:
        """
        Get a service by name, building it and its dependencies if needed.

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
        return self._get_singleton(descriptor)

    def _initialization_stack(self) -> List[str]:
        if not hasattr(self._thread_local, 'initialization_stack'):
            self._thread_local.initialization_stack = []
        return self._thread_local.initialization_stack

    def _get_singleton(self, descriptor: ServiceDescriptor) -> Any:
        if descriptor.instance is not None:
            return descriptor.instance

        with descriptor.lock:
            if descriptor.instance is not None:
                return descriptor.instance
            descriptor.instance = self._create_instance(descriptor)
            return descriptor.instance

    def _create_instance(self, descriptor: ServiceDescriptor) -> Any:
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

    def is_instantiated(self, name: str) -> bool:
        return name in self._descriptors and self._descriptors[name].instance is not None

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

    def get_initialization_order(self) -> List[str]:
        """
        Topological order of registered services, dependencies first.

        Raises:
            RuntimeError: If circular dependency exists
        """
        graph = {name: list(d.dependencies) for name, d in self._descriptors.items()}
        visited: Set[str] = set()
        order: List[str] = []

        def visit(node: str, path: List[str]):
            if node in path:
                cycle = " -> ".join(path + [node])
                raise RuntimeError(f"Circular dependency detected: {cycle}")
            if node in visited:
                return
            for dep in graph.get(node, []):
                visit(dep, path + [node])
            visited.add(node)
            order.append(node)

        for name in graph:
            visit(name, [])
        return order

    def warmup(self, services: Optional[List[str]] = None) -> None:
        """Pre-instantiate singletons (all of them when services is None)"""
        if services is None:
            services = [
                name for name, desc in self._descriptors.items()
                if desc.lifecycle == ServiceLifecycle.SINGLETON
            ]
        for name in self.get_initialization_order():
            if name in services:
                logger.info(f"Warming up service: {name}")
                self.get(name)

    def shutdown(self) -> None:
        """Close instantiated singletons, dependents before their dependencies"""
        for name in reversed(self.get_initialization_order()):
            descriptor = self._descriptors[name]
            instance = descriptor.instance
            if instance is None:
                continue
            close = getattr(instance, 'close', None)
            if callable(close):
                try:
                    close()
                    logger.info(f"Closed service: {name}")
                except Exception as e:
                    logger.error(f"Error closing service {name}: {e}")
            descriptor.instance = None


def create_registry() -> ServiceRegistry:
    return ServiceRegistry()
