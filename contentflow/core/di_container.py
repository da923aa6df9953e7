"""
Dependency Injection Container
Wires the engine's services together: lifetimes, factories and constructor injection.
"""

import inspect
import threading
import typing
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union

from .exceptions import ConfigError
from .logging import LoggerManager


T = TypeVar('T')


class ServiceLifetime(Enum):
    """Service lifetime"""
    SINGLETON = "singleton"      # one instance per container
    TRANSIENT = "transient"      # new instance per resolve


class ServiceDescriptor:
    """Service descriptor"""

    def __init__(self, service_type: Type[T], implementation_type: Optional[Type[T]] = None,
                 factory: Optional[Callable] = None, lifetime: ServiceLifetime = ServiceLifetime.SINGLETON):
        self.service_type = service_type
        self.implementation_type = implementation_type or service_type
        self.factory = factory
        self.lifetime = lifetime
        self.instance: Optional[T] = None
        self._lock = threading.RLock()

    def get_instance(self, container: 'DependencyContainer') -> T:
        if self.lifetime == ServiceLifetime.TRANSIENT:
            return self._create_instance(container)
        if self.instance is None:
            with self._lock:
                if self.instance is None:
                    self.instance = self._create_instance(container)
        return self.instance

    def _create_instance(self, container: 'DependencyContainer') -> T:
        if self.factory:
            return self.factory(container)
        return container._create_instance_with_injection(self.implementation_type)


class DependencyContainer:
    """Dependency injection container"""

    def __init__(self):
        self._services: Dict[Type[Any], ServiceDescriptor] = {}
        self._logger = LoggerManager.get_logger(__name__)

    def register(self, service_type: Type[T], implementation_type: Optional[Type[T]] = None,
                 lifetime: ServiceLifetime = ServiceLifetime.SINGLETON) -> 'DependencyContainer':
        """
        Register a service

        Args:
            service_type: interface type used as the lookup key
            implementation_type: concrete type, defaults to service_type
            lifetime: service lifetime

        Returns:
            the container, for chaining
        """
        descriptor = ServiceDescriptor(service_type, implementation_type, lifetime=lifetime)
        self._services[service_type] = descriptor
        impl_name = implementation_type.__name__ if implementation_type else service_type.__name__
        self._logger.debug(f"Registered service: {service_type.__name__} -> {impl_name}")
        return self

    def register_factory(self, service_type: Type[T], factory: Callable[['DependencyContainer'], T],
                         lifetime: ServiceLifetime = ServiceLifetime.SINGLETON) -> 'DependencyContainer':
        """Register a factory; it receives the container"""
        descriptor = ServiceDescriptor(service_type, factory=factory, lifetime=lifetime)
        self._services[service_type] = descriptor
        self._logger.debug(f"Registered factory for service: {service_type.__name__}")
        return self

    def register_instance(self, service_type: Type[T], instance: T) -> 'DependencyContainer':
        """Register an already built instance"""
        descriptor = ServiceDescriptor(service_type, lifetime=ServiceLifetime.SINGLETON)
        descriptor.instance = instance
        self._services[service_type] = descriptor
        self._logger.debug(f"Registered instance for service: {service_type.__name__}")
        return self

    def resolve(self, service_type: Type[T]) -> T:
        """
        Resolve a service

        Raises:
            ConfigError: the service is not registered
        """
        if service_type not in self._services:
            raise ConfigError(f"Service {service_type.__name__} is not registered",
                              config_key=service_type.__name__)
        return self._services[service_type].get_instance(self)

    def is_registered(self, service_type: Type[Any]) -> bool:
        return service_type in self._services

    def build(self, implementation_type: Type[T]) -> T:
        """Construct an unregistered type with constructor injection"""
        return self._create_instance_with_injection(implementation_type)

    def _create_instance_with_injection(self, implementation_type: Type[T]) -> T:
        """Build an instance, injecting registered services by constructor annotation"""
        init_params = inspect.signature(implementation_type.__init__).parameters
        try:
            hints = typing.get_type_hints(implementation_type.__init__)
        except (NameError, TypeError):
            hints = {}

        kwargs = {}
        for param_name, param in init_params.items():
            if param_name == 'self' or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue

            param_type = hints.get(param_name, param.annotation)
            if param_type is inspect.Parameter.empty:
                if param.default is inspect.Parameter.empty:
                    self._logger.warning(f"Parameter '{param_name}' has no type annotation and no default value")
                continue

            if param_type is DependencyContainer:
                kwargs[param_name] = self
            elif typing.get_origin(param_type) is Union:
                # Optional[T]
                for arg in typing.get_args(param_type):
                    if arg is not type(None) and self.is_registered(arg):
                        kwargs[param_name] = self.resolve(arg)
                        break
            elif self.is_registered(param_type):
                kwargs[param_name] = self.resolve(param_type)
            elif param.default is inspect.Parameter.empty:
                self._logger.warning(
                    f"Cannot resolve parameter '{param_name}' of type {param_type} for {implementation_type.__name__}"
                )

        try:
            instance = implementation_type(**kwargs)
        except TypeError as e:
            self._logger.error(f"Failed to create instance of {implementation_type.__name__}: {e}")
            raise
        self._logger.debug(f"Created instance of {implementation_type.__name__}")
        return instance

    def get_registered_services(self) -> List[Type[Any]]:
        return list(self._services.keys())
