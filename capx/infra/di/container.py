"""Dependency container with singleton/factory lifecycles and constructor auto-wiring."""

from __future__ import annotations

import inspect
import threading
import types
from collections.abc import Callable
from typing import Any, TypeVar, Union, cast, get_args, get_origin, get_type_hints

import structlog

from capx.infra.di.lifecycle import Lifecycle

LOGGER = structlog.get_logger(__name__)

T = TypeVar("T")


class DependencyContainer:
    """Type-keyed registry that builds and caches the cache's collaborators."""

    def __init__(self) -> None:
        self._registrations: dict[type[Any], tuple[Callable[[], Any], Lifecycle]] = {}
        self._singletons: dict[type[Any], Any] = {}
        self._lock = threading.RLock()
        self._resolving: list[type[Any]] = []

    def register(
        self,
        service_type: type[T],
        factory: Callable[[], T] | None = None,
        *,
        lifecycle: Lifecycle = Lifecycle.SINGLETON,
    ) -> None:
        """Register a service type with an optional factory.

        Without a factory the container builds the type itself, resolving
        each annotated constructor parameter from its own registrations.

        Raises:
            ValueError: If service_type is already registered.
        """
        if service_type in self._registrations:
            raise ValueError(f"Service {service_type.__name__} is already registered")

        if factory is None:
            factory = self._create_auto_factory(service_type)

        self._registrations[service_type] = (factory, lifecycle)

    def register_instance(self, service_type: type[T], instance: T) -> None:
        """Register a pre-created instance as a singleton."""
        if service_type in self._registrations:
            raise ValueError(f"Service {service_type.__name__} is already registered")

        self._registrations[service_type] = (lambda: instance, Lifecycle.SINGLETON)
        self._singletons[service_type] = instance

    def resolve(self, service_type: type[T]) -> T:
        """Resolve an instance according to its registered lifecycle.

        Raises:
            KeyError: If the service is not registered.
            RuntimeError: If a circular dependency is detected.
        """
        if service_type not in self._registrations:
            raise KeyError(f"Service {service_type.__name__} is not registered")

        if service_type in self._resolving:
            cycle = " -> ".join(t.__name__ for t in [*self._resolving, service_type])
            raise RuntimeError(f"Circular dependency detected: {cycle}")

        factory, lifecycle = self._registrations[service_type]

        try:
            self._resolving.append(service_type)
            if lifecycle == Lifecycle.SINGLETON:
                return self._resolve_singleton(service_type, factory)
            if lifecycle == Lifecycle.FACTORY:
                return cast(T, factory())
            raise ValueError(f"Unknown lifecycle: {lifecycle}")
        finally:
            self._resolving.remove(service_type)

    def is_registered(self, service_type: type[Any]) -> bool:
        return service_type in self._registrations

    def clear(self) -> None:
        """Drop all registrations and cached instances."""
        with self._lock:
            self._registrations.clear()
            self._singletons.clear()
            self._resolving.clear()

    def _resolve_singleton(self, service_type: type[T], factory: Callable[[], T]) -> T:
        if service_type in self._singletons:
            return cast(T, self._singletons[service_type])

        with self._lock:
            if service_type in self._singletons:
                return cast(T, self._singletons[service_type])

            instance = factory()
            self._singletons[service_type] = instance
            LOGGER.debug("di.singleton.created", service=service_type.__name__)
            return instance

    def _create_auto_factory(self, service_type: type[T]) -> Callable[[], T]:
        def factory() -> T:
            sig = inspect.signature(service_type.__init__)
            type_hints = get_type_hints(service_type.__init__)
            kwargs: dict[str, Any] = {}

            for param_name, param in sig.parameters.items():
                if param_name == "self":
                    continue
                if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                    continue

                param_type = type_hints.get(param_name)
                injectable_type = (
                    self._infer_injectable_type(param_type) if param_type is not None else None
                )
                if injectable_type is None:
                    # Not injectable; rely on the parameter's default.
                    continue

                try:
                    kwargs[param_name] = self.resolve(injectable_type)
                except KeyError:
                    if param.default is not inspect.Parameter.empty:
                        continue
                    raise

            return service_type(**kwargs)

        return factory

    def _infer_injectable_type(self, annotation: Any) -> type[Any] | None:
        """Normalize a plain type or ``Optional[T]`` annotation to a type."""
        if annotation is Any:
            return None
        if isinstance(annotation, type):
            return annotation

        origin = get_origin(annotation)
        union_args: tuple[Any, ...] | None = None
        if origin in (types.UnionType, Union):
            union_args = get_args(annotation)

        if union_args:
            non_none = [arg for arg in union_args if arg is not type(None)]
            if len(non_none) == 1 and len(non_none) < len(union_args):
                candidate = non_none[0]
                if isinstance(candidate, type):
                    return candidate
        return None


__all__ = ["DependencyContainer"]
