"""Dependency injection container for wiring the cache's collaborators."""

from capx.infra.di.container import DependencyContainer
from capx.infra.di.lifecycle import Lifecycle

__all__ = ["DependencyContainer", "Lifecycle"]
