"""Lifecycle management for dependency injection."""

from enum import Enum


class Lifecycle(Enum):
    """Lifecycle strategies for dependency resolution."""

    SINGLETON = "singleton"
    """Single instance shared across all resolutions."""

    FACTORY = "factory"
    """New instance created on each resolution."""
