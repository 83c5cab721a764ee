"""Centralized configuration management for embedcore.

Provides unified access to all configuration via the `get_environment()` function.

Example:
    >>> from embedcore.config import EnvVar, get_environment
    >>>
    >>> strategy = get_environment(EnvVar.EMBEDDING_STRATEGY)  # "auto"
    >>> memory = get_environment(EnvVar.DEVICE_MEMORY_GB)  # float | None
    >>>
    >>> for var in list_environment_variables("device"):
    ...     info = get_environment_info(var)
    ...     print(f"{info.name}: {info.description}")

Environment Variable Categories:
    embedding: Model selection, engine strategy and model storage
    device: Overrides for detected hardware signals
    search: Similarity search bounds
    logging: Log output configuration
"""

from .lib import (
    EnvConfig,
    EnvVar,
    get_environment,
    get_environment_info,
    get_models_dir,
    list_environment_variables,
)

__all__ = [
    # Core types
    "EnvConfig",
    "EnvVar",
    # Main interface
    "get_environment",
    "get_environment_info",
    # Convenience functions
    "get_models_dir",
    # Introspection
    "list_environment_variables",
]
