"""Centralized environment configuration management for embedcore.

Provides a unified interface for all environment variables with:
- Single `get_environment()` function for all configuration
- Type-safe enum with metadata (default, type, description)
- Consistent resolution: override > environment > default

Example:
    >>> from embedcore.config import EnvVar, get_environment
    >>>
    >>> # Get values with automatic type conversion
    >>> limit = get_environment(EnvVar.SEARCH_MAX_LIMIT)  # Returns int
    >>> model = get_environment(EnvVar.EMBEDDING_MODEL)  # Returns str | None
    >>>
    >>> # Override at runtime
    >>> limit = get_environment(EnvVar.SEARCH_MAX_LIMIT, override=50)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, overload

# =============================================================================
# Environment Variable Configuration
# =============================================================================


@dataclass(frozen=True)
class EnvConfig:
    """Metadata for an environment variable.

    Attributes:
        name: Environment variable name (e.g., "EMBEDDING_MODEL").
        default: Default value if not set in environment.
        var_type: Python type for value conversion (str, int, float, bool, Path).
        description: Human-readable description.
        category: Grouping category for documentation.
    """

    name: str
    default: Any
    var_type: type
    description: str = ""
    category: str = "general"


class EnvVar(Enum):
    """All environment variables used by embedcore.

    Each member contains an EnvConfig with name, default, type, and description.
    Use with `get_environment()` for type-safe access.

    Categories:
        - embedding: Model selection, engine strategy and model storage
        - device: Overrides for detected hardware signals
        - search: Similarity search bounds
        - logging: Log output configuration
    """

    # -------------------------------------------------------------------------
    # Embedding Configuration
    # -------------------------------------------------------------------------
    EMBEDDING_MODEL = EnvConfig(
        name="EMBEDDING_MODEL",
        default=None,
        var_type=str,
        description="Catalog id of the model to load (None=default model)",
        category="embedding",
    )
    EMBEDDING_STRATEGY = EnvConfig(
        name="EMBEDDING_STRATEGY",
        default="auto",
        var_type=str,
        description="Engine strategy: 'auto', 'primary-only' or 'fallback-only'",
        category="embedding",
    )
    EMBEDDING_AUTO_SELECT = EnvConfig(
        name="EMBEDDING_AUTO_SELECT",
        default=False,
        var_type=bool,
        description="Pick the model recommended for this device when no id is given",
        category="embedding",
    )
    EMBEDDING_MODELS_DIR = EnvConfig(
        name="EMBEDDING_MODELS_DIR",
        default=None,  # Computed from home directory
        var_type=Path,
        description="Download cache for sentence-transformers models",
        category="embedding",
    )
    EMBEDDING_MODEL_PATH = EnvConfig(
        name="EMBEDDING_MODEL_PATH",
        default=None,
        var_type=Path,
        description="Local ONNX model directory for the native engine",
        category="embedding",
    )
    EMBEDDING_AUTO_DOWNLOAD = EnvConfig(
        name="EMBEDDING_AUTO_DOWNLOAD",
        default=True,
        var_type=bool,
        description="Download models that are not in the models directory",
        category="embedding",
    )
    EMBEDDING_DEVICE = EnvConfig(
        name="EMBEDDING_DEVICE",
        default=None,
        var_type=str,
        description="Torch device for the portable engine ('cuda', 'cpu', None=auto)",
        category="embedding",
    )
    EMBEDDING_USE_GPU = EnvConfig(
        name="EMBEDDING_USE_GPU",
        default=None,
        var_type=bool,
        description="Force the native engine's accelerated path (None=auto-detect)",
        category="embedding",
    )

    # -------------------------------------------------------------------------
    # Device Overrides
    # -------------------------------------------------------------------------
    DEVICE_MEMORY_GB = EnvConfig(
        name="DEVICE_MEMORY_GB",
        default=None,
        var_type=float,
        description="Total memory in GB, bypassing detection",
        category="device",
    )
    DEVICE_CPU_CORES = EnvConfig(
        name="DEVICE_CPU_CORES",
        default=None,
        var_type=int,
        description="CPU core count, bypassing detection",
        category="device",
    )
    DEVICE_PLATFORM = EnvConfig(
        name="DEVICE_PLATFORM",
        default=None,
        var_type=str,
        description="Platform class: desktop, mobile, tablet or unknown",
        category="device",
    )

    # -------------------------------------------------------------------------
    # Search Bounds
    # -------------------------------------------------------------------------
    SEARCH_MAX_DIMENSION = EnvConfig(
        name="SEARCH_MAX_DIMENSION",
        default=4096,
        var_type=int,
        description="Largest accepted query vector dimension",
        category="search",
    )
    SEARCH_MAX_LIMIT = EnvConfig(
        name="SEARCH_MAX_LIMIT",
        default=1000,
        var_type=int,
        description="Largest accepted result limit",
        category="search",
    )

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    EMBEDCORE_LOG_LEVEL = EnvConfig(
        name="EMBEDCORE_LOG_LEVEL",
        default="INFO",
        var_type=str,
        description="Log level used by the CLI",
        category="logging",
    )


# =============================================================================
# Type Conversion Helpers
# =============================================================================


def _parse_bool(value: str) -> bool | None:
    """Parse string to boolean.

    Recognizes: true/false, 1/0, yes/no (case-insensitive).
    Returns None for unrecognized values.
    """
    normalized = value.lower().strip()
    if normalized in ("true", "1", "yes"):
        return True
    if normalized in ("false", "0", "no"):
        return False
    return None


def _convert_value(value: str | None, var_type: type, default: Any) -> Any:
    """Convert string value to target type.

    Args:
        value: Raw string value from environment (or None).
        var_type: Target Python type.
        default: Default value if conversion fails or value is None.

    Returns:
        Converted value or default.
    """
    if value is None or value.strip() == "":
        return default

    if var_type is str:
        return value

    if var_type is int:
        try:
            return int(value)
        except ValueError:
            return default

    if var_type is float:
        try:
            return float(value)
        except ValueError:
            return default

    if var_type is bool:
        result = _parse_bool(value)
        return result if result is not None else default

    if var_type is Path:
        return Path(value).expanduser()

    # Unknown type, return as-is
    return value


# =============================================================================
# Main Interface
# =============================================================================


@overload
def get_environment(env_var: EnvVar, override: int) -> int: ...
@overload
def get_environment(env_var: EnvVar, override: float) -> float: ...
@overload
def get_environment(env_var: EnvVar, override: str) -> str: ...
@overload
def get_environment(env_var: EnvVar, override: bool) -> bool: ...
@overload
def get_environment(env_var: EnvVar, override: Path) -> Path: ...
@overload
def get_environment(env_var: EnvVar, override: None = None) -> Any: ...


def get_environment(env_var: EnvVar, override: Any = None) -> Any:
    """Get environment variable value with type conversion.

    Resolution priority:
        1. Explicit override parameter (highest)
        2. Environment variable value
        3. Default from EnvConfig (lowest)

    Args:
        env_var: Environment variable enum member.
        override: Optional override value (bypasses env lookup).

    Returns:
        Value converted to the appropriate type (str, int, float, bool, or Path).

    Example:
        >>> get_environment(EnvVar.SEARCH_MAX_LIMIT)
        1000
        >>> get_environment(EnvVar.SEARCH_MAX_LIMIT, override=50)
        50
    """
    config: EnvConfig = env_var.value

    if override is not None:
        return override

    raw_value = os.environ.get(config.name)
    return _convert_value(raw_value, config.var_type, config.default)


def get_environment_info(env_var: EnvVar) -> EnvConfig:
    """Get metadata for an environment variable.

    Args:
        env_var: Environment variable enum member.

    Returns:
        EnvConfig with name, default, type, and description.
    """
    return env_var.value


# =============================================================================
# Convenience Functions
# =============================================================================


def get_models_dir(override: Path | str | None = None) -> Path:
    """Get the download cache directory for embedding models.

    Resolution: override > EMBEDDING_MODELS_DIR > ~/.embedcore/models
    """
    if override is not None:
        return Path(override)

    env_path = get_environment(EnvVar.EMBEDDING_MODELS_DIR)
    if env_path:
        return env_path

    return Path.home() / ".embedcore" / "models"


def list_environment_variables(category: str | None = None) -> list[EnvVar]:
    """List all environment variables, optionally filtered by category.

    Args:
        category: Filter by category (embedding, device, search, logging).
                 None returns all variables.

    Returns:
        List of EnvVar enum members.
    """
    if category is None:
        return list(EnvVar)

    return [var for var in EnvVar if var.value.category == category]


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
