"""Typed errors shared by every embedcore component."""

from .lib import (
    DataConsistencyWarning,
    DimensionMismatchError,
    EmbedCoreError,
    EngineError,
    InferenceError,
    LoadError,
    StateError,
    ValidationError,
)

__all__ = [
    "EmbedCoreError",
    "ValidationError",
    "EngineError",
    "LoadError",
    "InferenceError",
    "DimensionMismatchError",
    "StateError",
    "DataConsistencyWarning",
]
