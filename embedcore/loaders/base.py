"""Abstract base class for model loaders.

A loader owns one inference runtime: it loads a model described by a
ModelDescriptor, turns text into a vector and releases the runtime again.
Subclasses implement the runtime-specific hooks; this class enforces the
contract every engine shares (text validation, lifecycle checks and the
declared output dimension).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

import numpy as np

from embedcore.catalog import ModelDescriptor
from embedcore.errors import (
    DimensionMismatchError,
    InferenceError,
    StateError,
    ValidationError,
)


class LoaderType(str, Enum):
    """Available loader implementations."""

    NATIVE = "onnx"
    PORTABLE = "sentence-transformers"


def validate_text(text: object) -> str:
    """Reject non-string or blank embedding input.

    Raises:
        ValidationError: If text is not a non-empty string.
    """
    if not isinstance(text, str):
        raise ValidationError(
            f"Text must be a string, got {type(text).__name__}", field="text"
        )
    if not text.strip():
        raise ValidationError("Text must not be empty", field="text")
    return text


def ensure_dimension(
    vector: object, dimension: int, engine: str | None = None
) -> np.ndarray:
    """Coerce runtime output to a 1-D float32 vector of the declared length.

    Raises:
        DimensionMismatchError: If the length differs from dimension.
        InferenceError: If the vector contains NaN or infinity.
    """
    array = np.asarray(vector, dtype=np.float32).reshape(-1)
    if array.shape[0] != dimension:
        raise DimensionMismatchError(dimension, array.shape[0], engine=engine)
    if not np.all(np.isfinite(array)):
        raise InferenceError("Embedding contains non-finite values", engine=engine)
    return array


class ModelLoader(ABC):
    """Abstract interface for text-to-vector engines.

    Lifecycle: ``initialize`` loads a model, ``generate_embedding`` may then be
    called any number of times, and ``dispose`` releases the runtime. Calling
    ``initialize`` again replaces the loaded model.
    """

    loader_type: LoaderType

    def __init__(self) -> None:
        self._descriptor: ModelDescriptor | None = None

    @property
    def descriptor(self) -> ModelDescriptor | None:
        """Model the loader was initialized with, if any."""
        return self._descriptor

    @property
    def is_initialized(self) -> bool:
        return self._descriptor is not None

    @property
    def name(self) -> str:
        """Get loader name for logging/errors."""
        if self._descriptor is None:
            return self.loader_type.value
        return f"{self.loader_type.value}:{self._descriptor.id}"

    @abstractmethod
    def is_available(self) -> bool:
        """Check whether the runtime can be used on this host.

        Must be fast and must not load anything.
        """

    async def initialize(self, descriptor: ModelDescriptor) -> None:
        """Load a model.

        Args:
            descriptor: Model to load.

        Raises:
            LoadError: If the runtime or model cannot be constructed.
        """
        if self.is_initialized:
            await self.dispose()
        await self._load(descriptor)
        self._descriptor = descriptor

    async def generate_embedding(self, text: str) -> np.ndarray:
        """Embed one text.

        Args:
            text: Non-empty text.

        Returns:
            Float32 vector of the model's declared dimension.

        Raises:
            ValidationError: If text is empty or not a string.
            StateError: If no model is loaded, or it is disposed or replaced
                before inference finishes.
            InferenceError: If the runtime fails.
            DimensionMismatchError: If the runtime returns a wrong-length vector.
        """
        validate_text(text)
        descriptor = self._descriptor
        if descriptor is None:
            raise StateError(f"{self.name} loader is not initialized")
        engine = self.name

        vector = await self._embed(text)

        if self._descriptor is not descriptor:
            raise StateError(f"{engine} loader was disposed during inference")
        return ensure_dimension(vector, descriptor.dimension, engine=engine)

    async def dispose(self) -> None:
        """Release the runtime. Safe to call more than once."""
        if self._descriptor is None:
            return
        try:
            await self._release()
        finally:
            self._descriptor = None

    @abstractmethod
    async def _load(self, descriptor: ModelDescriptor) -> None:
        """Construct the runtime for descriptor."""

    @abstractmethod
    async def _embed(self, text: str) -> np.ndarray:
        """Run inference on validated text."""

    @abstractmethod
    async def _release(self) -> None:
        """Drop references to the runtime."""


__all__ = [
    "LoaderType",
    "ModelLoader",
    "validate_text",
    "ensure_dimension",
]
