"""Error taxonomy for embedding generation and retrieval.

Callers can tell apart "the input was invalid" (ValidationError), "no
embedding could be produced" (EngineError) and "the call came out of order"
(StateError). Orphaned stored vectors are reported as a
DataConsistencyWarning and never raised.
"""

from __future__ import annotations

from typing import Any


class EmbedCoreError(Exception):
    """Base exception for embedcore errors."""


class ValidationError(EmbedCoreError, ValueError):
    """Raised when caller input is malformed.

    Covers empty text, wrong-length or non-finite vectors, and out-of-range
    limits or thresholds. Never retried.

    Attributes:
        field: Name of the offending argument, if known.
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class EngineError(EmbedCoreError):
    """Raised when an inference engine cannot produce an embedding.

    Attributes:
        engine: Name of the engine that failed, or None for an aggregate.
        failures: Per-engine causes when every engine in a strategy failed.
    """

    def __init__(
        self,
        message: str,
        engine: str | None = None,
        failures: dict[str, BaseException] | None = None,
    ):
        super().__init__(message)
        self.engine = engine
        self.failures: dict[str, BaseException] = dict(failures or {})

    def __str__(self) -> str:
        message = super().__str__()
        if not self.failures:
            return message
        causes = "; ".join(f"{name}: {err}" for name, err in self.failures.items())
        return f"{message} ({causes})"


class LoadError(EngineError):
    """Raised when a runtime or model cannot be constructed."""


class InferenceError(EngineError):
    """Raised when the runtime fails while producing an embedding."""


class DimensionMismatchError(EngineError):
    """Raised when a produced vector does not match the declared dimension.

    Attributes:
        expected: Dimension declared by the model descriptor.
        actual: Length of the vector the runtime produced.
    """

    def __init__(self, expected: int, actual: int, engine: str | None = None):
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}",
            engine=engine,
        )
        self.expected = expected
        self.actual = actual


class StateError(EmbedCoreError, RuntimeError):
    """Raised for operations on an uninitialized or transitioning session.

    Attributes:
        state: Engine state at the time of the call, if known.
    """

    def __init__(self, message: str, state: Any = None):
        super().__init__(message)
        self.state = state


class DataConsistencyWarning(UserWarning):
    """A stored vector references a record that no longer exists."""


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
