"""Cosine similarity with strict input checks."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from embedcore.errors import ValidationError

VectorLike = Sequence[float] | np.ndarray


def as_vector(values: VectorLike, name: str = "vector") -> np.ndarray:
    """Convert input to a 1-D float64 array, rejecting empty input.

    Raises:
        ValidationError: If values are not numeric, not 1-D, or empty.
    """
    try:
        array = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must contain only numbers", field=name) from e
    if array.ndim != 1:
        raise ValidationError(
            f"{name} must be one-dimensional, got shape {array.shape}", field=name
        )
    if array.size == 0:
        raise ValidationError(f"{name} must not be empty", field=name)
    return array


def check_finite(array: np.ndarray, name: str = "vector") -> None:
    """Raise ValidationError if array holds NaN or infinity."""
    if not np.all(np.isfinite(array)):
        raise ValidationError(f"{name} contains NaN or infinite values", field=name)


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """Cosine similarity of two vectors, clamped to [-1, 1].

    Args:
        a: First vector.
        b: Second vector, same length as a.

    Returns:
        dot(a, b) / (|a| * |b|).

    Raises:
        ValidationError: If either vector is empty, the lengths differ, a
            value is NaN or infinite, or either vector is all zeros.

    Example:
        >>> cosine_similarity([1, 0, 0], [0, 1, 0])
        0.0
        >>> cosine_similarity([1, 1, 1], [-1, -1, -1])
        -1.0
    """
    va = as_vector(a, "a")
    vb = as_vector(b, "b")
    if va.shape != vb.shape:
        raise ValidationError(
            f"Vector length mismatch: {va.shape[0]} != {vb.shape[0]}", field="b"
        )
    check_finite(va, "a")
    check_finite(vb, "b")

    # Scale to unit max-abs so squared norms cannot overflow
    peak_a = np.max(np.abs(va))
    peak_b = np.max(np.abs(vb))
    if peak_a == 0:
        raise ValidationError("a has zero norm", field="a")
    if peak_b == 0:
        raise ValidationError("b has zero norm", field="b")

    # One product yields |a|^2, a.b and |b|^2 together
    gram = np.vstack((va / peak_a, vb / peak_b))
    gram = gram @ gram.T
    similarity = gram[0, 1] / (np.sqrt(gram[0, 0]) * np.sqrt(gram[1, 1]))
    return float(np.clip(similarity, -1.0, 1.0))


__all__ = [
    "VectorLike",
    "as_vector",
    "check_finite",
    "cosine_similarity",
]
