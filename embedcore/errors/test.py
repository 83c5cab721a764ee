"""Tests for the error taxonomy."""

import pytest

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


class TestHierarchy:
    """Each error family is distinguishable by type."""

    @pytest.mark.unit
    def test_validation_error_is_value_error(self):
        """ValidationError can be caught as a ValueError."""
        err = ValidationError("limit must be >= 1", field="limit")
        assert isinstance(err, ValueError)
        assert isinstance(err, EmbedCoreError)
        assert err.field == "limit"

    @pytest.mark.unit
    def test_state_error_is_runtime_error(self):
        """StateError can be caught as a RuntimeError."""
        err = StateError("already initializing", state="initializing")
        assert isinstance(err, RuntimeError)
        assert err.state == "initializing"

    @pytest.mark.unit
    def test_engine_subclasses(self):
        """Load, inference and dimension errors are engine errors."""
        for err in (
            LoadError("boom", engine="onnx"),
            InferenceError("boom", engine="onnx"),
            DimensionMismatchError(4, 3, engine="onnx"),
        ):
            assert isinstance(err, EngineError)
            assert not isinstance(err, ValidationError)

    @pytest.mark.unit
    def test_families_do_not_overlap(self):
        """Validation, engine and state errors are disjoint."""
        assert not issubclass(ValidationError, EngineError)
        assert not issubclass(StateError, EngineError)
        assert not issubclass(ValidationError, StateError)

    @pytest.mark.unit
    def test_data_consistency_is_a_warning(self):
        """DataConsistencyWarning is a warning, not an error."""
        assert issubclass(DataConsistencyWarning, UserWarning)
        assert not issubclass(DataConsistencyWarning, EmbedCoreError)


class TestEngineError:
    """Tests for aggregated engine failures."""

    @pytest.mark.unit
    def test_str_includes_each_failure(self):
        """Aggregated message names every failing engine."""
        err = EngineError(
            "No usable embedding engine",
            failures={
                "onnx": LoadError("runtime missing"),
                "sentence-transformers": LoadError("download failed"),
            },
        )
        text = str(err)
        assert "onnx: runtime missing" in text
        assert "sentence-transformers: download failed" in text

    @pytest.mark.unit
    def test_str_without_failures(self):
        """A single engine failure prints its message only."""
        assert str(InferenceError("inference failed", engine="onnx")) == (
            "inference failed"
        )

    @pytest.mark.unit
    def test_dimension_mismatch_attributes(self):
        """DimensionMismatchError keeps both lengths."""
        err = DimensionMismatchError(384, 768)
        assert err.expected == 384
        assert err.actual == 768
        assert "expected 384, got 768" in str(err)
