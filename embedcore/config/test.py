"""Tests for configuration management."""

from pathlib import Path

import pytest

from .lib import (
    EnvConfig,
    EnvVar,
    get_environment,
    get_environment_info,
    get_models_dir,
    list_environment_variables,
)

# =============================================================================
# Tests for get_environment (main interface)
# =============================================================================


class TestGetEnvironment:
    """Tests for the unified get_environment interface."""

    @pytest.mark.unit
    def test_returns_default_when_not_set(self, monkeypatch):
        """Returns default value when env var is not set."""
        monkeypatch.delenv("SEARCH_MAX_LIMIT", raising=False)
        assert get_environment(EnvVar.SEARCH_MAX_LIMIT) == 1000

    @pytest.mark.unit
    def test_override_takes_priority(self, monkeypatch):
        """Override parameter takes highest priority."""
        monkeypatch.setenv("SEARCH_MAX_LIMIT", "20")
        assert get_environment(EnvVar.SEARCH_MAX_LIMIT, override=5) == 5

    @pytest.mark.unit
    def test_env_var_overrides_default(self, monkeypatch):
        """Environment variable overrides default value."""
        monkeypatch.setenv("SEARCH_MAX_DIMENSION", "1024")
        result = get_environment(EnvVar.SEARCH_MAX_DIMENSION)
        assert result == 1024
        assert isinstance(result, int)

    @pytest.mark.unit
    def test_float_type_conversion(self, monkeypatch):
        """Float type conversion from string."""
        monkeypatch.setenv("DEVICE_MEMORY_GB", "7.5")
        assert get_environment(EnvVar.DEVICE_MEMORY_GB) == 7.5

    @pytest.mark.unit
    def test_bool_type_conversion_true(self, monkeypatch):
        """Boolean type conversion for true values."""
        for value in ("true", "1", "yes", "TRUE", "Yes"):
            monkeypatch.setenv("EMBEDDING_USE_GPU", value)
            assert get_environment(EnvVar.EMBEDDING_USE_GPU) is True

    @pytest.mark.unit
    def test_bool_type_conversion_false(self, monkeypatch):
        """Boolean type conversion for false values."""
        for value in ("false", "0", "no", "FALSE", "No"):
            monkeypatch.setenv("EMBEDDING_USE_GPU", value)
            assert get_environment(EnvVar.EMBEDDING_USE_GPU) is False

    @pytest.mark.unit
    def test_unrecognized_bool_returns_default(self, monkeypatch):
        """Unrecognized boolean strings fall back to the default."""
        monkeypatch.setenv("EMBEDDING_AUTO_DOWNLOAD", "sometimes")
        assert get_environment(EnvVar.EMBEDDING_AUTO_DOWNLOAD) is True

    @pytest.mark.unit
    def test_none_default_for_optional_values(self, monkeypatch):
        """Optional values default to None when not set."""
        monkeypatch.delenv("EMBEDDING_MODEL", raising=False)
        assert get_environment(EnvVar.EMBEDDING_MODEL) is None

    @pytest.mark.unit
    def test_blank_value_returns_default(self, monkeypatch):
        """Blank values are treated as unset."""
        monkeypatch.setenv("EMBEDDING_STRATEGY", "  ")
        assert get_environment(EnvVar.EMBEDDING_STRATEGY) == "auto"

    @pytest.mark.unit
    def test_invalid_int_returns_default(self, monkeypatch):
        """Invalid integer value returns default."""
        monkeypatch.setenv("SEARCH_MAX_LIMIT", "not-a-number")
        assert get_environment(EnvVar.SEARCH_MAX_LIMIT) == 1000

    @pytest.mark.unit
    def test_path_type_conversion(self, monkeypatch, tmp_path):
        """Path values are converted to Path objects."""
        monkeypatch.setenv("EMBEDDING_MODEL_PATH", str(tmp_path))
        assert get_environment(EnvVar.EMBEDDING_MODEL_PATH) == tmp_path


class TestGetEnvironmentInfo:
    """Tests for environment variable metadata."""

    @pytest.mark.unit
    def test_returns_env_config(self):
        """Returns EnvConfig dataclass."""
        info = get_environment_info(EnvVar.SEARCH_MAX_LIMIT)
        assert isinstance(info, EnvConfig)
        assert info.name == "SEARCH_MAX_LIMIT"
        assert info.default == 1000
        assert info.var_type is int
        assert info.category == "search"

    @pytest.mark.unit
    def test_description_present(self):
        """Description field is populated."""
        info = get_environment_info(EnvVar.EMBEDDING_MODEL_PATH)
        assert "ONNX" in info.description


class TestListEnvironmentVariables:
    """Tests for listing environment variables."""

    @pytest.mark.unit
    def test_returns_all_variables(self):
        """Returns all EnvVar members when no category."""
        result = list_environment_variables()
        assert len(result) == len(EnvVar)
        assert all(isinstance(v, EnvVar) for v in result)

    @pytest.mark.unit
    def test_filter_by_category(self):
        """Filters by category correctly."""
        device_vars = list_environment_variables("device")
        assert EnvVar.DEVICE_MEMORY_GB in device_vars
        assert EnvVar.DEVICE_CPU_CORES in device_vars
        assert EnvVar.EMBEDDING_MODEL not in device_vars


class TestGetModelsDir:
    """Tests for models directory resolution."""

    @pytest.mark.unit
    def test_override_takes_priority(self, monkeypatch, tmp_path):
        """Override parameter wins over the environment."""
        monkeypatch.setenv("EMBEDDING_MODELS_DIR", "/somewhere/else")
        assert get_models_dir(tmp_path) == tmp_path

    @pytest.mark.unit
    def test_env_var_used(self, monkeypatch, tmp_path):
        """EMBEDDING_MODELS_DIR is used when set."""
        monkeypatch.setenv("EMBEDDING_MODELS_DIR", str(tmp_path))
        assert get_models_dir() == tmp_path

    @pytest.mark.unit
    def test_default_under_home(self, monkeypatch):
        """Falls back to a directory under the user's home."""
        monkeypatch.delenv("EMBEDDING_MODELS_DIR", raising=False)
        assert get_models_dir() == Path.home() / ".embedcore" / "models"
