"""Tests for model loaders and the model download cache."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from embedcore.catalog import ModelDescriptor
from embedcore.errors import (
    DimensionMismatchError,
    InferenceError,
    LoadError,
    StateError,
    ValidationError,
)
from embedcore.loaders import (
    LoaderType,
    ModelManager,
    OnnxLoader,
    SentenceTransformerLoader,
    create_loader,
    ensure_dimension,
    validate_text,
)
from embedcore.loaders.factory import LOADER_CLASSES
from embedcore.loaders.onnx import mean_pool, resolve_model_file

TINY = ModelDescriptor(id="tiny", name="Tiny", source="test/tiny", dimension=4)


# =============================================================================
# Shared contract
# =============================================================================


class TestValidation:
    """Tests for input and output checks shared by all loaders."""

    @pytest.mark.unit
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_blank_text_rejected(self, text):
        with pytest.raises(ValidationError, match="must not be empty") as exc_info:
            validate_text(text)
        assert exc_info.value.field == "text"

    @pytest.mark.unit
    @pytest.mark.parametrize("text", [None, 42, b"bytes", ["list"]])
    def test_non_text_rejected(self, text):
        with pytest.raises(ValidationError, match="must be a string"):
            validate_text(text)

    @pytest.mark.unit
    def test_valid_text_passes(self):
        assert validate_text("login form") == "login form"

    @pytest.mark.unit
    def test_ensure_dimension_flattens(self):
        vector = ensure_dimension([[0.1, 0.2, 0.3, 0.4]], 4)
        assert vector.shape == (4,)
        assert vector.dtype == np.float32

    @pytest.mark.unit
    def test_ensure_dimension_mismatch(self):
        with pytest.raises(DimensionMismatchError) as exc_info:
            ensure_dimension([0.1, 0.2, 0.3], 4, engine="onnx:tiny")

        err = exc_info.value
        assert (err.expected, err.actual) == (4, 3)
        assert err.engine == "onnx:tiny"

    @pytest.mark.unit
    def test_ensure_dimension_rejects_nan(self):
        with pytest.raises(InferenceError, match="non-finite"):
            ensure_dimension([0.1, float("nan"), 0.3, 0.4], 4)


class TestLoaderLifecycle:
    """Tests for the ModelLoader lifecycle using the fake loader."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generate_before_initialize(self, fake_loader_cls):
        loader = fake_loader_cls()
        with pytest.raises(StateError, match="not initialized"):
            await loader.generate_embedding("hello")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_validation_runs_before_state_check(self, fake_loader_cls):
        loader = fake_loader_cls()
        with pytest.raises(ValidationError):
            await loader.generate_embedding("")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_embedding_has_declared_dimension(self, fake_loader_cls):
        loader = fake_loader_cls()
        await loader.initialize(TINY)

        vector = await loader.generate_embedding("hello")

        assert vector.shape == (TINY.dimension,)
        assert loader.name == "sentence-transformers:tiny"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_wrong_runtime_dimension_surfaces(self, fake_loader_cls):
        loader = fake_loader_cls(vectors={"short": [1.0, 0.0]})
        await loader.initialize(TINY)

        with pytest.raises(DimensionMismatchError):
            await loader.generate_embedding("short")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self, fake_loader_cls):
        loader = fake_loader_cls()
        await loader.initialize(TINY)

        await loader.dispose()
        await loader.dispose()

        assert loader.dispose_calls == 1
        assert loader.is_initialized is False
        assert loader.name == "sentence-transformers"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reinitialize_releases_previous_model(self, fake_loader_cls):
        loader = fake_loader_cls()
        await loader.initialize(TINY)
        await loader.initialize(TINY)

        assert loader.dispose_calls == 1
        assert loader.is_initialized is True


# =============================================================================
# Model download cache
# =============================================================================


def _mark_downloaded(models_dir, descriptor=TINY):
    model_dir = models_dir / descriptor.source.replace("/", "--")
    model_dir.mkdir(parents=True)
    (model_dir / "config.json").touch()
    return model_dir


class TestModelManager:
    """Tests for the sentence-transformers model cache."""

    @pytest.mark.unit
    def test_uses_custom_models_dir(self, tmp_path):
        manager = ModelManager(models_dir=tmp_path / "custom")
        assert manager.models_dir == tmp_path / "custom"

    @pytest.mark.unit
    def test_env_models_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("EMBEDDING_MODELS_DIR", str(tmp_path))
        assert ModelManager().models_dir == tmp_path

    @pytest.mark.unit
    def test_model_path_flattens_source(self, tmp_path):
        manager = ModelManager(models_dir=tmp_path)
        assert manager.get_model_path("all-minilm") == (
            tmp_path / "sentence-transformers--all-MiniLM-L6-v2"
        )

    @pytest.mark.unit
    def test_unknown_catalog_id(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown model"):
            ModelManager(models_dir=tmp_path).get_model_path("nope")

    @pytest.mark.unit
    def test_is_downloaded(self, tmp_path):
        manager = ModelManager(models_dir=tmp_path)
        assert manager.is_downloaded(TINY) is False

        _mark_downloaded(tmp_path)
        assert manager.is_downloaded(TINY) is True

    @pytest.mark.unit
    def test_list_downloaded(self, tmp_path):
        manager = ModelManager(models_dir=tmp_path)
        assert manager.list_downloaded() == []

        _mark_downloaded(tmp_path)
        (tmp_path / "not-a-model").mkdir()

        assert manager.list_downloaded() == ["test/tiny"]

    @pytest.mark.unit
    def test_download_saves_into_models_dir(self, tmp_path):
        mock_st = MagicMock()
        manager = ModelManager(models_dir=tmp_path)

        with patch.dict("sys.modules", {"sentence_transformers": mock_st}):
            path = manager.download(TINY)

        assert path == tmp_path / "test--tiny"
        mock_st.SentenceTransformer.assert_called_once_with(
            "test/tiny", cache_folder=str(tmp_path), trust_remote_code=False
        )
        mock_st.SentenceTransformer.return_value.save.assert_called_once_with(str(path))

    @pytest.mark.unit
    def test_download_skips_existing(self, tmp_path):
        mock_st = MagicMock()
        manager = ModelManager(models_dir=tmp_path)
        _mark_downloaded(tmp_path)

        with patch.dict("sys.modules", {"sentence_transformers": mock_st}):
            manager.download(TINY)

        mock_st.SentenceTransformer.assert_not_called()

    @pytest.mark.unit
    def test_download_without_library(self, tmp_path):
        manager = ModelManager(models_dir=tmp_path)
        with patch.dict("sys.modules", {"sentence_transformers": None}):
            with pytest.raises(ImportError, match="pip install sentence-transformers"):
                manager.download(TINY)

    @pytest.mark.unit
    def test_load_caches_and_unload(self, tmp_path):
        mock_st = MagicMock()
        manager = ModelManager(models_dir=tmp_path)
        model_dir = _mark_downloaded(tmp_path)

        with patch.dict("sys.modules", {"sentence_transformers": mock_st}):
            first = manager.load(TINY)
            second = manager.load(TINY)

        assert first is second
        mock_st.SentenceTransformer.assert_called_once_with(
            str(model_dir), device=None, trust_remote_code=False
        )
        assert manager.unload(TINY) is True
        assert manager.unload(TINY) is False

    @pytest.mark.unit
    def test_load_missing_without_auto_download(self, tmp_path):
        manager = ModelManager(models_dir=tmp_path)
        with pytest.raises(FileNotFoundError, match="python . download tiny"):
            manager.load(TINY, auto_download=False)

    @pytest.mark.unit
    def test_delete(self, tmp_path):
        manager = ModelManager(models_dir=tmp_path)
        model_dir = _mark_downloaded(tmp_path)

        assert manager.delete(TINY) is True
        assert not model_dir.exists()
        assert manager.delete(TINY) is False


# =============================================================================
# Portable loader
# =============================================================================


def _manager_returning(model) -> MagicMock:
    manager = MagicMock(spec=ModelManager)
    manager.load.return_value = model
    return manager


class TestSentenceTransformerLoader:
    """Tests for the sentence-transformers loader."""

    @pytest.mark.unit
    def test_is_available_checks_without_import(self):
        loader = SentenceTransformerLoader(model_manager=MagicMock(spec=ModelManager))
        with patch("importlib.util.find_spec", return_value=None):
            assert loader.is_available() is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_embedding(self):
        model = MagicMock()
        model.encode.return_value = np.array([[0.5, 0.5, 0.5, 0.5]])
        manager = _manager_returning(model)
        loader = SentenceTransformerLoader(
            device="cpu", auto_download=False, model_manager=manager
        )

        await loader.initialize(TINY)
        vector = await loader.generate_embedding("hello")

        manager.load.assert_called_once_with(TINY, device="cpu", auto_download=False)
        model.encode.assert_called_once_with(
            ["hello"], normalize_embeddings=True, show_progress_bar=False
        )
        np.testing.assert_allclose(vector, [0.5, 0.5, 0.5, 0.5])

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_load_failure_is_load_error(self):
        manager = MagicMock(spec=ModelManager)
        manager.load.side_effect = OSError("hub unreachable")
        loader = SentenceTransformerLoader(model_manager=manager)

        with pytest.raises(LoadError, match="hub unreachable") as exc_info:
            await loader.initialize(TINY)

        assert isinstance(exc_info.value.__cause__, OSError)
        assert exc_info.value.engine == "sentence-transformers"
        assert loader.is_initialized is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_inference_failure(self):
        model = MagicMock()
        model.encode.side_effect = RuntimeError("out of memory")
        loader = SentenceTransformerLoader(model_manager=_manager_returning(model))
        await loader.initialize(TINY)

        with pytest.raises(InferenceError, match="out of memory"):
            await loader.generate_embedding("hello")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dispose_unloads_model(self):
        manager = _manager_returning(MagicMock())
        loader = SentenceTransformerLoader(device="cpu", model_manager=manager)
        await loader.initialize(TINY)

        await loader.dispose()

        manager.unload.assert_called_once_with(TINY, device="cpu")


# =============================================================================
# Native loader
# =============================================================================


def _onnx_modules(session: MagicMock, providers=("CPUExecutionProvider",)):
    mock_ort = MagicMock()
    mock_ort.get_available_providers.return_value = list(providers)
    mock_ort.InferenceSession.return_value = session

    tokenizer = MagicMock(
        return_value={
            "input_ids": np.array([[101, 7, 102]]),
            "attention_mask": np.array([[1, 1, 0]]),
        }
    )
    mock_transformers = MagicMock()
    mock_transformers.AutoTokenizer.from_pretrained.return_value = tokenizer

    return {"onnxruntime": mock_ort, "transformers": mock_transformers}


def _onnx_session(providers=("CPUExecutionProvider",)) -> MagicMock:
    session = MagicMock()
    session.get_inputs.return_value = [
        SimpleNamespace(name="input_ids"),
        SimpleNamespace(name="attention_mask"),
        SimpleNamespace(name="token_type_ids"),
    ]
    session.get_providers.return_value = list(providers)
    # The padded third token must not count
    session.run.return_value = [
        np.array([[[3.0, 4.0, 0.0, 0.0], [3.0, 4.0, 0.0, 0.0], [0.0, 0.0, 9.0, 0.0]]])
    ]
    return session


@pytest.fixture
def onnx_model_dir(tmp_path):
    (tmp_path / "onnx").mkdir()
    (tmp_path / "onnx" / "model.onnx").touch()
    return tmp_path


class TestOnnxHelpers:
    """Tests for ONNX model resolution and pooling."""

    @pytest.mark.unit
    def test_resolve_nested_model_file(self, onnx_model_dir):
        assert resolve_model_file(onnx_model_dir) == onnx_model_dir / "onnx" / "model.onnx"

    @pytest.mark.unit
    def test_resolve_direct_file(self, onnx_model_dir):
        model_file = onnx_model_dir / "onnx" / "model.onnx"
        assert resolve_model_file(model_file) == model_file

    @pytest.mark.unit
    def test_resolve_missing(self, tmp_path):
        with pytest.raises(LoadError, match="No ONNX model found"):
            resolve_model_file(tmp_path)

    @pytest.mark.unit
    def test_mean_pool_respects_mask(self):
        hidden = np.array([[[1.0, 1.0], [3.0, 3.0], [100.0, 100.0]]])
        pooled = mean_pool(hidden, np.array([[1, 1, 0]]))
        np.testing.assert_allclose(pooled, [[2.0, 2.0]])


class TestOnnxLoader:
    """Tests for the ONNX Runtime loader."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_requires_local_path(self):
        with pytest.raises(LoadError, match="no local path"):
            await OnnxLoader().initialize(TINY)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_embedding_is_pooled_and_normalized(self, onnx_model_dir):
        from dataclasses import replace

        session = _onnx_session()
        descriptor = replace(TINY, local_path=onnx_model_dir)
        loader = OnnxLoader(use_gpu=False)

        with patch.dict("sys.modules", _onnx_modules(session)):
            await loader.initialize(descriptor)
            vector = await loader.generate_embedding("hello")

        np.testing.assert_allclose(vector, [0.6, 0.8, 0.0, 0.0], atol=1e-6)
        feeds = session.run.call_args.args[1]
        assert set(feeds) == {"input_ids", "attention_mask", "token_type_ids"}
        assert not feeds["token_type_ids"].any()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_tokenizer_loaded_from_model_dir(self, onnx_model_dir):
        from dataclasses import replace

        modules = _onnx_modules(_onnx_session())
        with patch.dict("sys.modules", modules):
            await OnnxLoader(use_gpu=False).initialize(
                replace(TINY, local_path=onnx_model_dir)
            )

        modules["transformers"].AutoTokenizer.from_pretrained.assert_called_once_with(
            str(onnx_model_dir)
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_accelerated_session_falls_back_to_cpu(self, onnx_model_dir):
        from dataclasses import replace

        session = _onnx_session()
        modules = _onnx_modules(
            session, providers=("CUDAExecutionProvider", "CPUExecutionProvider")
        )
        modules["onnxruntime"].InferenceSession.side_effect = [
            RuntimeError("CUDA driver too old"),
            session,
        ]
        loader = OnnxLoader(use_gpu=None)

        with patch.dict("sys.modules", modules):
            await loader.initialize(replace(TINY, local_path=onnx_model_dir))

        calls = modules["onnxruntime"].InferenceSession.call_args_list
        assert calls[0].kwargs["providers"] == [
            "CUDAExecutionProvider",
            "CPUExecutionProvider",
        ]
        assert calls[1].kwargs["providers"] == ["CPUExecutionProvider"]
        assert loader.providers == ["CPUExecutionProvider"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gpu_disabled_uses_cpu_only(self, onnx_model_dir):
        from dataclasses import replace

        modules = _onnx_modules(
            _onnx_session(), providers=("CUDAExecutionProvider", "CPUExecutionProvider")
        )
        with patch.dict("sys.modules", modules):
            await OnnxLoader(use_gpu=False).initialize(
                replace(TINY, local_path=onnx_model_dir)
            )

        modules["onnxruntime"].InferenceSession.assert_called_once()
        call = modules["onnxruntime"].InferenceSession.call_args
        assert call.kwargs["providers"] == ["CPUExecutionProvider"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_runtime_is_load_error(self, onnx_model_dir):
        from dataclasses import replace

        with patch.dict("sys.modules", {"onnxruntime": None}):
            with pytest.raises(LoadError) as exc_info:
                await OnnxLoader().initialize(replace(TINY, local_path=onnx_model_dir))

        assert isinstance(exc_info.value.__cause__, ImportError)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_inference_failure(self, onnx_model_dir):
        from dataclasses import replace

        session = _onnx_session()
        session.run.side_effect = RuntimeError("bad input shape")
        loader = OnnxLoader(use_gpu=False)

        with patch.dict("sys.modules", _onnx_modules(session)):
            await loader.initialize(replace(TINY, local_path=onnx_model_dir))
            with pytest.raises(InferenceError, match="bad input shape"):
                await loader.generate_embedding("hello")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dispose_releases_session(self, onnx_model_dir):
        from dataclasses import replace

        loader = OnnxLoader(use_gpu=False)
        with patch.dict("sys.modules", _onnx_modules(_onnx_session())):
            await loader.initialize(replace(TINY, local_path=onnx_model_dir))
        await loader.dispose()

        assert loader.is_initialized is False
        assert loader.providers == []


class TestCreateLoader:
    """Tests for the loader factory."""

    @pytest.mark.unit
    def test_native(self):
        assert isinstance(create_loader(LoaderType.NATIVE), OnnxLoader)

    @pytest.mark.unit
    def test_portable_by_value(self):
        loader = create_loader(
            "sentence-transformers", model_manager=MagicMock(spec=ModelManager)
        )
        assert isinstance(loader, SentenceTransformerLoader)

    @pytest.mark.unit
    def test_unknown_type(self):
        with pytest.raises(ValueError):
            create_loader("tensorflow")

    @pytest.mark.unit
    def test_every_type_has_a_loader(self):
        assert set(LOADER_CLASSES) == set(LoaderType)
        assert LOADER_CLASSES[LoaderType.NATIVE] is OnnxLoader
        assert LOADER_CLASSES[LoaderType.PORTABLE] is SentenceTransformerLoader
