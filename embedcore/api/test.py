"""Tests for the public API functions."""

from unittest.mock import patch

import pytest

import embedcore.engine.lib as engine_lib
from embedcore.api import (
    detect_device_capabilities,
    detect_engines,
    dispose_engine,
    generate_embedding,
    get_current_model,
    initialize_engine,
    list_models,
    recommend_model,
    search_similar,
    semantic_search,
    switch_model,
)
from embedcore.catalog import ModelCategory, ModelDescriptor
from embedcore.device import GPUCapabilities, Platform
from embedcore.engine import EmbeddingEngineManager, EngineConfig, EngineState
from embedcore.errors import ValidationError
from embedcore.loaders import LoaderType
from embedcore.search import InMemoryStorage, StoredEmbedding

TINY = ModelDescriptor(id="tiny", name="Tiny", source="test/tiny", dimension=4)


@pytest.fixture
def manager(fake_loader_cls, monkeypatch) -> EmbeddingEngineManager:
    """Install a process-wide manager backed by fake loaders."""
    manager = EmbeddingEngineManager(
        primary_factory=lambda: fake_loader_cls(LoaderType.NATIVE),
        fallback_factory=lambda: fake_loader_cls(vectors={"login": [1, 0, 0, 0]}),
    )
    monkeypatch.setattr(engine_lib, "_default_manager", manager)
    return manager


@pytest.fixture
def desktop(monkeypatch):
    """Pin device detection to a 16GB, 8-core desktop without accelerators."""
    monkeypatch.setenv("DEVICE_MEMORY_GB", "16")
    monkeypatch.setenv("DEVICE_CPU_CORES", "8")
    monkeypatch.setenv("DEVICE_PLATFORM", "desktop")
    with patch(
        "embedcore.device.lib.detect_gpu_capabilities", return_value=GPUCapabilities()
    ):
        yield


class TestEngineLifecycle:
    """Tests for initialize, switch and dispose."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_initialize_from_options(self, manager):
        descriptor = await initialize_engine(model_id="all-minilm", strategy="fallback-only")

        assert descriptor.id == "all-minilm"
        assert get_current_model() is descriptor
        assert manager.current_engine == LoaderType.PORTABLE

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_options_override_config(self, manager):
        descriptor = await initialize_engine(
            EngineConfig(model_id="all-minilm"), model_id="all-mpnet"
        )
        assert descriptor.id == "all-mpnet"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generate_embedding_bootstraps_default_model(self, manager):
        result = await generate_embedding("settings page")

        assert result.dimension == 384
        assert get_current_model().id == "all-minilm"
        assert manager.state == EngineState.READY

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generate_embedding_rejects_empty_text(self, manager):
        with pytest.raises(ValidationError):
            await generate_embedding("")
        assert get_current_model() is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_switch_model(self, manager):
        await initialize_engine(model_id="all-minilm")

        descriptor = await switch_model("nomic-embed")

        assert descriptor.id == "nomic-embed"
        assert get_current_model().id == "nomic-embed"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_switch_to_unknown_model_keeps_session(self, manager):
        await initialize_engine(model_id="all-minilm")

        with pytest.raises(ValidationError, match="Unknown model"):
            await switch_model("no-such-model")

        assert get_current_model().id == "all-minilm"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dispose_engine(self, manager):
        await initialize_engine(model_id="all-minilm")

        await dispose_engine()
        await dispose_engine()

        assert get_current_model() is None
        assert manager.state == EngineState.UNINITIALIZED

    @pytest.mark.unit
    def test_detect_engines(self, manager):
        detections = detect_engines()
        assert [d.engine for d in detections] == [LoaderType.NATIVE, LoaderType.PORTABLE]
        assert all(d.available for d in detections)


class TestModelsAndDevice:
    """Tests for catalog and device functions."""

    @pytest.mark.unit
    def test_list_models(self):
        assert [m.id for m in list_models()] == [
            "phi-3-mini",
            "phi-2",
            "nomic-embed",
            "all-minilm",
            "all-mpnet",
        ]
        assert [m.id for m in list_models("generative")] == ["phi-3-mini", "phi-2"]
        assert all(m.is_embedding for m in list_models(ModelCategory.EMBEDDING))

    @pytest.mark.unit
    def test_detect_device_capabilities_is_cached(self, desktop):
        caps = detect_device_capabilities()

        assert caps.memory_gb == 16
        assert caps.cpu_cores == 8
        assert caps.platform == Platform.DESKTOP
        assert detect_device_capabilities() is caps

    @pytest.mark.unit
    def test_recommend_model(self, desktop):
        assert recommend_model(ModelCategory.EMBEDDING).id == "all-mpnet"
        # Ties keep catalog order, which lists phi-3-mini first
        assert recommend_model().id == "phi-3-mini"

    @pytest.mark.unit
    def test_recommend_model_none_when_too_small(self, monkeypatch):
        monkeypatch.setenv("DEVICE_MEMORY_GB", "0.5")
        monkeypatch.setenv("DEVICE_CPU_CORES", "1")
        with patch(
            "embedcore.device.lib.detect_gpu_capabilities",
            return_value=GPUCapabilities(),
        ):
            assert recommend_model("embedding") is None


class TestSearchFunctions:
    """Tests for the search functions."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_search_similar(self):
        storage = InMemoryStorage(
            [
                StoredEmbedding("e1", "r1", [0.9, 0.1, 0, 0]),
                StoredEmbedding("e2", "r2", [0, 0, 0.9, 0.1]),
                StoredEmbedding("e3", "r3", [0.85, 0.15, 0, 0]),
            ]
        )

        results = await search_similar(storage, [1, 0, 0, 0], limit=2, min_similarity=0.8)

        assert [r.id for r in results] == ["e1", "e3"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_semantic_search_uses_current_engine(self, manager):
        await initialize_engine(custom_descriptor=TINY)
        storage = InMemoryStorage(
            [
                StoredEmbedding("e1", "login-screen", [0.9, 0.1, 0, 0]),
                StoredEmbedding("e2", "chart", [0, 0, 1, 0]),
            ],
            {"login-screen": {"title": "Login"}, "chart": {"title": "Chart"}},
        )

        results = await semantic_search(storage, "login")

        assert [r.record for r in results] == [{"title": "Login"}]
