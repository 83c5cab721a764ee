"""Tests for the embedding engine manager."""

import asyncio
import logging
import threading
import time
from dataclasses import replace
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

from embedcore.catalog import ModelDescriptor, get_model
from embedcore.device import DeviceCapabilityDetector
from embedcore.engine import (
    EmbeddingEngineManager,
    EmbeddingResult,
    EngineConfig,
    EngineState,
    EngineStrategy,
    get_engine_manager,
    reset_engine_manager,
)
from embedcore.errors import EngineError, LoadError, StateError, ValidationError
from embedcore.loaders import LoaderType

CUSTOM = ModelDescriptor(
    id="custom", name="Custom", source="test/custom", dimension=4, local_path=Path("/models/custom")
)


@pytest.fixture
def primary(fake_loader_cls):
    return fake_loader_cls(LoaderType.NATIVE)


@pytest.fixture
def fallback(fake_loader_cls):
    return fake_loader_cls(LoaderType.PORTABLE)


@pytest.fixture
def manager(primary, fallback):
    return EmbeddingEngineManager(
        primary_factory=lambda: primary, fallback_factory=lambda: fallback
    )


def _detector_for(capabilities) -> MagicMock:
    detector = MagicMock(spec=DeviceCapabilityDetector)
    detector.detect.return_value = capabilities
    return detector


class TestEngineConfig:
    """Tests for EngineConfig."""

    @pytest.mark.unit
    def test_defaults(self):
        config = EngineConfig()
        assert config.strategy == EngineStrategy.AUTO
        assert config.model_id is None
        assert config.auto_select is False

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("auto", EngineStrategy.AUTO),
            ("PRIMARY_ONLY", EngineStrategy.PRIMARY_ONLY),
            ("fallback-only", EngineStrategy.FALLBACK_ONLY),
        ],
    )
    def test_strategy_parsing(self, value, expected):
        assert EngineConfig(strategy=value).strategy == expected

    @pytest.mark.unit
    def test_invalid_strategy(self):
        with pytest.raises(ValidationError, match="Unknown engine strategy") as exc_info:
            EngineConfig(strategy="fastest")
        assert exc_info.value.field == "strategy"

    @pytest.mark.unit
    def test_model_path_coerced(self):
        assert EngineConfig(model_path="/tmp/m").model_path == Path("/tmp/m")

    @pytest.mark.unit
    def test_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("EMBEDDING_MODEL", "nomic-embed")
        monkeypatch.setenv("EMBEDDING_STRATEGY", "fallback-only")
        monkeypatch.setenv("EMBEDDING_AUTO_SELECT", "yes")
        monkeypatch.setenv("EMBEDDING_MODEL_PATH", str(tmp_path))

        config = EngineConfig.from_environment()

        assert config.model_id == "nomic-embed"
        assert config.strategy == EngineStrategy.FALLBACK_ONLY
        assert config.auto_select is True
        assert config.model_path == tmp_path

    @pytest.mark.unit
    def test_from_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("EMBEDDING_MODEL", "nomic-embed")
        config = EngineConfig.from_environment(model_id="all-mpnet", strategy=None)
        assert config.model_id == "all-mpnet"
        assert config.strategy == EngineStrategy.AUTO


class TestInitialize:
    """Tests for model resolution and strategy handling."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_default_model_uses_portable_engine(self, manager, primary, fallback):
        session = await manager.initialize()

        assert session.descriptor.id == "all-minilm"
        assert session.loader_type == LoaderType.PORTABLE
        assert manager.state == EngineState.READY
        assert manager.current_engine == LoaderType.PORTABLE
        assert manager.current_model.id == "all-minilm"
        assert primary.loaded == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auto_with_local_path_uses_native(self, manager, primary, fallback):
        session = await manager.initialize(EngineConfig(custom_descriptor=CUSTOM))

        assert session.loader_type == LoaderType.NATIVE
        assert primary.loaded == [CUSTOM]
        assert fallback.loaded == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auto_falls_back_when_native_unavailable(
        self, manager, primary, fallback, caplog
    ):
        primary.available = False

        with caplog.at_level(logging.WARNING):
            session = await manager.initialize(EngineConfig(custom_descriptor=CUSTOM))

        assert session.loader_type == LoaderType.PORTABLE
        assert fallback.loaded == [CUSTOM]
        assert "falling back to portable engine" in caplog.text

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auto_falls_back_when_native_fails(self, manager, primary, fallback):
        primary.fail_with = LoadError("bad graph", engine="onnx")

        session = await manager.initialize(EngineConfig(custom_descriptor=CUSTOM))

        assert session.loader_type == LoaderType.PORTABLE

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unexpected_native_exception_also_falls_back(
        self, manager, primary, fallback
    ):
        primary.fail_with = RuntimeError("segfault-ish")

        session = await manager.initialize(EngineConfig(custom_descriptor=CUSTOM))

        assert session.loader_type == LoaderType.PORTABLE

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auto_both_fail_aggregates(self, manager, primary, fallback):
        primary.fail_with = LoadError("bad graph", engine="onnx")
        fallback.available = False

        with pytest.raises(EngineError, match="No usable embedding engine") as exc_info:
            await manager.initialize(EngineConfig(custom_descriptor=CUSTOM))

        err = exc_info.value
        assert set(err.failures) == {"onnx", "sentence-transformers"}
        assert "bad graph" in str(err)
        assert manager.state == EngineState.UNINITIALIZED
        assert manager.session is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_primary_only_propagates(self, manager, primary, fallback):
        primary.fail_with = LoadError("bad graph", engine="onnx")

        with pytest.raises(LoadError, match="bad graph"):
            await manager.initialize(
                EngineConfig(custom_descriptor=CUSTOM, strategy=EngineStrategy.PRIMARY_ONLY)
            )

        assert fallback.loaded == []
        assert manager.state == EngineState.UNINITIALIZED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_primary_only_unavailable(self, manager, primary):
        primary.available = False
        with pytest.raises(LoadError, match="not available"):
            await manager.initialize(EngineConfig(strategy="primary-only"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fallback_only_ignores_local_path(self, manager, primary, fallback):
        session = await manager.initialize(
            EngineConfig(custom_descriptor=CUSTOM, strategy=EngineStrategy.FALLBACK_ONLY)
        )

        assert session.loader_type == LoaderType.PORTABLE
        assert primary.loaded == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_model_id_lookup(self, manager):
        session = await manager.initialize(EngineConfig(model_id="nomic-embed"))
        assert session.descriptor == get_model("nomic-embed")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_custom_descriptor_wins_over_id(self, manager):
        session = await manager.initialize(
            EngineConfig(model_id="nomic-embed", custom_descriptor=CUSTOM)
        )
        assert session.descriptor.id == "custom"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_model_id(self, manager):
        with pytest.raises(ValidationError, match="Unknown model: nope"):
            await manager.initialize(EngineConfig(model_id="nope"))
        assert manager.state == EngineState.UNINITIALIZED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generative_model_rejected(self, manager):
        with pytest.raises(ValidationError, match="not an embedding model"):
            await manager.initialize(EngineConfig(model_id="phi-2"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_model_path_enables_native(self, manager, tmp_path):
        session = await manager.initialize(
            EngineConfig(model_id="all-minilm", model_path=tmp_path)
        )

        assert session.loader_type == LoaderType.NATIVE
        assert session.descriptor.local_path == tmp_path
        assert get_model("all-minilm").local_path is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auto_select_uses_recommendation(
        self, primary, fallback, make_capabilities
    ):
        manager = EmbeddingEngineManager(
            primary_factory=lambda: primary,
            fallback_factory=lambda: fallback,
            detector=_detector_for(make_capabilities(memory_gb=16, cpu_cores=8)),
        )

        session = await manager.initialize(EngineConfig(auto_select=True))

        assert session.descriptor.id == "all-mpnet"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auto_select_without_match_uses_default(
        self, primary, fallback, make_capabilities
    ):
        manager = EmbeddingEngineManager(
            primary_factory=lambda: primary,
            fallback_factory=lambda: fallback,
            detector=_detector_for(make_capabilities(memory_gb=0.5, cpu_cores=1)),
        )

        session = await manager.initialize(EngineConfig(auto_select=True))

        assert session.descriptor.id == "all-minilm"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auto_select_detection_runs_off_event_loop(
        self, primary, fallback, make_capabilities
    ):
        detected_on: list[threading.Thread] = []

        class SlowDetector(DeviceCapabilityDetector):
            def _detect(self):
                detected_on.append(threading.current_thread())
                time.sleep(0.3)
                return make_capabilities(memory_gb=16, cpu_cores=8)

        manager = EmbeddingEngineManager(
            primary_factory=lambda: primary,
            fallback_factory=lambda: fallback,
            detector=SlowDetector(),
        )
        ticks: list[float] = []

        async def ticker():
            loop = asyncio.get_running_loop()
            while True:
                ticks.append(loop.time())
                await asyncio.sleep(0.01)

        ticker_task = asyncio.create_task(ticker())
        await asyncio.sleep(0)
        try:
            session = await manager.initialize(EngineConfig(auto_select=True))
        finally:
            ticker_task.cancel()

        assert session.descriptor.id == "all-mpnet"
        assert detected_on and detected_on[0] is not threading.main_thread()
        gaps = [b - a for a, b in zip(ticks, ticks[1:])]
        assert len(ticks) > 5
        assert max(gaps) < 0.2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_initialize_while_ready_disposes_first(self, manager, fallback):
        await manager.initialize()
        await manager.initialize(EngineConfig(model_id="nomic-embed"))

        assert fallback.dispose_calls == 1
        assert manager.current_model.id == "nomic-embed"


class TestConcurrency:
    """Tests for rejection of overlapping state transitions."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_second_initialize_rejected(self, manager, fallback):
        fallback.load_delay = 0.05
        task = asyncio.create_task(manager.initialize())
        await asyncio.sleep(0)

        assert manager.state == EngineState.INITIALIZING
        with pytest.raises(StateError, match="already initializing") as exc_info:
            await manager.initialize()
        assert exc_info.value.state == EngineState.INITIALIZING

        await task
        assert manager.state == EngineState.READY
        assert len(fallback.loaded) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_switch_and_dispose_rejected_while_initializing(self, manager, fallback):
        fallback.load_delay = 0.05
        task = asyncio.create_task(manager.initialize())
        await asyncio.sleep(0)

        with pytest.raises(StateError):
            await manager.switch_model("nomic-embed")
        with pytest.raises(StateError):
            await manager.dispose()

        await task

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generate_rejected_while_initializing(self, manager, fallback):
        fallback.load_delay = 0.05
        task = asyncio.create_task(manager.initialize())
        await asyncio.sleep(0)

        with pytest.raises(StateError, match="initializing"):
            await manager.generate_embedding("hello")

        await task

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generate_rejected_while_disposing(self, manager, fallback):
        await manager.initialize()
        fallback.release_delay = 0.05
        task = asyncio.create_task(manager.dispose())
        await asyncio.sleep(0)

        assert manager.state == EngineState.DISPOSING
        with pytest.raises(StateError, match="disposing") as exc_info:
            await manager.generate_embedding("hello")
        assert exc_info.value.state == EngineState.DISPOSING

        await task
        assert fallback.embedded == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dispose_during_generation_raises_state_error(self, manager, fallback):
        await manager.initialize()
        fallback.embed_delay = 0.05
        task = asyncio.create_task(manager.generate_embedding("hello"))
        await asyncio.sleep(0)

        await manager.dispose()

        with pytest.raises(StateError, match="disposed during inference"):
            await task
        assert manager.state == EngineState.UNINITIALIZED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_concurrent_generation_when_ready(self, manager):
        await manager.initialize()

        results = await asyncio.gather(
            *(manager.generate_embedding(f"text {i}") for i in range(5))
        )

        assert all(r.dimension == 384 for r in results)


class TestSwitchModel:
    """Tests for switch_model."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_old_session_disposed_before_new_load(self, fake_loader_cls):
        events: list[tuple[str, str]] = []

        class RecordingLoader(fake_loader_cls):
            async def _load(self, descriptor):
                events.append(("load", descriptor.id))
                await super()._load(descriptor)

            async def _release(self):
                events.append(("dispose", self.descriptor.id))
                await super()._release()

        manager = EmbeddingEngineManager(
            primary_factory=RecordingLoader, fallback_factory=RecordingLoader
        )
        await manager.initialize()
        session = await manager.switch_model("nomic-embed")

        assert events == [
            ("load", "all-minilm"),
            ("dispose", "all-minilm"),
            ("load", "nomic-embed"),
        ]
        assert session.descriptor.id == "nomic-embed"
        assert manager.state == EngineState.READY

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_switch_ends_uninitialized(self, manager, fallback):
        await manager.initialize()
        fallback.fail_with = LoadError("download failed", engine="sentence-transformers")

        with pytest.raises(EngineError):
            await manager.switch_model("nomic-embed")

        assert manager.state == EngineState.UNINITIALIZED
        assert manager.current_model is None
        assert fallback.dispose_calls == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_id_keeps_current_session(self, manager, fallback):
        await manager.initialize()

        with pytest.raises(ValidationError):
            await manager.switch_model("nope")

        assert manager.state == EngineState.READY
        assert manager.current_model.id == "all-minilm"
        assert fallback.dispose_calls == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_switch_keeps_strategy(self, manager, primary):
        await manager.initialize(EngineConfig(strategy=EngineStrategy.FALLBACK_ONLY))
        session = await manager.switch_model("all-mpnet")

        assert session.loader_type == LoaderType.PORTABLE

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_switch_from_uninitialized(self, manager):
        session = await manager.switch_model("all-mpnet")
        assert session.descriptor.id == "all-mpnet"


class TestGenerateEmbedding:
    """Tests for generate_embedding."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_lazy_bootstrap(self, manager, caplog):
        with caplog.at_level(logging.INFO):
            result = await manager.generate_embedding("login form")

        assert isinstance(result, EmbeddingResult)
        assert result.dimension == 384
        assert result.vector.shape == (384,)
        assert manager.state == EngineState.READY
        assert "initializing with defaults" in caplog.text

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_lazy_bootstrap_reads_environment(self, manager, monkeypatch):
        monkeypatch.setenv("EMBEDDING_MODEL", "nomic-embed")
        result = await manager.generate_embedding("login form")
        assert result.dimension == 768

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_text_does_not_bootstrap(self, manager):
        with pytest.raises(ValidationError):
            await manager.generate_embedding("   ")
        assert manager.state == EngineState.UNINITIALIZED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bootstrap_failure_is_engine_error(self, manager, fallback):
        fallback.available = False
        with pytest.raises(EngineError):
            await manager.generate_embedding("hello")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_deterministic_vectors(self, manager):
        first = await manager.generate_embedding("same text")
        second = await manager.generate_embedding("same text")
        np.testing.assert_array_equal(first.vector, second.vector)
        assert first.to_list() == pytest.approx(list(first.vector))


class TestDispose:
    """Tests for dispose."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self, manager, fallback):
        await manager.dispose()
        await manager.initialize()
        await manager.dispose()
        await manager.dispose()

        assert manager.state == EngineState.UNINITIALIZED
        assert fallback.dispose_calls == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dispose_failure_still_clears_session(self, manager, fallback):
        await manager.initialize()

        async def broken_release():
            raise RuntimeError("driver hung")

        fallback._release = broken_release
        with pytest.raises(RuntimeError):
            await manager.dispose()

        assert manager.state == EngineState.UNINITIALIZED
        assert manager.session is None


class TestDetectEngines:
    """Tests for detect_engines."""

    @pytest.mark.unit
    def test_reports_both_engines(self, manager, primary):
        primary.available = False

        detections = {d.engine: d for d in manager.detect_engines()}

        assert detections[LoaderType.NATIVE].available is False
        assert detections[LoaderType.NATIVE].reason == "runtime not installed"
        assert detections[LoaderType.PORTABLE].available is True


class TestProcessManager:
    """Tests for the process-wide manager."""

    @pytest.mark.unit
    def test_singleton_and_reset(self):
        first = get_engine_manager()
        assert get_engine_manager() is first

        reset_engine_manager()
        assert get_engine_manager() is not first

    @pytest.mark.unit
    def test_initial_state(self):
        manager = get_engine_manager()
        assert manager.state == EngineState.UNINITIALIZED
        assert manager.current_model is None
        assert manager.current_engine is None
        assert manager.is_ready is False


@pytest.mark.unit
def test_custom_descriptor_copy_keeps_catalog_untouched():
    """replace() on catalog descriptors never mutates the shared catalog."""
    minilm = get_model("all-minilm")
    patched = replace(minilm, local_path=Path("/tmp/x"))
    assert minilm.local_path is None
    assert patched.local_path == Path("/tmp/x")
