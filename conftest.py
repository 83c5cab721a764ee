"""Root pytest configuration and fixtures.

This module provides:
- Environment isolation (embedcore variables cleared per test)
- A deterministic fake loader for engine and search tests
- Synthetic device capability profiles
- Reset of process-wide singletons between tests
"""

from __future__ import annotations

import asyncio
import zlib
from typing import Callable

import numpy as np
import pytest

from embedcore.catalog import ModelDescriptor, Tier
from embedcore.config import EnvVar
from embedcore.device import (
    CpuInfo,
    DeviceCapabilities,
    GPUCapabilities,
    GpuLevel,
    MemoryInfo,
    Platform,
    compute_tier,
)
from embedcore.loaders import LoaderType, ModelLoader

# =============================================================================
# Fake Loader
# =============================================================================


class FakeLoader(ModelLoader):
    """Deterministic loader for testing without model weights.

    Produces reproducible unit vectors seeded from the text, or the vectors
    given in ``vectors`` for exact texts.
    """

    def __init__(
        self,
        loader_type: LoaderType = LoaderType.PORTABLE,
        available: bool = True,
        fail_with: Exception | None = None,
        vectors: dict[str, list[float]] | None = None,
        load_delay: float = 0.0,
        embed_delay: float = 0.0,
        release_delay: float = 0.0,
    ):
        """Initialize fake loader.

        Args:
            loader_type: Type the loader reports.
            available: Result of is_available().
            fail_with: Exception raised from initialize.
            vectors: Fixed vectors by exact text.
            load_delay: Seconds initialize sleeps, to hold a transition open.
            embed_delay: Seconds each embedding call sleeps.
            release_delay: Seconds dispose sleeps, to hold a transition open.
        """
        super().__init__()
        self.loader_type = loader_type
        self.available = available
        self.fail_with = fail_with
        self.vectors = vectors or {}
        self.load_delay = load_delay
        self.embed_delay = embed_delay
        self.release_delay = release_delay
        self.loaded: list[ModelDescriptor] = []
        self.embedded: list[str] = []
        self.dispose_calls = 0

    def is_available(self) -> bool:
        return self.available

    async def _load(self, descriptor: ModelDescriptor) -> None:
        if self.load_delay:
            await asyncio.sleep(self.load_delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.loaded.append(descriptor)

    async def _embed(self, text: str) -> np.ndarray:
        dimension = self._descriptor.dimension
        if self.embed_delay:
            await asyncio.sleep(self.embed_delay)
        self.embedded.append(text)
        if text in self.vectors:
            return np.asarray(self.vectors[text], dtype=np.float32)

        rng = np.random.default_rng(zlib.crc32(text.encode("utf-8")))
        vector = rng.standard_normal(dimension).astype(np.float32)
        return vector / np.linalg.norm(vector)

    async def _release(self) -> None:
        if self.release_delay:
            await asyncio.sleep(self.release_delay)
        self.dispose_calls += 1


@pytest.fixture
def fake_loader_cls() -> type[FakeLoader]:
    """The FakeLoader class, for tests that build their own loaders."""
    return FakeLoader


# =============================================================================
# Device Capability Profiles
# =============================================================================


@pytest.fixture
def make_capabilities() -> Callable[..., DeviceCapabilities]:
    """Factory for synthetic DeviceCapabilities.

    The tier is derived with compute_tier unless given explicitly.
    """

    def _make(
        memory_gb: float = 8.0,
        cpu_cores: int = 8,
        gpu_level: GpuLevel = GpuLevel.NONE,
        platform: Platform = Platform.DESKTOP,
        tier: Tier | None = None,
    ) -> DeviceCapabilities:
        return DeviceCapabilities(
            memory=MemoryInfo(memory_gb),
            cpu=CpuInfo(cpu_cores),
            gpu=GPUCapabilities(
                level=gpu_level,
                backends=() if gpu_level == GpuLevel.NONE else ("fake",),
            ),
            platform=platform,
            tier=tier or compute_tier(memory_gb, cpu_cores, gpu_level, platform),
        )

    return _make


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path):
    """Clear embedcore variables and keep downloads out of the home directory."""
    for var in EnvVar:
        monkeypatch.delenv(var.value.name, raising=False)
    monkeypatch.setenv(EnvVar.EMBEDDING_MODELS_DIR.value.name, str(tmp_path / "models"))


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Drop process-wide detector, model manager and engine manager."""
    import embedcore.device.lib as device_lib
    import embedcore.engine.lib as engine_lib
    import embedcore.loaders.models as models_lib

    yield
    device_lib._default_detector = None
    engine_lib._default_manager = None
    models_lib._default_manager = None
