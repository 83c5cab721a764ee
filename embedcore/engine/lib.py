"""Embedding engine manager.

Owns the single live engine session of the process. It resolves which model
to load, picks a loader according to the configured strategy (native ONNX,
portable sentence-transformers, or native with automatic fallback) and
exposes one ``generate_embedding`` call regardless of the active engine.

State machine::

    UNINITIALIZED -> INITIALIZING -> READY -> DISPOSING -> UNINITIALIZED
    INITIALIZING -> UNINITIALIZED  (on failure)

State transitions never overlap: a second ``initialize``, ``switch_model``
or ``dispose`` issued while one is running is rejected with a StateError
rather than queued.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any, Callable

import numpy as np

from embedcore.catalog import (
    DEFAULT_CATALOG,
    DEFAULT_MODEL,
    DEFAULT_MODEL_ID,
    ModelCatalog,
    ModelCategory,
    ModelDescriptor,
)
from embedcore.config import EnvVar, get_environment
from embedcore.device import (
    DeviceCapabilities,
    DeviceCapabilityDetector,
    get_device_detector,
)
from embedcore.errors import EngineError, LoadError, StateError, ValidationError
from embedcore.loaders import LoaderType, ModelLoader, create_loader, validate_text
from embedcore.recommend import ModelRecommender

logger = logging.getLogger(__name__)

LoaderFactory = Callable[[], ModelLoader]


class EngineStrategy(str, Enum):
    """How the manager chooses between the native and portable engines."""

    AUTO = "auto"
    PRIMARY_ONLY = "primary-only"
    FALLBACK_ONLY = "fallback-only"

    @classmethod
    def parse(cls, value: EngineStrategy | str) -> EngineStrategy:
        """Parse a strategy name, accepting '_' in place of '-'.

        Raises:
            ValidationError: If the name is unknown.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower().replace("_", "-"))
        except ValueError as e:
            choices = ", ".join(s.value for s in cls)
            raise ValidationError(
                f"Unknown engine strategy '{value}' (expected one of: {choices})",
                field="strategy",
            ) from e


class EngineState(str, Enum):
    """Lifecycle state of the manager."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    DISPOSING = "disposing"


@dataclass(frozen=True)
class EngineSession:
    """The live engine: which loader runs which model."""

    loader_type: LoaderType
    descriptor: ModelDescriptor
    loader: ModelLoader


@dataclass(frozen=True)
class EngineConfig:
    """Options for ``initialize``.

    Attributes:
        model_id: Catalog id of the model to load.
        custom_descriptor: Model not in the catalog; wins over model_id.
        strategy: Engine selection strategy.
        auto_select: Load the model recommended for this device when no
            model is named.
        model_path: Local ONNX model directory applied to the resolved model.
    """

    model_id: str | None = None
    custom_descriptor: ModelDescriptor | None = None
    strategy: EngineStrategy = EngineStrategy.AUTO
    auto_select: bool = False
    model_path: Path | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "strategy", EngineStrategy.parse(self.strategy))
        if self.model_path is not None:
            object.__setattr__(self, "model_path", Path(self.model_path))

    @classmethod
    def from_environment(cls, **overrides: Any) -> EngineConfig:
        """Build a config from EMBEDDING_* variables.

        Args:
            **overrides: Field values that win over the environment. None
                values are ignored.
        """
        values: dict[str, Any] = {
            "model_id": get_environment(EnvVar.EMBEDDING_MODEL),
            "strategy": get_environment(EnvVar.EMBEDDING_STRATEGY),
            "auto_select": get_environment(EnvVar.EMBEDDING_AUTO_SELECT),
            "model_path": get_environment(EnvVar.EMBEDDING_MODEL_PATH),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass(frozen=True)
class EmbeddingResult:
    """A generated embedding."""

    vector: np.ndarray
    dimension: int

    def to_list(self) -> list[float]:
        return [float(x) for x in self.vector]


@dataclass(frozen=True)
class EngineDetection:
    """Whether one engine could run on this host, and why."""

    engine: LoaderType
    available: bool
    reason: str = ""


class EmbeddingEngineManager:
    """Manages the single embedding engine session.

    Example:
        >>> manager = EmbeddingEngineManager()
        >>> await manager.initialize(EngineConfig(model_id="all-minilm"))
        >>> result = await manager.generate_embedding("login form")
        >>> result.dimension
        384
    """

    def __init__(
        self,
        primary_factory: LoaderFactory | None = None,
        fallback_factory: LoaderFactory | None = None,
        catalog: ModelCatalog = DEFAULT_CATALOG,
        recommender: ModelRecommender | None = None,
        detector: DeviceCapabilityDetector | None = None,
    ):
        """Initialize the manager.

        Args:
            primary_factory: Creates the native loader. Defaults to OnnxLoader.
            fallback_factory: Creates the portable loader. Defaults to
                SentenceTransformerLoader.
            catalog: Catalog used to resolve model ids.
            recommender: Used when auto-selecting a model.
            detector: Device detector used when auto-selecting a model.
        """
        self._primary_factory = primary_factory or partial(create_loader, LoaderType.NATIVE)
        self._fallback_factory = fallback_factory or partial(
            create_loader, LoaderType.PORTABLE
        )
        self.catalog = catalog
        self._recommender = recommender or ModelRecommender(catalog)
        self._detector = detector or get_device_detector()

        self._state = EngineState.UNINITIALIZED
        self._session: EngineSession | None = None
        self._config = EngineConfig()
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def session(self) -> EngineSession | None:
        return self._session

    @property
    def is_ready(self) -> bool:
        return self._state == EngineState.READY

    @property
    def current_model(self) -> ModelDescriptor | None:
        """Descriptor of the loaded model, or None."""
        return self._session.descriptor if self._session else None

    @property
    def current_engine(self) -> LoaderType | None:
        """Type of the active loader, or None."""
        return self._session.loader_type if self._session else None

    def detect_engines(self) -> list[EngineDetection]:
        """Check which engines could run here without loading anything."""
        detections = []
        for loader_type, factory in (
            (LoaderType.NATIVE, self._primary_factory),
            (LoaderType.PORTABLE, self._fallback_factory),
        ):
            available = factory().is_available()
            if not available:
                reason = "runtime not installed"
            elif loader_type == LoaderType.NATIVE:
                reason = "runtime installed; needs a local ONNX model path"
            else:
                reason = "runtime installed; downloads models on first use"
            detections.append(EngineDetection(loader_type, available, reason))
        return detections

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self, config: EngineConfig | None = None) -> EngineSession:
        """Start an engine session, replacing any current one.

        Args:
            config: Model and strategy selection. Defaults to EngineConfig().

        Returns:
            The new session.

        Raises:
            ValidationError: If the model id is unknown or not an embedding model.
            EngineError: If no engine allowed by the strategy could start.
            StateError: If another state transition is in progress.
        """
        self._ensure_idle()
        async with self._lock:
            return await self._initialize(config or EngineConfig())

    async def switch_model(self, model_id: str) -> EngineSession:
        """Dispose the current session, then load another catalog model.

        The previous session is always released first. If the new model fails
        to load, the manager is left UNINITIALIZED.

        Raises:
            ValidationError: If model_id is not an embedding model in the catalog.
            EngineError: If the new model cannot be loaded.
            StateError: If another state transition is in progress.
        """
        self._ensure_idle()
        async with self._lock:
            config = replace(
                self._config,
                model_id=model_id,
                custom_descriptor=None,
                auto_select=False,
                model_path=None,
            )
            # Reject unknown ids before touching the live session
            self._resolve_descriptor(config, await self._detect_for(config))

            previous = self.current_model
            await self._dispose()
            logger.info(
                f"Switching model from '{previous.id if previous else None}' to '{model_id}'"
            )
            return await self._initialize(config)

    async def dispose(self) -> None:
        """Release the current session. Safe to call when uninitialized.

        Raises:
            StateError: If another state transition is in progress.
        """
        self._ensure_idle()
        async with self._lock:
            await self._dispose()

    # -------------------------------------------------------------------------
    # Embedding
    # -------------------------------------------------------------------------

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Embed one text with the active engine.

        Starts an engine from the environment configuration if none is
        running yet.

        Raises:
            ValidationError: If text is empty or not a string.
            EngineError: If no engine can be started or inference fails.
            StateError: If the engine is initializing or disposing, or the
                session is disposed while the text is being embedded.
        """
        validate_text(text)

        if self._state in (EngineState.INITIALIZING, EngineState.DISPOSING):
            raise StateError(
                f"Cannot generate embeddings while engine is {self._state.value}",
                state=self._state,
            )
        session = self._session
        if session is None:
            logger.info("Embedding engine not initialized, initializing with defaults")
            session = await self.initialize(EngineConfig.from_environment())

        vector = await session.loader.generate_embedding(text)
        return EmbeddingResult(vector=vector, dimension=int(vector.shape[0]))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _ensure_idle(self) -> None:
        if not self._lock.locked():
            return
        if self._state == EngineState.INITIALIZING:
            raise StateError("Engine is already initializing", state=self._state)
        raise StateError(
            f"Engine state transition in progress ({self._state.value})",
            state=self._state,
        )

    async def _detect_for(self, config: EngineConfig) -> DeviceCapabilities | None:
        """Detect capabilities off the event loop when auto-selection needs them."""
        named = config.custom_descriptor is not None or config.model_id
        if named or not config.auto_select:
            return None
        return await asyncio.to_thread(self._detector.detect)

    def _resolve_descriptor(
        self, config: EngineConfig, capabilities: DeviceCapabilities | None = None
    ) -> ModelDescriptor:
        """Pick the model: custom > id > recommendation > default.

        Args:
            config: Model selection options.
            capabilities: Device used for auto-selection, from _detect_for.
        """
        if config.custom_descriptor is not None:
            descriptor = config.custom_descriptor
        elif config.model_id:
            descriptor = self.catalog.get(config.model_id)
            if descriptor is None:
                raise ValidationError(
                    f"Unknown model: {config.model_id}", field="model_id"
                )
        elif config.auto_select:
            descriptor = self._recommender.recommend(
                capabilities, ModelCategory.EMBEDDING
            )
            if descriptor is None:
                descriptor = self._default_descriptor()
                logger.warning(
                    f"No model recommended for this device, using default '{descriptor.id}'"
                )
        else:
            descriptor = self._default_descriptor()

        if not descriptor.is_embedding:
            raise ValidationError(
                f"Model '{descriptor.id}' is a {descriptor.category.value} model, "
                "not an embedding model",
                field="model_id",
            )
        if config.model_path is not None:
            descriptor = replace(descriptor, local_path=config.model_path)
        return descriptor

    def _default_descriptor(self) -> ModelDescriptor:
        return self.catalog.get(DEFAULT_MODEL_ID) or DEFAULT_MODEL.descriptor

    async def _initialize(self, config: EngineConfig) -> EngineSession:
        descriptor = self._resolve_descriptor(config, await self._detect_for(config))

        if self._session is not None:
            await self._dispose()

        self._state = EngineState.INITIALIZING
        logger.info(
            f"Initializing embedding engine for '{descriptor.id}' "
            f"(strategy={config.strategy.value})"
        )
        try:
            session = await self._start(descriptor, config.strategy)
        except BaseException:
            self._state = EngineState.UNINITIALIZED
            raise

        self._session = session
        self._config = config
        self._state = EngineState.READY
        logger.info(f"Embedding engine ready: {session.loader.name}")
        return session

    async def _start(
        self, descriptor: ModelDescriptor, strategy: EngineStrategy
    ) -> EngineSession:
        if strategy == EngineStrategy.PRIMARY_ONLY:
            return await self._start_loader(self._primary_factory, descriptor)
        if strategy == EngineStrategy.FALLBACK_ONLY:
            return await self._start_loader(self._fallback_factory, descriptor)

        failures: dict[str, BaseException] = {}
        if descriptor.local_path is not None:
            try:
                return await self._start_loader(self._primary_factory, descriptor)
            except EngineError as e:
                failures[LoaderType.NATIVE.value] = e
                logger.warning(
                    f"Native engine failed for '{descriptor.id}', "
                    f"falling back to portable engine: {e}"
                )
        else:
            logger.info(
                f"No local model path for '{descriptor.id}', using portable engine"
            )

        try:
            return await self._start_loader(self._fallback_factory, descriptor)
        except EngineError as e:
            failures[LoaderType.PORTABLE.value] = e
            logger.error(f"All embedding engines failed for '{descriptor.id}'")
            raise EngineError(
                f"No usable embedding engine for model '{descriptor.id}'",
                failures=failures,
            ) from e

    async def _start_loader(
        self, factory: LoaderFactory, descriptor: ModelDescriptor
    ) -> EngineSession:
        loader = factory()
        engine = loader.loader_type.value

        if not loader.is_available():
            raise LoadError(f"{engine} runtime is not available", engine=engine)

        try:
            await loader.initialize(descriptor)
        except EngineError:
            raise
        except Exception as e:
            raise LoadError(f"{engine} engine failed to start: {e}", engine=engine) from e

        return EngineSession(loader.loader_type, descriptor, loader)

    async def _dispose(self) -> None:
        session = self._session
        if session is None:
            self._state = EngineState.UNINITIALIZED
            return

        self._state = EngineState.DISPOSING
        try:
            await session.loader.dispose()
            logger.info(f"Disposed embedding engine {session.loader_type.value}")
        finally:
            self._session = None
            self._state = EngineState.UNINITIALIZED


# Module-level singleton for convenience
_default_manager: EmbeddingEngineManager | None = None


def get_engine_manager() -> EmbeddingEngineManager:
    """Get or create the process-wide engine manager."""
    global _default_manager
    if _default_manager is None:
        _default_manager = EmbeddingEngineManager()
    return _default_manager


def reset_engine_manager() -> None:
    """Forget the process-wide manager without disposing it.

    Call ``await get_engine_manager().dispose()`` first to release the
    session.
    """
    global _default_manager
    _default_manager = None


__all__ = [
    "EngineStrategy",
    "EngineState",
    "EngineSession",
    "EngineConfig",
    "EmbeddingResult",
    "EngineDetection",
    "EmbeddingEngineManager",
    "LoaderFactory",
    "get_engine_manager",
    "reset_engine_manager",
]
