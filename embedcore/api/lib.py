"""Public embedcore API.

Thin module-level functions over the process-wide engine manager, device
detector and catalog. Storage-facing callers use these instead of wiring the
components themselves.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from embedcore.catalog import DEFAULT_CATALOG, ModelCategory, ModelDescriptor
from embedcore.device import DeviceCapabilities
from embedcore.device import detect_device_capabilities as _detect_capabilities
from embedcore.engine import (
    EmbeddingResult,
    EngineConfig,
    EngineDetection,
    get_engine_manager,
)
from embedcore.recommend import ModelRecommender
from embedcore.search import (
    DEFAULT_LIMIT,
    DEFAULT_SEMANTIC_MIN_SIMILARITY,
    EmbeddingStorage,
    RecordMatch,
    SimilarityMatch,
    VectorLike,
    VectorSearch,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Engine Lifecycle
# =============================================================================


async def initialize_engine(
    config: EngineConfig | None = None, **options: Any
) -> ModelDescriptor:
    """Start the embedding engine.

    Args:
        config: Engine options. Built from keyword options when omitted.
        **options: EngineConfig fields (model_id, custom_descriptor,
            strategy, auto_select, model_path). Override fields of config
            when both are given.

    Returns:
        Descriptor of the loaded model.

    Raises:
        ValidationError: If the model is unknown or not an embedding model.
        EngineError: If no engine could load the model.
        StateError: If another transition is in progress.

    Example:
        >>> await initialize_engine(model_id="all-minilm", strategy="fallback-only")
    """
    if config is None:
        config = EngineConfig(**options)
    elif options:
        config = replace(config, **options)

    session = await get_engine_manager().initialize(config)
    return session.descriptor


async def generate_embedding(text: str) -> EmbeddingResult:
    """Embed text, starting the engine with defaults if needed.

    Raises:
        ValidationError: If text is empty.
        EngineError: If no engine could produce the embedding.
    """
    return await get_engine_manager().generate_embedding(text)


async def switch_model(model_id: str) -> ModelDescriptor:
    """Replace the loaded model.

    On failure the engine is left uninitialized.
    """
    session = await get_engine_manager().switch_model(model_id)
    return session.descriptor


def get_current_model() -> ModelDescriptor | None:
    """Descriptor of the loaded model, or None."""
    return get_engine_manager().current_model


async def dispose_engine() -> None:
    """Release the engine session. Safe to call when nothing is loaded."""
    await get_engine_manager().dispose()


def detect_engines() -> list[EngineDetection]:
    """Report which engines could run on this host."""
    return get_engine_manager().detect_engines()


# =============================================================================
# Models & Device
# =============================================================================


def list_models(category: ModelCategory | str | None = None) -> list[ModelDescriptor]:
    """List catalog models, optionally of one category."""
    if category is None:
        return DEFAULT_CATALOG.list_all()
    return DEFAULT_CATALOG.list_by_category(category)


def detect_device_capabilities() -> DeviceCapabilities:
    """Capabilities of this device, detected once per process."""
    return _detect_capabilities()


def recommend_model(
    category: ModelCategory | str | None = None,
) -> ModelDescriptor | None:
    """Best catalog model for this device, or None if nothing fits."""
    return ModelRecommender(DEFAULT_CATALOG).recommend(
        detect_device_capabilities(), category
    )


# =============================================================================
# Search
# =============================================================================


async def search_similar(
    storage: EmbeddingStorage,
    query_vector: VectorLike,
    limit: int = DEFAULT_LIMIT,
    min_similarity: float = 0.0,
) -> list[SimilarityMatch]:
    """Find stored embeddings most similar to a vector.

    See VectorSearch.search_similar.
    """
    return await VectorSearch(storage).search_similar(
        query_vector, limit=limit, min_similarity=min_similarity
    )


async def semantic_search(
    storage: EmbeddingStorage,
    query_text: str,
    limit: int = DEFAULT_LIMIT,
    min_similarity: float = DEFAULT_SEMANTIC_MIN_SIMILARITY,
) -> list[RecordMatch]:
    """Embed text with the current engine and find the closest records.

    See VectorSearch.semantic_search.
    """
    return await VectorSearch(storage, engine=get_engine_manager()).semantic_search(
        query_text, limit=limit, min_similarity=min_similarity
    )


__all__ = [
    "initialize_engine",
    "generate_embedding",
    "switch_model",
    "get_current_model",
    "dispose_engine",
    "detect_engines",
    "list_models",
    "detect_device_capabilities",
    "recommend_model",
    "search_similar",
    "semantic_search",
]
