"""embedcore: on-device text embeddings with engine fallback and similarity search."""

from embedcore.api import (
    detect_device_capabilities,
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
from embedcore.engine import EmbeddingResult, EngineConfig, EngineStrategy
from embedcore.errors import (
    DataConsistencyWarning,
    EmbedCoreError,
    EngineError,
    StateError,
    ValidationError,
)

__all__ = [
    # Public contract
    "initialize_engine",
    "generate_embedding",
    "switch_model",
    "get_current_model",
    "dispose_engine",
    "list_models",
    "detect_device_capabilities",
    "recommend_model",
    "search_similar",
    "semantic_search",
    # Types
    "ModelDescriptor",
    "ModelCategory",
    "EngineConfig",
    "EngineStrategy",
    "EmbeddingResult",
    # Errors
    "EmbedCoreError",
    "ValidationError",
    "EngineError",
    "StateError",
    "DataConsistencyWarning",
]
