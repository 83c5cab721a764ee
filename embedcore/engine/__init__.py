"""Embedding engine manager for embedcore.

Holds the process's single engine session and falls back from the native
ONNX engine to the portable sentence-transformers engine when needed.

Example:
    >>> from embedcore.engine import EngineConfig, get_engine_manager
    >>> manager = get_engine_manager()
    >>> await manager.initialize(EngineConfig(model_id="all-minilm"))
    >>> result = await manager.generate_embedding("dashboard with sidebar")
"""

from .lib import (
    EmbeddingEngineManager,
    EmbeddingResult,
    EngineConfig,
    EngineDetection,
    EngineSession,
    EngineState,
    EngineStrategy,
    LoaderFactory,
    get_engine_manager,
    reset_engine_manager,
)

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
