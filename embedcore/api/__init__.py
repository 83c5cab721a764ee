"""Public embedcore API as module-level functions.

Example:
    >>> from embedcore.api import generate_embedding, initialize_engine
    >>> await initialize_engine(model_id="all-minilm")
    >>> result = await generate_embedding("settings page with toggles")
"""

from .lib import (
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
