"""Model catalog: descriptors and resource requirements of known models.

Example:
    >>> from embedcore.catalog import DEFAULT_CATALOG, ModelCategory
    >>> [d.id for d in DEFAULT_CATALOG.list_by_category(ModelCategory.EMBEDDING)]
    ['nomic-embed', 'all-minilm', 'all-mpnet']
"""

from .lib import (
    DEFAULT_CATALOG,
    DEFAULT_MODEL,
    DEFAULT_MODEL_ID,
    KnownModel,
    ModelCatalog,
    ModelCategory,
    ModelDescriptor,
    ResourceRequirement,
    Tier,
    get_model,
    get_model_descriptor,
    list_models,
)

__all__ = [
    "ModelCategory",
    "Tier",
    "ModelDescriptor",
    "ResourceRequirement",
    "KnownModel",
    "ModelCatalog",
    "DEFAULT_CATALOG",
    "DEFAULT_MODEL",
    "DEFAULT_MODEL_ID",
    "get_model",
    "list_models",
    "get_model_descriptor",
]
