"""Model loaders: interchangeable text-to-vector engines.

- OnnxLoader: native ONNX Runtime engine for locally exported models,
  accelerated when a GPU provider is available
- SentenceTransformerLoader: portable engine that downloads models on
  first use

Use `create_loader()` to pick one by type:
    >>> from embedcore.loaders import create_loader, LoaderType
    >>> loader = create_loader(LoaderType.PORTABLE)
"""

from .base import LoaderType, ModelLoader, ensure_dimension, validate_text
from .factory import create_loader
from .models import ModelManager, get_model_manager
from .onnx import OnnxLoader
from .sentence import SentenceTransformerLoader

__all__ = [
    # Base class
    "ModelLoader",
    "LoaderType",
    "validate_text",
    "ensure_dimension",
    # Implementations
    "OnnxLoader",
    "SentenceTransformerLoader",
    # Model storage
    "ModelManager",
    "get_model_manager",
    # Factory
    "create_loader",
]
