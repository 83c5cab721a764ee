"""Loader factory.

Maps a LoaderType to its implementation so callers can pick an engine by
type or by its string value. The runtime libraries themselves are only
imported when a loader is initialized.
"""

from .base import LoaderType, ModelLoader
from .onnx import OnnxLoader
from .sentence import SentenceTransformerLoader

LOADER_CLASSES: dict[LoaderType, type[ModelLoader]] = {
    LoaderType.NATIVE: OnnxLoader,
    LoaderType.PORTABLE: SentenceTransformerLoader,
}


def create_loader(loader_type: LoaderType | str, **kwargs) -> ModelLoader:
    """Create a loader of the given type.

    Args:
        loader_type: LoaderType member or its value ("onnx",
            "sentence-transformers").
        **kwargs: Additional arguments passed to the loader constructor.

    Returns:
        New, uninitialized ModelLoader.

    Raises:
        ValueError: If loader_type is unknown.

    Example:
        >>> loader = create_loader(LoaderType.PORTABLE, device="cpu")
        >>> loader.is_available()
        True
    """
    loader_cls = LOADER_CLASSES[LoaderType(loader_type)]
    return loader_cls(**kwargs)


__all__ = ["LOADER_CLASSES", "create_loader"]
