"""Portable embedding loader backed by sentence-transformers.

Runs anywhere PyTorch does. The model is downloaded into the models
directory on first use, so the first ``initialize`` for a model can be slow.
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from embedcore.catalog import ModelDescriptor
from embedcore.config import EnvVar, get_environment
from embedcore.errors import InferenceError, LoadError

from .base import LoaderType, ModelLoader
from .models import ModelManager, get_model_manager

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)


class SentenceTransformerLoader(ModelLoader):
    """Portable sentence-transformers engine.

    Example:
        >>> loader = SentenceTransformerLoader()
        >>> await loader.initialize(get_model("all-minilm"))
        >>> vector = await loader.generate_embedding("login form")
        >>> vector.shape
        (384,)
    """

    loader_type = LoaderType.PORTABLE

    def __init__(
        self,
        models_dir: Path | str | None = None,
        device: str | None = None,
        auto_download: bool | None = None,
        model_manager: ModelManager | None = None,
    ):
        """Initialize the loader.

        Args:
            models_dir: Override path for model storage.
            device: Device for computation ('cuda', 'cpu', or None for auto).
            auto_download: Download models that are not cached yet.
            model_manager: Manager to use instead of the process-wide one.
        """
        super().__init__()
        if model_manager is None:
            model_manager = (
                ModelManager(models_dir) if models_dir is not None else get_model_manager()
            )
        self._model_manager = model_manager
        self._device = get_environment(EnvVar.EMBEDDING_DEVICE, override=device)
        self._auto_download = get_environment(
            EnvVar.EMBEDDING_AUTO_DOWNLOAD, override=auto_download
        )
        self._model: SentenceTransformer | None = None

    def is_available(self) -> bool:
        return importlib.util.find_spec("sentence_transformers") is not None

    async def _load(self, descriptor: ModelDescriptor) -> None:
        try:
            self._model = await asyncio.to_thread(
                self._model_manager.load,
                descriptor,
                device=self._device,
                auto_download=self._auto_download,
            )
        except Exception as e:
            raise LoadError(
                f"Failed to load model '{descriptor.id}': {e}",
                engine=self.loader_type.value,
            ) from e

    async def _embed(self, text: str) -> np.ndarray:
        try:
            vectors = await asyncio.to_thread(
                self._model.encode,
                [text],
                normalize_embeddings=True,
                show_progress_bar=False,
            )
        except Exception as e:
            raise InferenceError(
                f"Embedding failed: {e}", engine=self.name
            ) from e
        return np.asarray(vectors, dtype=np.float32)[0]

    async def _release(self) -> None:
        self._model_manager.unload(self._descriptor, device=self._device)
        self._model = None


__all__ = ["SentenceTransformerLoader"]
