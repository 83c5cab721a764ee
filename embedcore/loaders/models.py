"""Download cache for sentence-transformers models.

Models are fetched from the Hugging Face hub on first use and saved under
the models directory (``~/.embedcore/models`` by default), one folder per
source repository with ``/`` replaced by ``--``.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from embedcore.catalog import ModelDescriptor, get_model_descriptor
from embedcore.config import get_models_dir

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)


class ModelManager:
    """Manager for locally cached sentence-transformers models.

    Handles model downloading, caching, and loading with a single storage
    location.

    Example:
        >>> manager = ModelManager()
        >>> model = manager.load("all-minilm")
        >>> embeddings = model.encode(["hello world"])
    """

    def __init__(self, models_dir: Path | str | None = None):
        """Initialize model manager.

        Args:
            models_dir: Override path for model storage. Uses get_models_dir()
                if not provided.
        """
        self._models_dir = get_models_dir(models_dir)
        self._loaded_models: dict[str, SentenceTransformer] = {}

    @property
    def models_dir(self) -> Path:
        """Get the models storage directory."""
        return self._models_dir

    def ensure_dir(self) -> None:
        """Ensure models directory exists."""
        self._models_dir.mkdir(parents=True, exist_ok=True)

    def get_model_path(self, model: str | ModelDescriptor) -> Path:
        """Get local storage path for a model.

        Args:
            model: Catalog id or ModelDescriptor.

        Returns:
            Path where model is/will be stored.
        """
        descriptor = get_model_descriptor(model)
        return self._models_dir / descriptor.source.replace("/", "--")

    def is_downloaded(self, model: str | ModelDescriptor) -> bool:
        """Check if a model is already downloaded."""
        # config.json is always written by SentenceTransformer.save
        return (self.get_model_path(model) / "config.json").exists()

    def list_downloaded(self) -> list[str]:
        """List the source repositories of all downloaded models."""
        if not self._models_dir.exists():
            return []

        downloaded = []
        for path in sorted(self._models_dir.iterdir()):
            if path.is_dir() and (path / "config.json").exists():
                downloaded.append(path.name.replace("--", "/"))
        return downloaded

    def download(self, model: str | ModelDescriptor, force: bool = False) -> Path:
        """Download a model to the models directory.

        Args:
            model: Catalog id or ModelDescriptor.
            force: Re-download even if already exists.

        Returns:
            Path to downloaded model.

        Raises:
            ImportError: If sentence-transformers not installed.
        """
        descriptor = get_model_descriptor(model)
        model_path = self.get_model_path(descriptor)

        if not force and self.is_downloaded(descriptor):
            logger.info(f"Model '{descriptor.id}' already exists at {model_path}")
            return model_path

        self.ensure_dir()
        logger.info(
            f"Downloading model '{descriptor.id}' ({descriptor.source}) to {model_path}, "
            "this may take a while"
        )

        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ImportError(
                "sentence-transformers required for model download. "
                "Install with: pip install sentence-transformers"
            ) from e

        st_model = SentenceTransformer(
            descriptor.source,
            cache_folder=str(self._models_dir),
            trust_remote_code=descriptor.trust_remote_code,
        )
        st_model.save(str(model_path))
        logger.info(f"Model '{descriptor.id}' downloaded successfully")
        return model_path

    def load(
        self,
        model: str | ModelDescriptor,
        device: str | None = None,
        auto_download: bool = True,
    ) -> SentenceTransformer:
        """Load a model for inference, downloading it first if needed.

        Args:
            model: Catalog id or ModelDescriptor.
            device: Device for inference ('cuda', 'cpu', or None for auto).
            auto_download: Download model if not present.

        Returns:
            Loaded SentenceTransformer model.

        Raises:
            ImportError: If sentence-transformers not installed.
            FileNotFoundError: If model not found and auto_download=False.
        """
        descriptor = get_model_descriptor(model)
        cache_key = f"{descriptor.source}:{device}"
        if cache_key in self._loaded_models:
            return self._loaded_models[cache_key]

        model_path = self.get_model_path(descriptor)
        if not self.is_downloaded(descriptor):
            if auto_download:
                self.download(descriptor)
            else:
                raise FileNotFoundError(
                    f"Model '{descriptor.id}' not found at {model_path}. "
                    f"Run `python . download {descriptor.id}` first."
                )

        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ImportError(
                "sentence-transformers required for model loading. "
                "Install with: pip install sentence-transformers"
            ) from e

        st_model = SentenceTransformer(
            str(model_path),
            device=device,
            trust_remote_code=descriptor.trust_remote_code,
        )
        self._loaded_models[cache_key] = st_model
        logger.info(f"Loaded model '{descriptor.id}' on device '{st_model.device}'")
        return st_model

    def unload(self, model: str | ModelDescriptor, device: str | None = None) -> bool:
        """Drop a loaded model from the in-process cache.

        Returns:
            True if the model was loaded.
        """
        descriptor = get_model_descriptor(model)
        removed = self._loaded_models.pop(f"{descriptor.source}:{device}", None)
        if removed is not None:
            logger.debug(f"Unloaded model '{descriptor.id}'")
        return removed is not None

    def delete(self, model: str | ModelDescriptor) -> bool:
        """Delete a downloaded model.

        Returns:
            True if deleted, False if not found.
        """
        descriptor = get_model_descriptor(model)
        model_path = self.get_model_path(descriptor)
        if not model_path.exists():
            return False

        shutil.rmtree(model_path)
        prefix = f"{descriptor.source}:"
        for key in [k for k in self._loaded_models if k.startswith(prefix)]:
            del self._loaded_models[key]
        logger.info(f"Deleted model '{descriptor.id}' from {model_path}")
        return True


# Module-level singleton for convenience
_default_manager: ModelManager | None = None


def get_model_manager(models_dir: Path | str | None = None) -> ModelManager:
    """Get or create the default model manager.

    Args:
        models_dir: Override models directory. Only used on first call.
    """
    global _default_manager
    if _default_manager is None:
        _default_manager = ModelManager(models_dir)
    return _default_manager


__all__ = [
    "ModelManager",
    "get_model_manager",
]
