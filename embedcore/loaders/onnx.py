"""Native embedding loader backed by ONNX Runtime.

Runs an exported transformer encoder from a local directory. The directory
must contain the tokenizer files and either ``model.onnx`` or
``onnx/model.onnx`` (the layout written by ``optimum-cli export onnx``).

The loader tries accelerated execution providers first and drops
back to the CPU provider if the accelerated session cannot be created.
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
from pathlib import Path
from typing import Any

import numpy as np

from embedcore.catalog import ModelDescriptor
from embedcore.config import EnvVar, get_environment
from embedcore.errors import InferenceError, LoadError

from .base import LoaderType, ModelLoader

logger = logging.getLogger(__name__)

CPU_PROVIDER = "CPUExecutionProvider"

# Tried in order when acceleration is allowed
ACCELERATED_PROVIDERS = (
    "TensorrtExecutionProvider",
    "CUDAExecutionProvider",
    "ROCMExecutionProvider",
    "DmlExecutionProvider",
    "CoreMLExecutionProvider",
)

MODEL_FILE_CANDIDATES = ("model.onnx", "onnx/model.onnx")


def resolve_model_file(path: Path) -> Path:
    """Find the ONNX graph for a local model path.

    Args:
        path: An ``.onnx`` file or a directory containing one.

    Raises:
        LoadError: If no model file exists.
    """
    if path.is_file() and path.suffix == ".onnx":
        return path
    for candidate in MODEL_FILE_CANDIDATES:
        model_file = path / candidate
        if model_file.is_file():
            return model_file
    raise LoadError(
        f"No ONNX model found in {path} (looked for {', '.join(MODEL_FILE_CANDIDATES)})",
        engine=LoaderType.NATIVE.value,
    )


def mean_pool(hidden: np.ndarray, attention_mask: np.ndarray) -> np.ndarray:
    """Average token states over the attention mask.

    Args:
        hidden: Array of shape (batch, tokens, dim).
        attention_mask: Array of shape (batch, tokens).

    Returns:
        Array of shape (batch, dim).
    """
    mask = attention_mask[..., np.newaxis].astype(np.float32)
    summed = (hidden * mask).sum(axis=1)
    counts = np.clip(mask.sum(axis=1), 1e-9, None)
    return summed / counts


class OnnxLoader(ModelLoader):
    """Native ONNX Runtime engine.

    Requires ``descriptor.local_path`` to point at an exported model.

    Example:
        >>> loader = OnnxLoader()
        >>> descriptor = replace(get_model("all-minilm"), local_path=Path("models/minilm"))
        >>> await loader.initialize(descriptor)
        >>> loader.providers
        ['CUDAExecutionProvider', 'CPUExecutionProvider']
    """

    loader_type = LoaderType.NATIVE

    def __init__(self, use_gpu: bool | None = None):
        """Initialize the loader.

        Args:
            use_gpu: True to require trying acceleration, False to force CPU,
                None to use acceleration when a provider is available.
        """
        super().__init__()
        self._use_gpu = get_environment(EnvVar.EMBEDDING_USE_GPU, override=use_gpu)
        self._session: Any = None
        self._tokenizer: Any = None
        self.providers: list[str] = []

    def is_available(self) -> bool:
        return all(
            importlib.util.find_spec(module) is not None
            for module in ("onnxruntime", "transformers")
        )

    async def _load(self, descriptor: ModelDescriptor) -> None:
        if descriptor.local_path is None:
            raise LoadError(
                f"Model '{descriptor.id}' has no local path for the ONNX engine",
                engine=self.loader_type.value,
            )

        model_file = resolve_model_file(Path(descriptor.local_path))
        try:
            self._session, self._tokenizer = await asyncio.to_thread(
                self._build, model_file
            )
        except Exception as e:
            raise LoadError(
                f"Failed to load ONNX model from {model_file}: {e}",
                engine=self.loader_type.value,
            ) from e

    def _build(self, model_file: Path) -> tuple[Any, Any]:
        import onnxruntime as ort
        from transformers import AutoTokenizer

        # Tokenizer files sit in the model directory, next to or above onnx/
        tokenizer_dir = model_file.parent
        if tokenizer_dir.name == "onnx":
            tokenizer_dir = tokenizer_dir.parent
        tokenizer = AutoTokenizer.from_pretrained(str(tokenizer_dir))

        session = self._create_session(ort, model_file)
        self.providers = list(session.get_providers())
        logger.info(
            f"Loaded ONNX model {model_file} with providers {', '.join(self.providers)}"
        )
        return session, tokenizer

    def _create_session(self, ort: Any, model_file: Path) -> Any:
        """Create an inference session, preferring accelerated providers."""
        available = set(ort.get_available_providers())
        accelerated = [p for p in ACCELERATED_PROVIDERS if p in available]

        if self._use_gpu is False:
            accelerated = []
        elif self._use_gpu and not accelerated:
            logger.warning("GPU requested but no accelerated ONNX provider found, using CPU")

        if accelerated:
            try:
                return ort.InferenceSession(
                    str(model_file), providers=[*accelerated, CPU_PROVIDER]
                )
            except Exception as e:
                logger.warning(
                    f"Accelerated ONNX session failed ({e}), falling back to CPU"
                )

        return ort.InferenceSession(str(model_file), providers=[CPU_PROVIDER])

    async def _embed(self, text: str) -> np.ndarray:
        try:
            return await asyncio.to_thread(self._infer, text)
        except Exception as e:
            raise InferenceError(f"ONNX inference failed: {e}", engine=self.name) from e

    def _infer(self, text: str) -> np.ndarray:
        encoded = self._tokenizer(
            [text],
            padding=True,
            truncation=True,
            max_length=self._descriptor.max_length,
            return_tensors="np",
        )
        input_names = {node.name for node in self._session.get_inputs()}
        feeds = {
            name: np.asarray(encoded[name], dtype=np.int64)
            for name in encoded.keys()
            if name in input_names
        }
        if "token_type_ids" in input_names and "token_type_ids" not in feeds:
            feeds["token_type_ids"] = np.zeros_like(feeds["input_ids"])

        outputs = self._session.run(None, feeds)
        hidden = np.asarray(outputs[0], dtype=np.float32)

        # Some exports already pool, giving (batch, dim)
        if hidden.ndim == 3:
            pooled = mean_pool(hidden, np.asarray(encoded["attention_mask"]))
        else:
            pooled = hidden

        vector = pooled[0]
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector

    async def _release(self) -> None:
        self._session = None
        self._tokenizer = None
        self.providers = []


__all__ = [
    "OnnxLoader",
    "resolve_model_file",
    "mean_pool",
]
