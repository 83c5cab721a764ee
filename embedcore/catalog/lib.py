"""Model catalog for embedding engines.

Provides a read-only registry of the models embedcore knows how to load,
together with the resources each model needs. The catalog is built once at
import time and never written afterwards, so it can be shared freely.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping


class ModelCategory(str, Enum):
    """What a model produces."""

    EMBEDDING = "embedding"
    GENERATIVE = "generative"


class Tier(str, Enum):
    """Coarse performance class shared by devices and model requirements."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Ordinal position (low=0, medium=1, high=2)."""
        return _TIER_ORDER.index(self)


_TIER_ORDER = (Tier.LOW, Tier.MEDIUM, Tier.HIGH)


@dataclass(frozen=True)
class ModelDescriptor:
    """Immutable metadata identifying a model.

    Attributes:
        id: Unique catalog identifier (e.g., "all-minilm").
        name: Human-readable display name.
        source: Hugging Face repository the weights are fetched from.
        dimension: Length of every vector the model produces.
        category: Embedding or generative model.
        quantized: Whether the weights are quantized.
        description: Short description for listings.
        max_length: Maximum token count fed to the model.
        local_path: Directory holding an exported ONNX model, if any.
        trust_remote_code: Whether loading requires the repository's own code.
    """

    id: str
    name: str
    source: str
    dimension: int
    category: ModelCategory = ModelCategory.EMBEDDING
    quantized: bool = False
    description: str = ""
    max_length: int = 512
    local_path: Path | None = None
    trust_remote_code: bool = False

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Model id must not be empty")
        if self.dimension <= 0:
            raise ValueError(
                f"Model dimension must be positive, got {self.dimension}"
            )

    @property
    def is_embedding(self) -> bool:
        """Check if model produces embeddings."""
        return self.category == ModelCategory.EMBEDDING

    @property
    def has_local_path(self) -> bool:
        """Check if an exported model directory is configured."""
        return self.local_path is not None


@dataclass(frozen=True)
class ResourceRequirement:
    """Resources a model needs to run on a device.

    Attributes:
        min_memory_gb: Memory below which the model cannot run.
        recommended_memory_gb: Memory for comfortable operation.
        min_cpu_cores: Fewest CPU cores the model can run on.
        requires_gpu: Whether an accelerator is mandatory.
        requires_advanced_gpu: Whether a full compute accelerator is mandatory.
        estimated_size_mb: Approximate download and in-memory size.
        tier: Device tier the model is sized for.
    """

    min_memory_gb: float
    recommended_memory_gb: float
    min_cpu_cores: int
    requires_gpu: bool = False
    requires_advanced_gpu: bool = False
    estimated_size_mb: int = 0
    tier: Tier = Tier.MEDIUM


class KnownModel(Enum):
    """Registry of built-in models with their requirements.

    Use .descriptor and .requirement to get the metadata.

    Example:
        >>> KnownModel.ALL_MINILM.descriptor.dimension
        384
    """

    PHI_3_MINI = (
        ModelDescriptor(
            id="phi-3-mini",
            name="Phi-3 Mini",
            source="microsoft/Phi-3-mini-4k-instruct",
            dimension=3072,
            category=ModelCategory.GENERATIVE,
            quantized=True,
            description="Small, efficient language model (4GB+ RAM, 4+ cores)",
            max_length=4096,
        ),
        ResourceRequirement(
            min_memory_gb=4,
            recommended_memory_gb=8,
            min_cpu_cores=4,
            estimated_size_mb=2300,
            tier=Tier.MEDIUM,
        ),
    )

    PHI_2 = (
        ModelDescriptor(
            id="phi-2",
            name="Phi-2",
            source="microsoft/phi-2",
            dimension=2560,
            category=ModelCategory.GENERATIVE,
            quantized=True,
            description="Compact language model (2GB+ RAM, 2+ cores)",
            max_length=2048,
        ),
        ResourceRequirement(
            min_memory_gb=2,
            recommended_memory_gb=4,
            min_cpu_cores=2,
            estimated_size_mb=1700,
            tier=Tier.LOW,
        ),
    )

    NOMIC_EMBED = (
        ModelDescriptor(
            id="nomic-embed",
            name="Nomic Embed Text",
            source="nomic-ai/nomic-embed-text-v1.5",
            dimension=768,
            quantized=True,
            description="High quality text embeddings (2GB+ RAM)",
            max_length=8192,
            trust_remote_code=True,
        ),
        ResourceRequirement(
            min_memory_gb=2,
            recommended_memory_gb=4,
            min_cpu_cores=2,
            estimated_size_mb=548,
            tier=Tier.LOW,
        ),
    )

    ALL_MINILM = (
        ModelDescriptor(
            id="all-minilm",
            name="All-MiniLM-L6",
            source="sentence-transformers/all-MiniLM-L6-v2",
            dimension=384,
            quantized=True,
            description="Fast and efficient embeddings, works on low-end devices",
            max_length=256,
        ),
        ResourceRequirement(
            min_memory_gb=1,
            recommended_memory_gb=2,
            min_cpu_cores=1,
            estimated_size_mb=90,
            tier=Tier.LOW,
        ),
    )

    ALL_MPNET = (
        ModelDescriptor(
            id="all-mpnet",
            name="All-MPNet Base",
            source="sentence-transformers/all-mpnet-base-v2",
            dimension=768,
            description="Higher quality general-purpose embeddings",
            max_length=384,
        ),
        ResourceRequirement(
            min_memory_gb=4,
            recommended_memory_gb=8,
            min_cpu_cores=4,
            estimated_size_mb=420,
            tier=Tier.MEDIUM,
        ),
    )

    @property
    def descriptor(self) -> ModelDescriptor:
        """Get the ModelDescriptor for this model."""
        return self.value[0]

    @property
    def requirement(self) -> ResourceRequirement:
        """Get the ResourceRequirement for this model."""
        return self.value[1]


class ModelCatalog:
    """Read-only mapping from model id to descriptor.

    Iteration follows registration order, which recommenders rely on to
    break score ties.

    Example:
        >>> catalog = ModelCatalog.from_known_models()
        >>> catalog.get("all-minilm").dimension
        384
        >>> [d.id for d in catalog.list_by_category(ModelCategory.GENERATIVE)]
        ['phi-3-mini', 'phi-2']
    """

    def __init__(
        self,
        descriptors: Iterable[ModelDescriptor],
        requirements: Mapping[str, ResourceRequirement] | None = None,
    ):
        """Build the catalog.

        Args:
            descriptors: Models in catalog order.
            requirements: Resource requirements keyed by model id.

        Raises:
            ValueError: If two descriptors share an id.
        """
        entries: dict[str, ModelDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.id in entries:
                raise ValueError(f"Duplicate model id: {descriptor.id}")
            entries[descriptor.id] = descriptor
        self._entries = MappingProxyType(entries)
        self._requirements = MappingProxyType(dict(requirements or {}))

    @classmethod
    def from_known_models(cls) -> ModelCatalog:
        """Build a catalog of every KnownModel."""
        return cls(
            [m.descriptor for m in KnownModel],
            {m.descriptor.id: m.requirement for m in KnownModel},
        )

    def get(self, model_id: str) -> ModelDescriptor | None:
        """Look up a model by id.

        Returns:
            ModelDescriptor if found, None otherwise.
        """
        return self._entries.get(model_id)

    def get_requirement(self, model_id: str) -> ResourceRequirement | None:
        """Look up the resource requirements of a model."""
        return self._requirements.get(model_id)

    def get_model_with_requirements(
        self, model_id: str
    ) -> tuple[ModelDescriptor, ResourceRequirement] | None:
        """Get a model and its requirements, or None if either is missing."""
        descriptor = self.get(model_id)
        requirement = self.get_requirement(model_id)
        if descriptor is None or requirement is None:
            return None
        return descriptor, requirement

    def list_all(self) -> list[ModelDescriptor]:
        """Get all models in catalog order."""
        return list(self._entries.values())

    def list_by_category(self, category: ModelCategory | str) -> list[ModelDescriptor]:
        """Get models of one category in catalog order."""
        category = ModelCategory(category)
        return [d for d in self._entries.values() if d.category == category]

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._entries

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


DEFAULT_CATALOG = ModelCatalog.from_known_models()

# Used when no model id, custom descriptor or recommendation applies
DEFAULT_MODEL = KnownModel.ALL_MINILM
DEFAULT_MODEL_ID = DEFAULT_MODEL.descriptor.id


def get_model(model_id: str) -> ModelDescriptor | None:
    """Look up a model in the default catalog."""
    return DEFAULT_CATALOG.get(model_id)


def list_models(category: ModelCategory | str | None = None) -> list[ModelDescriptor]:
    """List models in the default catalog, optionally by category."""
    if category is None:
        return DEFAULT_CATALOG.list_all()
    return DEFAULT_CATALOG.list_by_category(category)


def get_model_descriptor(
    model: str | KnownModel | ModelDescriptor,
    catalog: ModelCatalog = DEFAULT_CATALOG,
) -> ModelDescriptor:
    """Resolve a model reference to its ModelDescriptor.

    Args:
        model: Catalog id, KnownModel member, or ModelDescriptor.
        catalog: Catalog used for id lookups.

    Returns:
        Resolved ModelDescriptor.

    Raises:
        ValueError: If the id is not in the catalog.
    """
    if isinstance(model, ModelDescriptor):
        return model
    if isinstance(model, KnownModel):
        return model.descriptor
    found = catalog.get(model)
    if found is None:
        raise ValueError(f"Unknown model: {model}")
    return found


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
