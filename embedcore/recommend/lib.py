"""Model recommendation from device capabilities.

Filters the catalog down to models the device can run and ranks the rest
with a heuristic score: how well the model's tier fits the device tier, plus
capped bonuses for spare memory, spare CPU cores and an unused accelerator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from embedcore.catalog import (
    DEFAULT_CATALOG,
    ModelCatalog,
    ModelCategory,
    ModelDescriptor,
    ResourceRequirement,
)
from embedcore.device import DeviceCapabilities, GpuLevel

logger = logging.getLogger(__name__)

# Points by how many tiers the model sits below the device tier
TIER_MATCH_POINTS = {0: 50, 1: 30, 2: 20}

MEMORY_POINTS_PER_GB = 5
MEMORY_POINTS_CAP = 25
CPU_POINTS_PER_CORE = 3
CPU_POINTS_CAP = 15
UNUSED_GPU_POINTS = 10


@dataclass(frozen=True)
class ScoredModel:
    """A compatible model with its score for one device."""

    descriptor: ModelDescriptor
    score: float


class ModelRecommender:
    """Matches catalog models against device capabilities.

    Example:
        >>> recommender = ModelRecommender()
        >>> best = recommender.recommend(caps, ModelCategory.EMBEDDING)
        >>> best.id if best else None
        'all-minilm'
    """

    def __init__(self, catalog: ModelCatalog = DEFAULT_CATALOG):
        self.catalog = catalog

    def is_compatible(self, model_id: str, capabilities: DeviceCapabilities) -> bool:
        """Check whether a device meets a model's minimum requirements.

        Models without requirements are treated as compatible.
        """
        requirement = self.catalog.get_requirement(model_id)
        if requirement is None:
            logger.warning(
                f"No requirements found for model '{model_id}', assuming compatible"
            )
            return True
        return _meets(requirement, capabilities)

    def score(self, model_id: str, capabilities: DeviceCapabilities) -> float:
        """Score how well a model suits a device. Higher is better.

        Returns:
            0 for incompatible models and models without requirements.
        """
        requirement = self.catalog.get_requirement(model_id)
        if requirement is None or not _meets(requirement, capabilities):
            return 0

        tier_gap = capabilities.tier.rank - requirement.tier.rank
        score = TIER_MATCH_POINTS.get(tier_gap, 0)

        memory_headroom = capabilities.memory_gb - requirement.min_memory_gb
        score += min(memory_headroom * MEMORY_POINTS_PER_GB, MEMORY_POINTS_CAP)

        core_headroom = capabilities.cpu_cores - requirement.min_cpu_cores
        score += min(core_headroom * CPU_POINTS_PER_CORE, CPU_POINTS_CAP)

        if capabilities.gpu.available and not requirement.requires_gpu:
            score += UNUSED_GPU_POINTS

        return score

    def rank(
        self,
        capabilities: DeviceCapabilities,
        category: ModelCategory | str | None = None,
    ) -> list[ScoredModel]:
        """List compatible models, best first.

        Equal scores keep catalog order.
        """
        candidates = (
            self.catalog.list_all()
            if category is None
            else self.catalog.list_by_category(category)
        )
        scored = [
            ScoredModel(d, self.score(d.id, capabilities))
            for d in candidates
            if self.is_compatible(d.id, capabilities)
        ]
        # sorted() is stable, so ties stay in catalog order
        return sorted(scored, key=lambda s: s.score, reverse=True)

    def recommend(
        self,
        capabilities: DeviceCapabilities,
        category: ModelCategory | str | None = None,
    ) -> ModelDescriptor | None:
        """Pick the highest-scoring compatible model.

        Args:
            capabilities: Device to recommend for.
            category: Restrict to one model category.

        Returns:
            Best ModelDescriptor, or None if nothing is compatible.
        """
        ranked = self.rank(capabilities, category)
        if not ranked:
            logger.warning(
                f"No compatible models found (tier={capabilities.tier.value}, "
                f"category={category})"
            )
            return None

        best = ranked[0]
        logger.info(
            f"Recommended model '{best.descriptor.id}' for {capabilities.tier.value} "
            f"tier device (score={best.score:g})"
        )
        return best.descriptor

    def has_recommended_resources(
        self, model_id: str, capabilities: DeviceCapabilities
    ) -> bool:
        """Check whether the device has the model's recommended memory."""
        requirement = self.catalog.get_requirement(model_id)
        if requirement is None:
            return False
        return capabilities.memory_gb >= requirement.recommended_memory_gb


def _meets(requirement: ResourceRequirement, capabilities: DeviceCapabilities) -> bool:
    if capabilities.memory_gb < requirement.min_memory_gb:
        return False
    if capabilities.cpu_cores < requirement.min_cpu_cores:
        return False
    if requirement.requires_gpu and not capabilities.gpu.available:
        return False
    if requirement.requires_advanced_gpu and capabilities.gpu.level != GpuLevel.ADVANCED:
        return False
    return True


__all__ = [
    "ModelRecommender",
    "ScoredModel",
    "TIER_MATCH_POINTS",
]
