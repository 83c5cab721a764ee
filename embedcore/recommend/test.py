"""Tests for the model recommender."""

import logging

import pytest

from embedcore.catalog import (
    DEFAULT_CATALOG,
    ModelCatalog,
    ModelCategory,
    ModelDescriptor,
    ResourceRequirement,
    Tier,
)
from embedcore.device import GpuLevel, Platform
from embedcore.recommend import ModelRecommender


def _catalog(*entries: tuple[ModelDescriptor, ResourceRequirement | None]) -> ModelCatalog:
    return ModelCatalog(
        [d for d, _ in entries],
        {d.id: r for d, r in entries if r is not None},
    )


MODEL_M = ModelDescriptor(id="M", name="Model M", source="test/m", dimension=4)
REQ_M = ResourceRequirement(
    min_memory_gb=1, recommended_memory_gb=2, min_cpu_cores=1, tier=Tier.LOW
)


class TestCompatibility:
    """Tests for is_compatible."""

    @pytest.mark.unit
    def test_memory_below_minimum_is_incompatible_for_every_model(
        self, make_capabilities
    ):
        """Property: memory under the minimum always rules a model out."""
        recommender = ModelRecommender(DEFAULT_CATALOG)

        for descriptor in DEFAULT_CATALOG:
            requirement = DEFAULT_CATALOG.get_requirement(descriptor.id)
            for memory in (0.0, requirement.min_memory_gb / 2, requirement.min_memory_gb - 0.1):
                for cores in (1, 4, 64):
                    for gpu in GpuLevel:
                        for platform in Platform:
                            caps = make_capabilities(
                                memory_gb=memory,
                                cpu_cores=cores,
                                gpu_level=gpu,
                                platform=platform,
                            )
                            assert not recommender.is_compatible(descriptor.id, caps)

    @pytest.mark.unit
    def test_cpu_below_minimum(self, make_capabilities):
        recommender = ModelRecommender()
        caps = make_capabilities(memory_gb=32, cpu_cores=2)
        assert recommender.is_compatible("all-minilm", caps) is True
        assert recommender.is_compatible("all-mpnet", caps) is False

    @pytest.mark.unit
    def test_gpu_requirements(self, make_capabilities):
        gpu_model = ModelDescriptor(id="g", name="G", source="t/g", dimension=8)
        advanced_model = ModelDescriptor(id="a", name="A", source="t/a", dimension=8)
        catalog = _catalog(
            (gpu_model, ResourceRequirement(1, 1, 1, requires_gpu=True)),
            (advanced_model, ResourceRequirement(1, 1, 1, requires_advanced_gpu=True)),
        )
        recommender = ModelRecommender(catalog)

        no_gpu = make_capabilities(gpu_level=GpuLevel.NONE)
        basic = make_capabilities(gpu_level=GpuLevel.BASIC)
        advanced = make_capabilities(gpu_level=GpuLevel.ADVANCED)

        assert recommender.is_compatible("g", no_gpu) is False
        assert recommender.is_compatible("g", basic) is True
        assert recommender.is_compatible("a", basic) is False
        assert recommender.is_compatible("a", advanced) is True

    @pytest.mark.unit
    def test_missing_requirements_are_compatible_with_warning(
        self, make_capabilities, caplog
    ):
        catalog = _catalog((MODEL_M, None))
        recommender = ModelRecommender(catalog)

        with caplog.at_level(logging.WARNING):
            assert recommender.is_compatible("M", make_capabilities(memory_gb=0.5))

        assert "No requirements found" in caplog.text
        assert recommender.score("M", make_capabilities()) == 0


class TestScoring:
    """Tests for score."""

    @pytest.mark.unit
    def test_exact_tier_match(self, make_capabilities):
        # medium device (3 + 3 + 0), medium model needing 4GB / 4 cores
        caps = make_capabilities(memory_gb=16, cpu_cores=8)
        assert caps.tier == Tier.MEDIUM
        assert ModelRecommender().score("all-mpnet", caps) == 50 + 25 + 12

    @pytest.mark.unit
    def test_lower_tier_model_scores_less(self, make_capabilities):
        caps = make_capabilities(memory_gb=16, cpu_cores=8)
        assert ModelRecommender().score("all-minilm", caps) == 30 + 25 + 15

    @pytest.mark.unit
    def test_two_tiers_below_and_gpu_bonus(self, make_capabilities):
        caps = make_capabilities(memory_gb=16, cpu_cores=8, gpu_level=GpuLevel.ADVANCED)
        assert caps.tier == Tier.HIGH
        assert ModelRecommender().score("all-minilm", caps) == 20 + 25 + 15 + 10

    @pytest.mark.unit
    def test_model_above_device_tier_gets_no_tier_points(self, make_capabilities):
        caps = make_capabilities(memory_gb=4, cpu_cores=4, tier=Tier.LOW)
        assert ModelRecommender().score("all-mpnet", caps) == 0 + 0 + 0

    @pytest.mark.unit
    def test_headroom_is_partial_below_cap(self, make_capabilities):
        # low device: 2GB / 2 cores; all-minilm needs 1GB / 1 core
        caps = make_capabilities(memory_gb=2, cpu_cores=2)
        assert caps.tier == Tier.LOW
        assert ModelRecommender().score("all-minilm", caps) == 50 + 5 + 3

    @pytest.mark.unit
    def test_incompatible_scores_zero(self, make_capabilities):
        caps = make_capabilities(memory_gb=1, cpu_cores=1)
        assert ModelRecommender().score("phi-3-mini", caps) == 0


class TestRecommend:
    """Tests for rank and recommend."""

    @pytest.mark.unit
    def test_end_to_end_single_model(self, make_capabilities):
        recommender = ModelRecommender(_catalog((MODEL_M, REQ_M)))
        caps = make_capabilities(memory_gb=8, cpu_cores=8)

        assert recommender.is_compatible("M", caps) is True
        assert recommender.recommend(caps) == MODEL_M

    @pytest.mark.unit
    def test_low_end_device_gets_small_model(self, make_capabilities):
        caps = make_capabilities(memory_gb=2, cpu_cores=2)
        best = ModelRecommender().recommend(caps, ModelCategory.EMBEDDING)
        assert best.id == "all-minilm"

    @pytest.mark.unit
    def test_mid_range_device_gets_matching_tier(self, make_capabilities):
        caps = make_capabilities(memory_gb=16, cpu_cores=8)
        best = ModelRecommender().recommend(caps, "embedding")
        assert best.id == "all-mpnet"

    @pytest.mark.unit
    def test_ties_keep_catalog_order(self, make_capabilities):
        caps = make_capabilities(memory_gb=16, cpu_cores=8)
        ranked = ModelRecommender().rank(caps, ModelCategory.EMBEDDING)

        assert [s.descriptor.id for s in ranked] == [
            "all-mpnet",
            "nomic-embed",
            "all-minilm",
        ]
        assert ranked[1].score == ranked[2].score

    @pytest.mark.unit
    def test_identical_models_first_wins(self, make_capabilities):
        twin = ModelDescriptor(id="M2", name="Twin", source="test/m2", dimension=4)
        recommender = ModelRecommender(_catalog((MODEL_M, REQ_M), (twin, REQ_M)))
        assert recommender.recommend(make_capabilities()).id == "M"

    @pytest.mark.unit
    def test_rank_is_non_increasing(self, make_capabilities):
        caps = make_capabilities(memory_gb=12, cpu_cores=6, gpu_level=GpuLevel.BASIC)
        scores = [s.score for s in ModelRecommender().rank(caps)]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.unit
    def test_category_filter(self, make_capabilities):
        caps = make_capabilities(memory_gb=16, cpu_cores=8)
        ranked = ModelRecommender().rank(caps, ModelCategory.GENERATIVE)
        assert {s.descriptor.id for s in ranked} == {"phi-3-mini", "phi-2"}

    @pytest.mark.unit
    def test_nothing_compatible_returns_none(self, make_capabilities):
        caps = make_capabilities(memory_gb=0.5, cpu_cores=1)
        assert ModelRecommender().recommend(caps) is None

    @pytest.mark.unit
    def test_has_recommended_resources(self, make_capabilities):
        recommender = ModelRecommender()
        assert recommender.has_recommended_resources("all-mpnet", make_capabilities(memory_gb=8))
        assert not recommender.has_recommended_resources("all-mpnet", make_capabilities(memory_gb=6))
        assert not recommender.has_recommended_resources("unknown", make_capabilities())
