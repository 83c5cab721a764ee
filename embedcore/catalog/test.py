"""Tests for the model catalog."""

from pathlib import Path

import pytest

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


class TestModelDescriptor:
    """Tests for ModelDescriptor dataclass."""

    @pytest.mark.unit
    def test_descriptor_creation(self):
        """Test creating a ModelDescriptor with defaults."""
        descriptor = ModelDescriptor(
            id="test-model", name="Test", source="org/test", dimension=512
        )
        assert descriptor.category == ModelCategory.EMBEDDING
        assert descriptor.is_embedding
        assert not descriptor.has_local_path
        assert descriptor.quantized is False

    @pytest.mark.unit
    def test_descriptor_is_immutable(self):
        """Descriptors cannot be modified after creation."""
        descriptor = DEFAULT_MODEL.descriptor
        with pytest.raises(AttributeError):
            descriptor.dimension = 1  # type: ignore[misc]

    @pytest.mark.unit
    def test_local_path(self, tmp_path):
        """has_local_path reflects local_path."""
        descriptor = ModelDescriptor(
            id="onnx", name="ONNX", source="org/onnx", dimension=4,
            local_path=tmp_path,
        )
        assert descriptor.has_local_path
        assert isinstance(descriptor.local_path, Path)

    @pytest.mark.unit
    @pytest.mark.parametrize("dimension", [0, -3])
    def test_non_positive_dimension_rejected(self, dimension):
        """Dimension must be a positive integer."""
        with pytest.raises(ValueError, match="dimension must be positive"):
            ModelDescriptor(id="bad", name="Bad", source="org/bad", dimension=dimension)


class TestTier:
    """Tests for tier ordering."""

    @pytest.mark.unit
    def test_rank_order(self):
        """Tiers rank low < medium < high."""
        assert Tier.LOW.rank < Tier.MEDIUM.rank < Tier.HIGH.rank

    @pytest.mark.unit
    def test_from_string(self):
        """Tiers parse from their string value."""
        assert Tier("high") is Tier.HIGH


class TestKnownModel:
    """Tests for the built-in registry."""

    @pytest.mark.unit
    def test_every_model_has_requirements(self):
        """Each known model ships with resource requirements."""
        for model in KnownModel:
            assert isinstance(model.requirement, ResourceRequirement)
            assert model.requirement.min_memory_gb <= model.requirement.recommended_memory_gb

    @pytest.mark.unit
    def test_minilm_metadata(self):
        """MiniLM matches its published dimension."""
        descriptor = KnownModel.ALL_MINILM.descriptor
        assert descriptor.id == "all-minilm"
        assert descriptor.source == "sentence-transformers/all-MiniLM-L6-v2"
        assert descriptor.dimension == 384

    @pytest.mark.unit
    def test_nomic_needs_remote_code(self):
        """Nomic embed loads custom modelling code."""
        assert KnownModel.NOMIC_EMBED.descriptor.trust_remote_code


class TestModelCatalog:
    """Tests for ModelCatalog lookups."""

    @pytest.mark.unit
    def test_get_known_and_unknown(self):
        """get returns the descriptor or None."""
        assert DEFAULT_CATALOG.get("phi-2").name == "Phi-2"
        assert DEFAULT_CATALOG.get("nonexistent") is None

    @pytest.mark.unit
    def test_list_all_preserves_order(self):
        """list_all follows registration order."""
        ids = [d.id for d in DEFAULT_CATALOG.list_all()]
        assert ids == [m.descriptor.id for m in KnownModel]

    @pytest.mark.unit
    def test_list_by_category(self):
        """list_by_category filters by category."""
        generative = DEFAULT_CATALOG.list_by_category(ModelCategory.GENERATIVE)
        assert [d.id for d in generative] == ["phi-3-mini", "phi-2"]
        embedding = DEFAULT_CATALOG.list_by_category("embedding")
        assert all(d.is_embedding for d in embedding)

    @pytest.mark.unit
    def test_duplicate_ids_rejected(self):
        """Two descriptors may not share an id."""
        d = ModelDescriptor(id="dup", name="Dup", source="org/dup", dimension=4)
        with pytest.raises(ValueError, match="Duplicate model id"):
            ModelCatalog([d, d])

    @pytest.mark.unit
    def test_mapping_is_read_only(self):
        """The internal mapping cannot be written."""
        with pytest.raises(TypeError):
            DEFAULT_CATALOG._entries["new"] = DEFAULT_MODEL.descriptor  # type: ignore[index]

    @pytest.mark.unit
    def test_requirement_lookup(self):
        """Requirements resolve by id and are absent for unknown models."""
        assert DEFAULT_CATALOG.get_requirement("all-minilm").min_memory_gb == 1
        assert DEFAULT_CATALOG.get_requirement("missing") is None

    @pytest.mark.unit
    def test_model_with_requirements(self):
        """get_model_with_requirements needs both halves."""
        pair = DEFAULT_CATALOG.get_model_with_requirements("phi-3-mini")
        assert pair is not None
        assert pair[1].tier == Tier.MEDIUM

        lonely = ModelDescriptor(id="lonely", name="L", source="org/l", dimension=4)
        assert ModelCatalog([lonely]).get_model_with_requirements("lonely") is None

    @pytest.mark.unit
    def test_container_protocol(self):
        """Catalog supports in, len and iteration."""
        assert "all-mpnet" in DEFAULT_CATALOG
        assert len(DEFAULT_CATALOG) == len(KnownModel)
        assert list(DEFAULT_CATALOG) == DEFAULT_CATALOG.list_all()


class TestModuleHelpers:
    """Tests for module-level helpers."""

    @pytest.mark.unit
    def test_default_model(self):
        """The default model is an embedding model in the catalog."""
        assert DEFAULT_MODEL_ID == "all-minilm"
        assert get_model(DEFAULT_MODEL_ID).is_embedding

    @pytest.mark.unit
    def test_list_models(self):
        """list_models filters by optional category."""
        assert len(list_models()) == len(KnownModel)
        assert {d.category for d in list_models("generative")} == {
            ModelCategory.GENERATIVE
        }

    @pytest.mark.unit
    def test_get_model_descriptor_resolution(self):
        """Descriptors resolve from id, enum, or descriptor."""
        custom = ModelDescriptor(id="custom", name="C", source="org/c", dimension=8)
        assert get_model_descriptor(custom) is custom
        assert get_model_descriptor(KnownModel.PHI_2).id == "phi-2"
        assert get_model_descriptor("all-minilm").dimension == 384

    @pytest.mark.unit
    def test_unknown_model_raises(self):
        """Unknown ids raise ValueError."""
        with pytest.raises(ValueError, match="Unknown model"):
            get_model_descriptor("nonexistent-model")
