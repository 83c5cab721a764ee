"""Tests for cosine similarity and vector search."""

import logging
from types import SimpleNamespace

import numpy as np
import pytest

from embedcore.catalog import ModelDescriptor
from embedcore.engine import EmbeddingEngineManager, EngineConfig, get_engine_manager
from embedcore.errors import DataConsistencyWarning, ValidationError
from embedcore.search import (
    InMemoryStorage,
    RecordMatch,
    SimilarityMatch,
    StoredEmbedding,
    VectorSearch,
    cosine_similarity,
)


class StubEngine:
    """Engine returning a fixed query vector."""

    def __init__(self, vector):
        self.vector = np.asarray(vector, dtype=np.float32)
        self.queries: list[str] = []

    async def generate_embedding(self, text):
        self.queries.append(text)
        return SimpleNamespace(vector=self.vector, dimension=len(self.vector))


def _storage(*items, records=None) -> InMemoryStorage:
    """Build storage from (id, record_id, vector) tuples."""
    embeddings = [StoredEmbedding(id_, record_id, vector) for id_, record_id, vector in items]
    if records is None:
        records = {record_id: {"id": record_id} for _, record_id, _ in items}
    return InMemoryStorage(embeddings, records)


# =============================================================================
# Cosine similarity
# =============================================================================


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    @pytest.mark.unit
    def test_self_similarity_is_one(self):
        rng = np.random.default_rng(7)
        for dim in (1, 3, 384, 1024):
            for _ in range(5):
                v = rng.standard_normal(dim)
                assert cosine_similarity(v, v) == pytest.approx(1.0, abs=1e-6)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "vector", [[1e-300, 2e-300, 3e-300], [1e200, -3e200, 2e200], [5.0]]
    )
    def test_self_similarity_extreme_magnitudes(self, vector):
        assert cosine_similarity(vector, vector) == pytest.approx(1.0, abs=1e-6)

    @pytest.mark.unit
    def test_orthogonal(self):
        assert cosine_similarity([1, 0, 0], [0, 1, 0]) == pytest.approx(0.0, abs=1e-6)

    @pytest.mark.unit
    def test_antiparallel(self):
        assert cosine_similarity([1, 1, 1], [-1, -1, -1]) == pytest.approx(-1.0, abs=1e-6)

    @pytest.mark.unit
    def test_scale_invariant(self):
        a = [0.2, 0.5, -0.3]
        assert cosine_similarity(a, [x * 1000 for x in a]) == pytest.approx(1.0, abs=1e-6)

    @pytest.mark.unit
    def test_result_is_clamped(self):
        rng = np.random.default_rng(11)
        for _ in range(50):
            v = rng.standard_normal(64)
            assert -1.0 <= cosine_similarity(v, v) <= 1.0
            assert -1.0 <= cosine_similarity(v, -v) <= 1.0

    @pytest.mark.unit
    def test_accepts_numpy_and_lists(self):
        assert cosine_similarity(np.array([3.0, 4.0]), [3, 4]) == pytest.approx(1.0)

    @pytest.mark.unit
    def test_zero_vector_errors(self):
        with pytest.raises(ValidationError, match="zero norm"):
            cosine_similarity([0, 0, 0], [0, 0, 0])
        with pytest.raises(ValidationError, match="b has zero norm"):
            cosine_similarity([1, 0, 0], [0, 0, 0])

    @pytest.mark.unit
    def test_empty_vector_errors(self):
        with pytest.raises(ValidationError, match="must not be empty"):
            cosine_similarity([], [])

    @pytest.mark.unit
    def test_length_mismatch_errors(self):
        with pytest.raises(ValidationError, match="length mismatch"):
            cosine_similarity([1, 0, 0], [1, 0])

    @pytest.mark.unit
    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_errors(self, bad):
        with pytest.raises(ValidationError, match="NaN or infinite"):
            cosine_similarity([1.0, bad], [1.0, 1.0])
        with pytest.raises(ValidationError, match="NaN or infinite"):
            cosine_similarity([1.0, 1.0], [1.0, bad])

    @pytest.mark.unit
    def test_non_numeric_errors(self):
        with pytest.raises(ValidationError, match="only numbers"):
            cosine_similarity(["a", "b"], [1, 2])

    @pytest.mark.unit
    def test_errors_are_distinct(self):
        messages = set()
        for a, b in (([], [1]), ([1, 2], [1]), ([1, float("nan")], [1, 1]), ([0, 0], [1, 1])):
            with pytest.raises(ValidationError) as exc_info:
                cosine_similarity(a, b)
            messages.add(str(exc_info.value))
        assert len(messages) == 4


# =============================================================================
# search_similar
# =============================================================================


class TestSearchSimilar:
    """Tests for VectorSearch.search_similar."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_storage_returns_empty_list(self):
        assert await VectorSearch(InMemoryStorage()).search_similar([1, 0, 0]) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_threshold_and_limit_scenario(self):
        storage = _storage(
            ("e1", "r1", [0.9, 0.1, 0, 0]),
            ("e2", "r2", [0, 0, 0.9, 0.1]),
            ("e3", "r3", [0.85, 0.15, 0, 0]),
        )

        results = await VectorSearch(storage).search_similar(
            [1, 0, 0, 0], limit=2, min_similarity=0.8
        )

        assert [r.id for r in results] == ["e1", "e3"]
        assert results[0].similarity > results[1].similarity
        assert all(isinstance(r, SimilarityMatch) for r in results)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_result_properties(self):
        rng = np.random.default_rng(3)
        storage = _storage(
            *((f"e{i}", f"r{i % 7}", rng.standard_normal(8)) for i in range(60))
        )
        search = VectorSearch(storage)
        query = rng.standard_normal(8)

        for limit in (1, 5, 100):
            for min_similarity in (0.0, 0.2, 0.5, 0.9):
                results = await search.search_similar(query, limit, min_similarity)
                scores = [r.similarity for r in results]
                assert len(results) <= limit
                assert all(s >= min_similarity for s in scores)
                assert scores == sorted(scores, reverse=True)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ties_keep_storage_order(self):
        storage = _storage(
            ("b", "r1", [1, 1]),
            ("a", "r2", [2, 2]),
            ("c", "r3", [3, 3]),
        )
        results = await VectorSearch(storage).search_similar([1, 1], limit=3)
        assert [r.id for r in results] == ["b", "a", "c"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_incomparable_vectors_score_zero(self):
        storage = _storage(
            ("short", "r1", [1, 0]),
            ("nan", "r2", [float("nan"), 0, 0]),
            ("zero", "r3", [0, 0, 0]),
            ("ok", "r4", [1, 0, 0]),
        )
        search = VectorSearch(storage)

        everything = await search.search_similar([1, 0, 0], limit=10, min_similarity=0.0)
        positive = await search.search_similar([1, 0, 0], limit=10, min_similarity=0.01)

        assert [r.id for r in everything] == ["ok", "short", "nan", "zero"]
        assert [r.similarity for r in everything[1:]] == [0.0, 0.0, 0.0]
        assert [r.id for r in positive] == ["ok"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_negative_similarity_filtered_at_zero(self):
        storage = _storage(("opposite", "r1", [-1, 0]), ("same", "r2", [1, 0]))
        results = await VectorSearch(storage).search_similar([1, 0])
        assert [r.id for r in results] == ["same"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_metadata_is_carried(self):
        storage = InMemoryStorage(
            [StoredEmbedding("e1", "r1", [1, 0], metadata={"chunk": 3})], {"r1": "doc"}
        )
        results = await VectorSearch(storage).search_similar([1, 0])
        assert results[0].metadata == {"chunk": 3}
        assert results[0].record_id == "r1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, -1, 1001, 2.5, True, "10"])
    async def test_invalid_limit(self, limit):
        with pytest.raises(ValidationError) as exc_info:
            await VectorSearch(InMemoryStorage()).search_similar([1, 0], limit=limit)
        assert exc_info.value.field == "limit"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_limit_bound_from_environment(self, monkeypatch):
        monkeypatch.setenv("SEARCH_MAX_LIMIT", "5")
        search = VectorSearch(InMemoryStorage())

        assert await search.search_similar([1, 0], limit=5) == []
        with pytest.raises(ValidationError, match="between 1 and 5"):
            await search.search_similar([1, 0], limit=6)

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("min_similarity", [-0.1, 1.1, float("nan"), None])
    async def test_invalid_min_similarity(self, min_similarity):
        with pytest.raises(ValidationError) as exc_info:
            await VectorSearch(InMemoryStorage()).search_similar(
                [1, 0], min_similarity=min_similarity
            )
        assert exc_info.value.field == "min_similarity"

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "query,match",
        [
            ([], "must not be empty"),
            ([1.0, float("nan")], "NaN or infinite"),
            ([0.0, 0.0], "zero norm"),
            ([[1.0, 0.0]], "one-dimensional"),
        ],
    )
    async def test_invalid_query(self, query, match):
        with pytest.raises(ValidationError, match=match):
            await VectorSearch(InMemoryStorage()).search_similar(query)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_query_dimension_bound(self):
        search = VectorSearch(InMemoryStorage(), max_dimension=4)
        with pytest.raises(ValidationError, match="exceeds maximum 4"):
            await search.search_similar([1, 0, 0, 0, 0])


# =============================================================================
# semantic_search
# =============================================================================


class TestSemanticSearch:
    """Tests for VectorSearch.semantic_search."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_records_ranked_by_mean_similarity(self):
        storage = _storage(
            ("a1", "A", [1, 0, 0, 0]),
            ("a2", "A", [0.6, 0.8, 0, 0]),
            ("b1", "B", [0.9, 0.1, 0, 0]),
        )
        search = VectorSearch(storage, engine=StubEngine([1, 0, 0, 0]))

        results = await search.semantic_search("login form", limit=10, min_similarity=0.5)

        assert [r.record_id for r in results] == ["B", "A"]
        assert results[1].similarity == pytest.approx(0.8, abs=1e-6)
        assert results[1].matches == 2
        assert results[1].record == {"id": "A"}
        assert all(isinstance(r, RecordMatch) for r in results)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_threshold_applies_before_averaging(self):
        storage = _storage(
            ("a1", "A", [1, 0, 0, 0]),
            ("a2", "A", [0.6, 0.8, 0, 0]),
            ("b1", "B", [0.9, 0.1, 0, 0]),
        )
        search = VectorSearch(storage, engine=StubEngine([1, 0, 0, 0]))

        results = await search.semantic_search("login form", min_similarity=0.7)

        assert [r.record_id for r in results] == ["A", "B"]
        assert results[0].similarity == pytest.approx(1.0, abs=1e-6)
        assert results[0].matches == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_limit_counts_records_not_vectors(self):
        storage = _storage(
            ("a1", "A", [1, 0, 0, 0]),
            ("a2", "A", [0.99, 0.01, 0, 0]),
            ("a3", "A", [0.98, 0.02, 0, 0]),
            ("b1", "B", [0.9, 0.1, 0, 0]),
            ("c1", "C", [0.8, 0.2, 0, 0]),
        )
        search = VectorSearch(storage, engine=StubEngine([1, 0, 0, 0]))

        results = await search.semantic_search("q", limit=2, min_similarity=0.5)

        assert [r.record_id for r in results] == ["A", "B"]
        assert results[0].matches == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_orphaned_vectors_are_dropped_with_warning(self, caplog):
        storage = _storage(
            ("a1", "A", [1, 0, 0, 0]),
            ("g1", "ghost", [0.95, 0.05, 0, 0]),
            records={"A": "record A"},
        )
        search = VectorSearch(storage, engine=StubEngine([1, 0, 0, 0]))

        with caplog.at_level(logging.WARNING):
            with pytest.warns(DataConsistencyWarning, match="ghost"):
                results = await search.semantic_search("q")

        assert [r.record_id for r in results] == ["A"]
        assert "missing record 'ghost'" in caplog.text

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_record_removed_after_indexing(self):
        storage = _storage(("a1", "A", [1, 0]), ("b1", "B", [1, 0.1]))
        storage.remove_record("A")
        search = VectorSearch(storage, engine=StubEngine([1, 0]))

        with pytest.warns(DataConsistencyWarning):
            results = await search.semantic_search("q")

        assert [r.record_id for r in results] == ["B"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_nothing_matches(self):
        storage = _storage(("a1", "A", [0, 1]))
        search = VectorSearch(storage, engine=StubEngine([1, 0]))
        assert await search.semantic_search("q") == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_validates_before_embedding(self):
        engine = StubEngine([1, 0])
        search = VectorSearch(InMemoryStorage(), engine=engine)

        with pytest.raises(ValidationError):
            await search.semantic_search("q", limit=0)

        assert engine.queries == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_zero_query_embedding_rejected(self):
        storage = _storage(("a1", "A", [1, 0]), ("b1", "B", [0, 0]))
        search = VectorSearch(storage, engine=StubEngine([0, 0]))

        with pytest.raises(ValidationError, match="zero norm") as exc_info:
            await search.semantic_search("q", min_similarity=0.0)

        assert exc_info.value.field == "query_vector"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_with_engine_manager(self, fake_loader_cls):
        descriptor = ModelDescriptor(id="tiny", name="Tiny", source="test/tiny", dimension=4)
        loader = fake_loader_cls(vectors={"login": [1, 0, 0, 0]})
        manager = EmbeddingEngineManager(
            primary_factory=fake_loader_cls, fallback_factory=lambda: loader
        )
        await manager.initialize(EngineConfig(custom_descriptor=descriptor))
        storage = _storage(("e1", "doc", [0.9, 0.1, 0, 0]))
        search = VectorSearch(storage, engine=manager)

        results = await search.semantic_search("login")

        assert [r.record_id for r in results] == ["doc"]
        with pytest.raises(ValidationError):
            await search.semantic_search("")

    @pytest.mark.unit
    def test_defaults_to_process_engine(self):
        assert VectorSearch(InMemoryStorage()).engine is get_engine_manager()


class TestInMemoryStorage:
    """Tests for the in-memory storage."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_add_and_replace(self):
        storage = InMemoryStorage()
        storage.add_embedding(StoredEmbedding("e1", "r1", [1, 0]))
        storage.add_embedding(StoredEmbedding("e1", "r1", [0, 1]))

        embeddings = await storage.list_embeddings()

        assert len(storage) == 1
        assert list(embeddings[0].vector) == [0, 1]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_records(self):
        storage = InMemoryStorage()
        storage.add_record("r1", None)

        assert await storage.get_record("missing") is None
        assert storage.remove_record("r1") is True
        assert storage.remove_record("r1") is False
