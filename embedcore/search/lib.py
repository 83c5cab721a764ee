"""Exhaustive vector similarity search.

Scans every stored embedding, scores it against the query with cosine
similarity, filters by a threshold and ranks the survivors. Semantic search
embeds query text first and ranks the owning records instead of individual
vectors.
"""

from __future__ import annotations

import logging
import math
import numbers
import warnings
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

import numpy as np

from embedcore.config import EnvVar, get_environment
from embedcore.errors import DataConsistencyWarning, ValidationError

from .similarity import VectorLike, as_vector, check_finite, cosine_similarity
from .storage import EmbeddingStorage, StoredEmbedding

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_SEMANTIC_MIN_SIMILARITY = 0.5


class EmbeddingEngine(Protocol):
    """Anything that can embed query text (normally EmbeddingEngineManager)."""

    async def generate_embedding(self, text: str) -> Any:
        """Return an object with a ``vector`` attribute."""
        ...


@dataclass(frozen=True)
class SimilarityMatch:
    """A stored embedding with its similarity to the query."""

    id: str
    record_id: str
    similarity: float
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RecordMatch:
    """A record ranked by the mean similarity of its matching embeddings.

    Attributes:
        record_id: Identifier of the record.
        record: The record as returned by storage.
        similarity: Mean similarity of the record's matching embeddings.
        matches: Number of embeddings averaged.
    """

    record_id: str
    record: Any
    similarity: float
    matches: int = 1


class VectorSearch:
    """Linear-scan similarity search over an EmbeddingStorage.

    Example:
        >>> search = VectorSearch(storage)
        >>> matches = await search.search_similar([1, 0, 0, 0], limit=2, min_similarity=0.8)
        >>> [(m.id, round(m.similarity, 3)) for m in matches]
        [('e1', 0.994), ('e3', 0.985)]
    """

    def __init__(
        self,
        storage: EmbeddingStorage,
        engine: EmbeddingEngine | None = None,
        max_dimension: int | None = None,
        max_limit: int | None = None,
    ):
        """Initialize search.

        Args:
            storage: Source of stored embeddings and records.
            engine: Embeds query text for semantic search. Defaults to the
                process-wide engine manager.
            max_dimension: Largest accepted query dimension.
            max_limit: Largest accepted result limit.
        """
        self.storage = storage
        self._engine = engine
        self.max_dimension = get_environment(EnvVar.SEARCH_MAX_DIMENSION, override=max_dimension)
        self.max_limit = get_environment(EnvVar.SEARCH_MAX_LIMIT, override=max_limit)

    @property
    def engine(self) -> EmbeddingEngine:
        if self._engine is None:
            from embedcore.engine import get_engine_manager

            self._engine = get_engine_manager()
        return self._engine

    async def search_similar(
        self,
        query_vector: VectorLike,
        limit: int = DEFAULT_LIMIT,
        min_similarity: float = 0.0,
    ) -> list[SimilarityMatch]:
        """Find stored embeddings most similar to a query vector.

        Stored vectors that cannot be compared with the query (other length,
        non-finite or all-zero values) score 0.0 and do not stop the scan.

        Args:
            query_vector: Query embedding.
            limit: Maximum number of results.
            min_similarity: Threshold in [0, 1]; lower scores are dropped.

        Returns:
            Matches by descending similarity. Equal scores keep storage order.

        Raises:
            ValidationError: If the limit or threshold is invalid, or the query
                is empty, non-finite, too long or all zeros. An all-zero query
                has no direction, so no stored vector can be ranked against it.
        """
        query = self._validate_query(query_vector)
        self._validate_limit(limit)
        self._validate_min_similarity(min_similarity)

        embeddings = await self.storage.list_embeddings()
        ranked = self._rank(query, embeddings, min_similarity)
        results = ranked[:limit]

        logger.info(
            f"Vector search scanned {len(embeddings)} embeddings, "
            f"returning {len(results)} (limit={limit}, min_similarity={min_similarity})"
        )
        return results

    async def semantic_search(
        self,
        query_text: str,
        limit: int = DEFAULT_LIMIT,
        min_similarity: float = DEFAULT_SEMANTIC_MIN_SIMILARITY,
    ) -> list[RecordMatch]:
        """Find records whose embeddings are most similar to query text.

        A record with several matching embeddings scores the mean of their
        similarities. Embeddings whose record no longer exists are dropped
        with a DataConsistencyWarning.

        Args:
            query_text: Text to embed and search for.
            limit: Maximum number of records.
            min_similarity: Threshold in [0, 1] applied to each embedding.

        Returns:
            Records by descending mean similarity.

        Raises:
            ValidationError: If the text, limit or threshold is invalid, or the
                engine embeds the text as an all-zero vector.
            EngineError: If the query cannot be embedded.
        """
        self._validate_limit(limit)
        self._validate_min_similarity(min_similarity)

        result = await self.engine.generate_embedding(query_text)
        query = self._validate_query(result.vector)

        embeddings = await self.storage.list_embeddings()
        ranked = self._rank(query, embeddings, min_similarity)

        # Group in ranked order so ties between records keep first-seen order
        grouped: dict[str, list[float]] = {}
        for match in ranked:
            grouped.setdefault(match.record_id, []).append(match.similarity)

        records: list[RecordMatch] = []
        for record_id, similarities in grouped.items():
            record = await self.storage.get_record(record_id)
            if record is None:
                message = (
                    f"Dropping {len(similarities)} embedding(s) for missing record "
                    f"'{record_id}'"
                )
                logger.warning(message)
                warnings.warn(message, DataConsistencyWarning, stacklevel=2)
                continue
            records.append(
                RecordMatch(
                    record_id=record_id,
                    record=record,
                    similarity=math.fsum(similarities) / len(similarities),
                    matches=len(similarities),
                )
            )

        results = sorted(records, key=lambda r: r.similarity, reverse=True)[:limit]
        logger.info(
            f"Semantic search matched {len(ranked)} embeddings across "
            f"{len(grouped)} records, returning {len(results)}"
        )
        return results

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _rank(
        self,
        query: np.ndarray,
        embeddings: Sequence[StoredEmbedding],
        min_similarity: float,
    ) -> list[SimilarityMatch]:
        matches = []
        for embedding in embeddings:
            similarity = self._score(query, embedding)
            if similarity >= min_similarity:
                matches.append(
                    SimilarityMatch(
                        id=embedding.id,
                        record_id=embedding.record_id,
                        similarity=similarity,
                        metadata=embedding.metadata,
                    )
                )
        # sorted() is stable, so ties stay in storage order
        return sorted(matches, key=lambda m: m.similarity, reverse=True)

    def _score(self, query: np.ndarray, embedding: StoredEmbedding) -> float:
        try:
            return cosine_similarity(query, embedding.vector)
        except ValidationError as e:
            logger.debug(f"Embedding '{embedding.id}' not comparable: {e}")
            return 0.0

    def _validate_query(self, query_vector: VectorLike) -> np.ndarray:
        query = as_vector(query_vector, "query_vector")
        if query.shape[0] > self.max_dimension:
            raise ValidationError(
                f"query_vector dimension {query.shape[0]} exceeds maximum "
                f"{self.max_dimension}",
                field="query_vector",
            )
        check_finite(query, "query_vector")
        if not np.any(query):
            raise ValidationError("query_vector has zero norm", field="query_vector")
        return query

    def _validate_limit(self, limit: int) -> None:
        if isinstance(limit, bool) or not isinstance(limit, numbers.Integral):
            raise ValidationError(
                f"limit must be an integer, got {type(limit).__name__}", field="limit"
            )
        if not 1 <= limit <= self.max_limit:
            raise ValidationError(
                f"limit must be between 1 and {self.max_limit}, got {limit}",
                field="limit",
            )

    def _validate_min_similarity(self, min_similarity: float) -> None:
        if isinstance(min_similarity, bool) or not isinstance(
            min_similarity, numbers.Real
        ):
            raise ValidationError(
                "min_similarity must be a number", field="min_similarity"
            )
        if not 0.0 <= min_similarity <= 1.0:
            raise ValidationError(
                f"min_similarity must be between 0 and 1, got {min_similarity}",
                field="min_similarity",
            )


__all__ = [
    "EmbeddingEngine",
    "SimilarityMatch",
    "RecordMatch",
    "VectorSearch",
    "DEFAULT_LIMIT",
    "DEFAULT_SEMANTIC_MIN_SIMILARITY",
]
