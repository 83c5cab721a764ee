"""Vector similarity search for embedcore.

Linear-scan cosine similarity over stored embeddings, plus semantic search
that embeds query text and ranks the owning records.

Example:
    >>> from embedcore.search import InMemoryStorage, StoredEmbedding, VectorSearch
    >>> storage = InMemoryStorage([StoredEmbedding("e1", "doc-1", [0.9, 0.1, 0, 0])])
    >>> matches = await VectorSearch(storage).search_similar([1, 0, 0, 0])
"""

from .lib import (
    DEFAULT_LIMIT,
    DEFAULT_SEMANTIC_MIN_SIMILARITY,
    EmbeddingEngine,
    RecordMatch,
    SimilarityMatch,
    VectorSearch,
)
from .similarity import VectorLike, as_vector, check_finite, cosine_similarity
from .storage import EmbeddingStorage, InMemoryStorage, StoredEmbedding

__all__ = [
    # Similarity
    "VectorLike",
    "as_vector",
    "check_finite",
    "cosine_similarity",
    # Storage
    "StoredEmbedding",
    "EmbeddingStorage",
    "InMemoryStorage",
    # Search
    "EmbeddingEngine",
    "SimilarityMatch",
    "RecordMatch",
    "VectorSearch",
    "DEFAULT_LIMIT",
    "DEFAULT_SEMANTIC_MIN_SIMILARITY",
]
