"""Storage protocol for stored embeddings.

Search only reads from storage. Whatever persists records and vectors must
implement this interface; InMemoryStorage is the reference implementation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol, Sequence

from .similarity import VectorLike


@dataclass(frozen=True, eq=False)
class StoredEmbedding:
    """A vector owned by a record.

    Attributes:
        id: Embedding identifier.
        record_id: Identifier of the owning record.
        vector: The embedding values.
        metadata: Free-form metadata from the storage layer.
    """

    id: str
    record_id: str
    vector: VectorLike
    metadata: Mapping[str, Any] = field(default_factory=dict)


class EmbeddingStorage(Protocol):
    """Protocol defining the read interface search needs from storage."""

    async def list_embeddings(self) -> Sequence[StoredEmbedding]:
        """Get every stored embedding, in a stable order."""
        ...

    async def get_record(self, record_id: str) -> Any | None:
        """Get a record by ID.

        Returns:
            The record if it exists, None otherwise.
        """
        ...


class InMemoryStorage:
    """Dict-backed storage for tests and the CLI.

    Example:
        >>> storage = InMemoryStorage()
        >>> storage.add_record("doc-1", {"title": "Login form"})
        >>> storage.add_embedding(StoredEmbedding("e1", "doc-1", [0.1, 0.9]))
    """

    def __init__(
        self,
        embeddings: Iterable[StoredEmbedding] = (),
        records: Mapping[str, Any] | None = None,
    ):
        self._records: dict[str, Any] = dict(records or {})
        self._embeddings: dict[str, StoredEmbedding] = {}
        for embedding in embeddings:
            self.add_embedding(embedding)

    def add_record(self, record_id: str, record: Any) -> None:
        self._records[record_id] = record

    def remove_record(self, record_id: str) -> bool:
        """Remove a record, leaving its embeddings orphaned.

        Returns:
            True if the record existed.
        """
        if record_id not in self._records:
            return False
        del self._records[record_id]
        return True

    def add_embedding(self, embedding: StoredEmbedding) -> None:
        """Add or replace an embedding, keyed by its id."""
        self._embeddings[embedding.id] = embedding

    async def list_embeddings(self) -> list[StoredEmbedding]:
        return list(self._embeddings.values())

    async def get_record(self, record_id: str) -> Any | None:
        return self._records.get(record_id)

    def __len__(self) -> int:
        return len(self._embeddings)


__all__ = [
    "StoredEmbedding",
    "EmbeddingStorage",
    "InMemoryStorage",
]
