"""
Embedding Index — Abstract Base

The chat engine only speaks this interface, so the storage behind it can be
swapped without touching the answer composer or the callback service.

Version contract (enforced by ALL implementations):
  - Chunks are grouped by (document_id, version). A re-embedding writes a new
    version; it never edits rows of an older one.
  - When no version is given, every read resolves to max(version) for the
    document at query time. One call never mixes two versions.
  - A document with no chunks is not an error: reads return empty results.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from uuid import UUID


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class ChunkRecord:
    """One chunk to store as part of a new embedding version."""
    chunk_index: int
    chunk_text:  str
    embedding:   list[float]
    page_number: int | None = None
    word_count:  int        = 0


@dataclass
class ChunkMatch:
    """One result returned from a similarity search."""
    chunk_index: int
    chunk_text:  str
    page_number: int | None
    similarity:  float          # 1 - cosine distance


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class EmbeddingIndex(ABC):

    @abstractmethod
    async def search(
        self,
        document_id:    UUID,
        query_vector:   list[float],
        k:              int          = 10,
        min_similarity: float        = 0.0,
        version:        int | None   = None,
    ) -> list[ChunkMatch]:
        """
        Top-k chunks of one version by cosine similarity, most similar first,
        ties broken by ascending chunk_index.
        """

    @abstractmethod
    async def latest_version(self, document_id: UUID) -> int | None:
        """Highest stored version, or None when the document has no chunks."""

    @abstractmethod
    async def chunk_count(self, document_id: UUID, version: int | None = None) -> int:
        """Number of chunks in one version (latest by default)."""

    @abstractmethod
    async def get_chunks(self, document_id: UUID, version: int | None = None) -> list[ChunkMatch]:
        """All chunks of one version ordered by chunk_index. similarity is 1.0."""

    @abstractmethod
    async def add_version(self, document_id: UUID, chunks: list[ChunkRecord]) -> int:
        """Store chunks as version max+1 and return the new version number."""

    async def has_embeddings(self, document_id: UUID) -> bool:
        return await self.latest_version(document_id) is not None
