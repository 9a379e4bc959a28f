"""
pgvector Embedding Index — PostgreSQL + pgvector implementation

Storage:  embedding_chunks, vector(768), HNSW index with vector_cosine_ops.

Search is ONE statement so the version resolution and the ranking see the
same snapshot:

  SELECT chunk_index, chunk_text, page_number,
         1 - (embedding <=> :q)                      AS similarity
  FROM   embedding_chunks
  WHERE  document_id = :doc
    AND  version = coalesce(:pinned,
                   (SELECT max(version) FROM embedding_chunks
                    WHERE document_id = :doc))
    AND  1 - (embedding <=> :q) >= :min              -- only when min > 0
  ORDER  BY embedding <=> :q, chunk_index
  LIMIT  :k

A new version becomes visible to searches the moment its rows commit; older
versions stay in the table for rollback and debugging.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from docpipe.models.embeddings import EMBEDDING_DIMENSIONS, EmbeddingChunk
from docpipe.vectorstore.base import ChunkMatch, ChunkRecord, EmbeddingIndex

logger = logging.getLogger(__name__)


def _check_vector(vector: list[float]) -> None:
    if len(vector) != EMBEDDING_DIMENSIONS:
        raise ValueError(
            f"Query vector must have {EMBEDDING_DIMENSIONS} components, got {len(vector)}"
        )


class PgVectorIndex(EmbeddingIndex):
    """
    Embedding index bound to one AsyncSession.

    Writes (add_version) join the caller's transaction, so an embedding
    callback commits its chunks and its stage transition together.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Version resolution
    # ------------------------------------------------------------------

    @staticmethod
    def _latest_version_subquery(document_id: UUID):
        # Same table as the outer query; must not auto-correlate
        return (
            select(func.max(EmbeddingChunk.version))
            .where(EmbeddingChunk.document_id == document_id)
            .correlate(None)
            .scalar_subquery()
        )

    def _version_clause(self, document_id: UUID, version: int | None):
        target = version if version is not None else self._latest_version_subquery(document_id)
        return EmbeddingChunk.version == target

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(
        self,
        document_id:    UUID,
        query_vector:   list[float],
        k:              int        = 10,
        min_similarity: float      = 0.0,
        version:        int | None = None,
    ) -> list[ChunkMatch]:
        _check_vector(query_vector)
        if k <= 0:
            return []

        distance   = EmbeddingChunk.embedding.cosine_distance(query_vector)
        similarity = (1 - distance).label("similarity")

        stmt = (
            select(
                EmbeddingChunk.chunk_index,
                EmbeddingChunk.chunk_text,
                EmbeddingChunk.page_number,
                similarity,
            )
            .where(
                EmbeddingChunk.document_id == document_id,
                self._version_clause(document_id, version),
            )
            .order_by(distance, EmbeddingChunk.chunk_index)
            .limit(k)
        )
        if min_similarity > 0:
            stmt = stmt.where((1 - distance) >= min_similarity)

        result = await self._db.execute(stmt)
        matches = [
            ChunkMatch(
                chunk_index=row.chunk_index,
                chunk_text=row.chunk_text,
                page_number=row.page_number,
                similarity=float(row.similarity),
            )
            for row in result.all()
        ]

        logger.debug(
            "Vector search | doc=%s k=%d min=%.2f version=%s hits=%d",
            document_id, k, min_similarity, version or "latest", len(matches),
        )
        return matches

    async def latest_version(self, document_id: UUID) -> int | None:
        return await self._db.scalar(
            select(func.max(EmbeddingChunk.version))
            .where(EmbeddingChunk.document_id == document_id)
        )

    async def chunk_count(self, document_id: UUID, version: int | None = None) -> int:
        count = await self._db.scalar(
            select(func.count())
            .select_from(EmbeddingChunk)
            .where(
                EmbeddingChunk.document_id == document_id,
                self._version_clause(document_id, version),
            )
        )
        return int(count or 0)

    async def get_chunks(self, document_id: UUID, version: int | None = None) -> list[ChunkMatch]:
        result = await self._db.execute(
            select(
                EmbeddingChunk.chunk_index,
                EmbeddingChunk.chunk_text,
                EmbeddingChunk.page_number,
            )
            .where(
                EmbeddingChunk.document_id == document_id,
                self._version_clause(document_id, version),
            )
            .order_by(EmbeddingChunk.chunk_index)
        )
        return [
            ChunkMatch(
                chunk_index=row.chunk_index,
                chunk_text=row.chunk_text,
                page_number=row.page_number,
                similarity=1.0,
            )
            for row in result.all()
        ]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add_version(self, document_id: UUID, chunks: list[ChunkRecord]) -> int:
        if not chunks:
            raise ValueError("add_version requires at least one chunk")
        for chunk in chunks:
            _check_vector(chunk.embedding)

        current = await self.latest_version(document_id)
        new_version = (current or 0) + 1

        self._db.add_all(
            EmbeddingChunk(
                document_id=document_id,
                version=new_version,
                chunk_index=chunk.chunk_index,
                chunk_text=chunk.chunk_text,
                page_number=chunk.page_number,
                word_count=chunk.word_count,
                embedding=chunk.embedding,
            )
            for chunk in chunks
        )
        await self._db.flush()

        logger.info(
            "Embedding version stored | doc=%s version=%d chunks=%d",
            document_id, new_version, len(chunks),
        )
        return new_version
