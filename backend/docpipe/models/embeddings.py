"""
SQLAlchemy ORM Model — Embedding Chunks (pgvector)

One row per (document_id, version, chunk_index). A re-embedding writes a
whole new version; older versions stay on disk for rollback and debugging but
are never mixed into a query (see vectorstore/pgvector_store.py).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from docpipe.models.documents import Base

EMBEDDING_DIMENSIONS = 768


class EmbeddingChunk(Base):
    __tablename__ = "embedding_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "version", "chunk_index", name="uq_embedding_chunks_position"),
        Index("idx_embedding_chunks_document_version", "document_id", "version"),
        # ANN index for `embedding <=> :query` (cosine distance)
        Index(
            "idx_embedding_chunks_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    version:     Mapped[int]           = mapped_column(Integer, nullable=False, default=1)
    chunk_index: Mapped[int]           = mapped_column(Integer, nullable=False)
    chunk_text:  Mapped[str]           = mapped_column(Text, nullable=False)
    page_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    word_count:  Mapped[int]           = mapped_column(Integer, nullable=False, default=0, server_default="0")
    embedding:   Mapped[list[float]]   = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<EmbeddingChunk document={self.document_id} v{self.version} "
            f"#{self.chunk_index}>"
        )
