from docpipe.vectorstore.base import ChunkMatch, ChunkRecord, EmbeddingIndex
from docpipe.vectorstore.pgvector_store import PgVectorIndex

__all__ = ["EmbeddingIndex", "ChunkMatch", "ChunkRecord", "PgVectorIndex"]
