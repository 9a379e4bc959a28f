from docpipe.rag.composer import (
    AnswerComposer,
    EmbeddingRetrievalStrategy,
    FullContentStrategy,
    NoContextStrategy,
    RetrievalContext,
    RetrievalStrategy,
)
from docpipe.rag.embeddings import QueryEmbedder

__all__ = [
    "AnswerComposer",
    "EmbeddingRetrievalStrategy",
    "FullContentStrategy",
    "NoContextStrategy",
    "QueryEmbedder",
    "RetrievalContext",
    "RetrievalStrategy",
]
