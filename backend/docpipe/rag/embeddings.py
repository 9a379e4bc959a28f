"""
Query Embedder — turns a chat question into a 768-dim search vector.

text-embedding-3-small is asked for 768 dimensions (Matryoshka truncation) so
query vectors land in the same space as the worker's stored chunk vectors.

Every provider failure is re-raised as EmbeddingError; the answer composer
catches it and degrades to the next retrieval tier.
"""

from __future__ import annotations

import logging

from langchain_core.embeddings import Embeddings
from langchain_openai import OpenAIEmbeddings

from docpipe.core.config import settings
from docpipe.core.exceptions import EmbeddingError
from docpipe.models.embeddings import EMBEDDING_DIMENSIONS

logger = logging.getLogger(__name__)


def get_embedding_model() -> OpenAIEmbeddings:
    """Return the configured OpenAI embedding model."""
    return OpenAIEmbeddings(
        model=settings.embedding_model,
        api_key=settings.openai_api_key,
        dimensions=settings.embedding_dimensions,
    )


class QueryEmbedder:

    def __init__(self, model: Embeddings | None = None) -> None:
        self._model = model

    @property
    def model(self) -> Embeddings:
        # Built lazily so importing the chat router never needs an API key
        if self._model is None:
            self._model = get_embedding_model()
        return self._model

    async def embed(self, text: str) -> list[float]:
        try:
            vector = await self.model.aembed_query(text)
        except Exception as exc:
            logger.warning("Query embedding failed | error=%s: %s", type(exc).__name__, exc)
            raise EmbeddingError(f"Embedding provider failed: {exc}") from exc

        if len(vector) != EMBEDDING_DIMENSIONS:
            raise EmbeddingError(
                f"Embedding provider returned {len(vector)} dimensions, expected {EMBEDDING_DIMENSIONS}"
            )
        return vector
