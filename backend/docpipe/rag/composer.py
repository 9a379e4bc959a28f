"""
Retrieval-Augmented Answer Composer

Answers one chat turn about one document, always grounded as well as the
stored data allows and never failing for lack of grounding:

  ┌──────────────────────────────────────────────────────────────────┐
  │ last user message ─► query          (none → NoUserMessage 400)   │
  │                                                                  │
  │ strategy chain, first non-None wins:                             │
  │   1. EmbeddingRetrievalStrategy   method=embedding               │
  │        has chunks? → embed query → search latest version         │
  │        (embed or index failure, no hits, empty text → next)      │
  │   2. FullContentStrategy          method=full-content            │
  │        extracted content, truncated to the char budget           │
  │   3. NoContextStrategy            method=fallback                │
  │        "[No content available]" marker, always answers           │
  │                                                                  │
  │ system prompt (context + metadata) + history ─► LLMGateway       │
  └──────────────────────────────────────────────────────────────────┘

Retrieval degradation is logged, never raised. The only error a caller sees
is AnswerGenerationError, when no language model answers at all.

Adding a tier (e.g. keyword search) means writing one RetrievalStrategy and
inserting it into the list; the composer itself does not change.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from sqlalchemy.exc import SQLAlchemyError

from docpipe.core.config import settings
from docpipe.core.exceptions import EmbeddingError, NoUserMessage
from docpipe.llm.gateway import LLMGateway
from docpipe.models.documents import Document
from docpipe.rag.embeddings import QueryEmbedder
from docpipe.schemas.chat import ChatMessage, ChatResponse, ChatRole, TokenUsage
from docpipe.vectorstore.base import ChunkMatch, EmbeddingIndex

logger = logging.getLogger(__name__)

EXCERPT_SEPARATOR = "\n\n---\n\n"
NO_CONTENT_MARKER = "**BOOK CONTENT:** [No content available]"


# ---------------------------------------------------------------------------
# Retrieval helpers
# ---------------------------------------------------------------------------

def calculate_optimal_chunk_limit(total_chunks: int) -> int:
    """
    How many chunks to ground on, scaled to the size of the document.

      ≤ 10 chunks    all of them
      ≤ 30 chunks    40%, at least 5, at most 8
      ≤ 100 chunks   25%, at least 6, at most 10
      larger         15%, at least 8, at most 15

    Never more than the document actually has.
    """
    if total_chunks <= 10:
        limit = total_chunks
    elif total_chunks <= 30:
        limit = min(max(5, math.ceil(total_chunks * 0.4)), 8)
    elif total_chunks <= 100:
        limit = min(max(6, math.ceil(total_chunks * 0.25)), 10)
    else:
        limit = min(max(8, math.ceil(total_chunks * 0.15)), 15)
    return min(limit, total_chunks)


def format_chunks(chunks: Sequence[ChunkMatch]) -> str:
    """Render matches as numbered excerpts with page and relevance."""
    parts = []
    for i, chunk in enumerate(chunks, start=1):
        page_ref = f" (Page {chunk.page_number})" if chunk.page_number is not None else ""
        relevance = round(chunk.similarity * 100)
        parts.append(f"[Excerpt {i}{page_ref} - Relevance: {relevance}%]\n{chunk.chunk_text}")
    return EXCERPT_SEPARATOR.join(parts)


# ---------------------------------------------------------------------------
# Strategy chain
# ---------------------------------------------------------------------------

@dataclass
class RetrievalContext:
    """Grounding chosen for one answer."""
    method:      str            # embedding | full-content | fallback
    content:     str            # "" means no grounding
    chunks_used: int = 0


class RetrievalStrategy(ABC):
    method: str

    @abstractmethod
    async def retrieve(self, document: Document, query: str) -> RetrievalContext | None:
        ...


class EmbeddingRetrievalStrategy(RetrievalStrategy):
    method = "embedding"

    def __init__(
        self,
        index: EmbeddingIndex,
        embedder: QueryEmbedder,
        min_similarity: float | None = None,
    ) -> None:
        self._index = index
        self._embedder = embedder
        self._min_similarity = min_similarity if min_similarity is not None else settings.rag_min_similarity

    async def retrieve(self, document: Document, query: str) -> RetrievalContext | None:
        try:
            total = await self._index.chunk_count(document.id)
            if total == 0:
                logger.info("RAG | no embeddings, skipping vector search | doc=%s", document.id)
                return None

            vector = await self._embedder.embed(query)
            limit = calculate_optimal_chunk_limit(total)
            matches = await self._index.search(
                document.id,
                vector,
                k=limit,
                min_similarity=self._min_similarity,
            )
        except EmbeddingError as exc:
            logger.warning("RAG | embedding failed, degrading | doc=%s error=%s", document.id, exc.message)
            return None
        except SQLAlchemyError as exc:
            logger.warning(
                "RAG | embedding index unavailable, degrading | doc=%s error=%s: %s",
                document.id, type(exc).__name__, exc,
            )
            return None

        if not matches:
            logger.info(
                "RAG | no chunk above threshold | doc=%s total=%d limit=%d min=%.2f",
                document.id, total, limit, self._min_similarity,
            )
            return None

        if sum(len(m.chunk_text or "") for m in matches) == 0:
            logger.warning("RAG | matched chunks carry no text | doc=%s hits=%d", document.id, len(matches))
            return None

        logger.info(
            "RAG | grounded on chunks | doc=%s hits=%d limit=%d total=%d top=%.3f",
            document.id, len(matches), limit, total, matches[0].similarity,
        )
        return RetrievalContext(
            method=self.method,
            content=format_chunks(matches),
            chunks_used=len(matches),
        )


class FullContentStrategy(RetrievalStrategy):
    method = "full-content"

    def __init__(self, char_limit: int | None = None) -> None:
        self._char_limit = char_limit or settings.rag_full_content_char_limit

    async def retrieve(self, document: Document, query: str) -> RetrievalContext | None:
        content = document.extracted_content
        if not content:
            return None
        logger.info(
            "RAG | grounded on full content | doc=%s chars=%d limit=%d",
            document.id, len(content), self._char_limit,
        )
        return RetrievalContext(method=self.method, content=content[: self._char_limit])


class NoContextStrategy(RetrievalStrategy):
    method = "fallback"

    async def retrieve(self, document: Document, query: str) -> RetrievalContext | None:
        logger.warning("RAG | no grounding available | doc=%s", document.id)
        return RetrievalContext(method=self.method, content="")


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

def build_system_prompt(document: Document, context: RetrievalContext) -> str:
    title      = document.title
    authors    = ", ".join(document.authors or [])
    categories = ", ".join(document.categories or [])

    if context.content:
        content_block = f"**BOOK CONTENT TO USE:**\n{context.content}"
    else:
        content_block = NO_CONTENT_MARKER

    return f"""You are a knowledgeable AI assistant for a digital library platform.

Your task is to answer questions about the book "{title}" by {authors} ({categories}).

**LANGUAGE DETECTION AND RESPONSE:**
1. Detect the language of the user's message (Bengali or English)
2. Respond in the SAME language as the user's message
3. If the user writes in Bengali (বাংলা), respond in Bengali
4. If the user writes in English, respond in English
5. The book content may be in Bengali or English - handle both languages appropriately

**CRITICAL RULES:**
1. Base ALL answers ONLY on the book content provided below
2. If information is not found in the book content, explicitly say so
3. Provide specific examples and quotes from the book when possible
4. Reference page numbers when citing specific content
5. Be concise yet comprehensive
6. Maintain a conversational, helpful tone
7. If asked about topics not covered in the book, politely redirect to what IS available
8. Match your response language to the user's question language

{content_block}

**BOOK METADATA:**
- Title: {title}
- Authors: {authors}
- Categories: {categories}
- Type: {document.document_type}

Provide accurate, helpful responses based strictly on this book's content, ALWAYS matching the user's language (Bengali or English)."""


def to_langchain_history(history: Sequence[ChatMessage]) -> list[BaseMessage]:
    """User and assistant turns only; client-supplied system messages are dropped."""
    messages: list[BaseMessage] = []
    for m in history:
        if m.role == ChatRole.USER:
            messages.append(HumanMessage(content=m.content))
        elif m.role == ChatRole.ASSISTANT:
            messages.append(AIMessage(content=m.content))
    return messages


# ---------------------------------------------------------------------------
# AnswerComposer
# ---------------------------------------------------------------------------

class AnswerComposer:

    def __init__(
        self,
        strategies: Sequence[RetrievalStrategy],
        gateway:    LLMGateway,
    ) -> None:
        if not strategies:
            raise ValueError("AnswerComposer needs at least one retrieval strategy")
        self._strategies = list(strategies)
        self._gateway    = gateway

    @classmethod
    def default(
        cls,
        index:    EmbeddingIndex,
        embedder: QueryEmbedder,
        gateway:  LLMGateway,
    ) -> "AnswerComposer":
        """embedding → full-content → fallback."""
        return cls(
            strategies=[
                EmbeddingRetrievalStrategy(index, embedder),
                FullContentStrategy(),
                NoContextStrategy(),
            ],
            gateway=gateway,
        )

    async def answer(self, document: Document, history: Sequence[ChatMessage]) -> ChatResponse:
        """
        Compose and generate the reply to the latest user message.

        Raises:
            NoUserMessage:          history holds no user turn.
            AnswerGenerationError:  every language-model provider failed.
        """
        query = next((m.content for m in reversed(history) if m.role == ChatRole.USER), None)
        if query is None:
            raise NoUserMessage()

        context = await self._select_context(document, query)

        messages: list[BaseMessage] = [
            SystemMessage(content=build_system_prompt(document, context)),
            *to_langchain_history(history),
        ]
        result = await self._gateway.invoke(messages)

        logger.info(
            "RAG | answered | doc=%s method=%s chunks=%d model=%s",
            document.id, context.method, context.chunks_used, result.model_used,
        )
        return ChatResponse(
            response=result.content,
            method=context.method,
            model=result.model_used,
            usage=TokenUsage(
                prompt_tokens=result.input_tokens,
                completion_tokens=result.output_tokens,
                total_tokens=result.total_tokens,
            ),
        )

    async def _select_context(self, document: Document, query: str) -> RetrievalContext:
        for strategy in self._strategies:
            context = await strategy.retrieve(document, query)
            if context is not None:
                return context
        # Chains built without NoContextStrategy still answer ungrounded
        return RetrievalContext(method=NoContextStrategy.method, content="")
