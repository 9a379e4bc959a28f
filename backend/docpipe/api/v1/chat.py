"""
Chat API — document-grounded Q&A

POST /api/v1/documents/{document_id}/chat   → JSON response (non-streaming)

  - Requires a valid JWT (any role)
  - Grounding degrades embedding → full-content → fallback; the tier used is
    reported in `method` and the request never fails for lack of grounding
  - 400 NO_USER_MESSAGE when the history holds no user turn
  - 503 ANSWER_GENERATION_FAILED only when every LLM provider fails
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends

from docpipe.auth.dependencies import DB, CurrentUser
from docpipe.core.exceptions import DocumentNotFound
from docpipe.llm.gateway import LLMGateway
from docpipe.models.documents import Document
from docpipe.rag.composer import AnswerComposer
from docpipe.rag.embeddings import QueryEmbedder
from docpipe.schemas.chat import ChatRequest, ChatResponse
from docpipe.schemas.processing import ErrorResponse
from docpipe.vectorstore.pgvector_store import PgVectorIndex

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Chat"])

# ---------------------------------------------------------------------------
# Shared singletons
# ---------------------------------------------------------------------------

_gateway:  LLMGateway | None = None
_embedder: QueryEmbedder | None = None


def get_gateway() -> LLMGateway:
    global _gateway
    if _gateway is None:
        _gateway = LLMGateway()
    return _gateway


def get_embedder() -> QueryEmbedder:
    global _embedder
    if _embedder is None:
        _embedder = QueryEmbedder()
    return _embedder


def get_composer(
    db:       DB,
    embedder: Annotated[QueryEmbedder, Depends(get_embedder)],
    gateway:  Annotated[LLMGateway, Depends(get_gateway)],
) -> AnswerComposer:
    return AnswerComposer.default(PgVectorIndex(db), embedder, gateway)


# ---------------------------------------------------------------------------
# POST /documents/{document_id}/chat
# ---------------------------------------------------------------------------

@router.post(
    "/{document_id}/chat",
    response_model=ChatResponse,
    summary="Ask a question about a document",
    responses={
        400: {"model": ErrorResponse, "description": "No user message in history"},
        401: {"model": ErrorResponse, "description": "Missing or invalid JWT"},
        404: {"model": ErrorResponse, "description": "Document not found"},
        503: {"model": ErrorResponse, "description": "All LLM providers failed"},
    },
)
async def chat(
    document_id: UUID,
    body:        ChatRequest,
    user:        CurrentUser,
    db:          DB,
    composer:    Annotated[AnswerComposer, Depends(get_composer)],
) -> ChatResponse:
    document = await db.get(Document, document_id)
    if document is None:
        raise DocumentNotFound(document_id)

    logger.info(
        "Chat requested | doc=%s user=%s turns=%d",
        document_id, user.sub, len(body.messages),
    )
    return await composer.answer(document, body.messages)
