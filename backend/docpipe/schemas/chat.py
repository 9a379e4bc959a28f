"""
Chat & Suggested Questions — Pydantic Request/Response Schemas
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ChatRole(str, Enum):
    SYSTEM    = "system"
    USER      = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    role:    ChatRole
    content: str = Field(..., max_length=20_000)


class ChatRequest(BaseModel):
    """Conversation so far, oldest first. The last user message is the query."""
    messages: list[ChatMessage] = Field(..., min_length=1, max_length=100)


class TokenUsage(BaseModel):
    prompt_tokens:     int = 0
    completion_tokens: int = 0
    total_tokens:      int = 0


class ChatResponse(BaseModel):
    """
    method reports which retrieval tier grounded the answer:
      embedding     top-k chunks from vector search
      full-content  truncated extracted text
      fallback      no grounding available
    """
    response: str
    method:   Literal["embedding", "full-content", "fallback"]
    model:    str
    usage:    TokenUsage


# ---------------------------------------------------------------------------
# Suggested questions
# ---------------------------------------------------------------------------

class SuggestedQuestionCreate(BaseModel):
    question: str      = Field(..., min_length=1, max_length=2_000)
    answer:   str      = Field(..., min_length=1, max_length=20_000)
    order:    int | None = Field(None, ge=0, description="Display position; appended when omitted")


class SuggestedQuestionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:              UUID
    document_id:     UUID
    question:        str
    answer:          str
    display_order:   int
    is_ai_generated: bool
    created_at:      datetime
