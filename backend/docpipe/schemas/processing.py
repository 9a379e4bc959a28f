"""
Processing Pipeline — Pydantic Request/Response Schemas

Covers:
  - Worker callback payloads (camelCase on the wire, snake_case in Python)
  - Job views returned by the jobs listing, retry and callback endpoints
  - The uniform error envelope used by every 4xx/5xx response

Design decisions:
  - Callback payloads accept both camelCase (what the worker sends) and
    snake_case field names.
  - Required stage fields reject empty strings, so an incomplete callback
    never reaches the state machine.
  - All timestamps are timezone-aware UTC datetimes.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from docpipe.models.embeddings import EMBEDDING_DIMENSIONS
from docpipe.processing.status import JobStatus, Stage, StageStatus


# ---------------------------------------------------------------------------
# Worker callback payloads
# ---------------------------------------------------------------------------

class _WorkerPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ContentPayload(_WorkerPayload):
    """PATCH .../content — extraction stage artifact."""
    extracted_content:  str = Field(..., min_length=1)
    content_page_count: int = Field(..., ge=0)
    content_word_count: int = Field(..., ge=0)


class SummaryPayload(_WorkerPayload):
    """PATCH .../summary — summary stage artifact."""
    summary: str = Field(..., min_length=1)


class QuestionItem(_WorkerPayload):
    question: str = Field(..., min_length=1)
    answer:   str = Field(..., min_length=1)


class QuestionsPayload(_WorkerPayload):
    """PATCH .../questions — replaces every AI-generated question."""
    questions: list[QuestionItem]


class ChunkPayload(_WorkerPayload):
    chunk_index: int        = Field(..., ge=0)
    chunk_text:  str
    page_number: int | None = None
    word_count:  int        = Field(0, ge=0)
    embedding:   list[float]

    @field_validator("embedding")
    @classmethod
    def _check_dimensions(cls, v: list[float]) -> list[float]:
        if len(v) != EMBEDDING_DIMENSIONS:
            raise ValueError(f"embedding must have {EMBEDDING_DIMENSIONS} components, got {len(v)}")
        return v


class EmbeddingPayload(_WorkerPayload):
    """
    PATCH .../embedding — completion marker.

    Either a count (the worker wrote the vectors itself) or the chunks to
    store as a new embedding version.
    """
    embeddings_created: int | None                = Field(None, ge=0)
    chunks:             list[ChunkPayload] | None = None

    @model_validator(mode="after")
    def _require_count_or_chunks(self) -> "EmbeddingPayload":
        if self.embeddings_created is None and not self.chunks:
            raise ValueError("either embeddingsCreated or chunks is required")
        if self.chunks:
            indexes = [c.chunk_index for c in self.chunks]
            if len(set(indexes)) != len(indexes):
                raise ValueError("chunkIndex values must be unique")
        return self


class AudiobookPayload(_WorkerPayload):
    """PATCH .../audiobook — asset URLs, not a pipeline stage."""
    audiobook_url:           str        = Field(..., min_length=1)
    audiobook_direct_url:    str        = Field(..., min_length=1)
    audiobook_drive_file_id: str        = Field(..., min_length=1)
    audiobook_duration:      int | None = Field(None, ge=0)


class ErrorReportPayload(_WorkerPayload):
    """POST .../error — stage failure report."""
    error: str          = Field(..., min_length=1)
    stage: Stage | None = Field(None, description="Failing stage; inferred when omitted")


class CompletePayload(_WorkerPayload):
    """POST .../complete — end-of-run acknowledgement."""
    processing_time: int | None = Field(None, ge=0, description="Worker wall time in ms")


# ---------------------------------------------------------------------------
# Job views
# ---------------------------------------------------------------------------

class JobResponse(BaseModel):
    """One processing job as exposed to operators and the worker."""
    model_config = ConfigDict(from_attributes=True)

    id:                UUID
    document_id:       UUID
    document_title:    str | None = None
    status:            JobStatus
    download_status:   StageStatus
    extraction_status: StageStatus
    summary_status:    StageStatus
    questions_status:  StageStatus
    embedding_status:  StageStatus

    retry_count: int
    max_retries: int

    last_attempt_at: datetime | None = None
    next_attempt_at: datetime | None = None
    completed_at:    datetime | None = None
    failed_at:       datetime | None = None
    error_message:   str | None      = None

    pages_extracted:     int | None = None
    words_extracted:     int | None = None
    summary_length:      int | None = None
    questions_generated: int | None = None
    embeddings_created:  int | None = None
    processing_time:     int | None = None

    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    page:              int
    limit:             int
    total:             int
    total_pages:       int
    has_next_page:     bool
    has_previous_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = (total + limit - 1) // limit
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
        )


class JobListResponse(BaseModel):
    jobs:       list[JobResponse]
    pagination: Pagination


class SubmitJobRequest(BaseModel):
    document_id: UUID


class CallbackResult(BaseModel):
    """
    Response for every worker callback.

    applied=False means the callback was an idempotent duplicate and changed
    nothing.
    """
    success: bool = True
    applied: bool
    message: str
    job:     JobResponse | None = None


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    context:    dict              = Field(default_factory=dict, description="Operator-facing state, e.g. retry counts")
    request_id: str | None        = Field(None, description="Trace ID for log correlation")
