"""
Worker Callback API Router

Invoked by the document-processing worker after each pipeline stage.
Authenticated with the shared secret (Bearer <processor_api_key>) or, for
manual replays, an admin JWT.

  POST  /processing/callbacks/{document_id}/stages/{stage}/start
  POST  /processing/callbacks/{document_id}/download
  PATCH /processing/callbacks/{document_id}/content
  PATCH /processing/callbacks/{document_id}/summary
  PATCH /processing/callbacks/{document_id}/questions
  PATCH /processing/callbacks/{document_id}/embedding
  PATCH /processing/callbacks/{document_id}/audiobook
  POST  /processing/callbacks/{document_id}/error
  POST  /processing/callbacks/{document_id}/complete

Response contract:
  200 {success, applied, message, job}   applied=false → duplicate, no change
  401/403                                bad or missing credentials
  404                                    unknown document or no job for it
  409                                    stage FAILED; the job must be retried
  422                                    payload missing required fields;
                                         nothing is written
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends

from docpipe.api.v1.processing import get_job_store
from docpipe.auth.dependencies import WorkerOrAdmin
from docpipe.models.processing import ProcessingJob
from docpipe.processing.jobs import JobStore
from docpipe.processing.status import Stage
from docpipe.schemas.processing import (
    AudiobookPayload,
    CallbackResult,
    CompletePayload,
    ContentPayload,
    EmbeddingPayload,
    ErrorReportPayload,
    ErrorResponse,
    JobResponse,
    QuestionsPayload,
    SummaryPayload,
)
from docpipe.services.callbacks import CallbackService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/processing/callbacks/{document_id}",
    tags=["Worker Callbacks"],
    responses={
        401: {"model": ErrorResponse, "description": "Missing or invalid credentials"},
        404: {"model": ErrorResponse, "description": "Document or job not found"},
        409: {"model": ErrorResponse, "description": "Stage already FAILED"},
        422: {"model": ErrorResponse, "description": "Incomplete stage payload"},
    },
)


def get_callback_service(
    store: Annotated[JobStore, Depends(get_job_store)],
) -> CallbackService:
    return CallbackService(store)


Service = Annotated[CallbackService, Depends(get_callback_service)]


def _result(job: ProcessingJob, applied: bool, message: str) -> CallbackResult:
    return CallbackResult(
        applied=applied,
        message=message if applied else "Duplicate callback; nothing changed.",
        job=JobResponse.model_validate(job),
    )


# ---------------------------------------------------------------------------
# Stage start / download
# ---------------------------------------------------------------------------

@router.post("/stages/{stage}/start", response_model=CallbackResult, summary="Stage started")
async def stage_started(document_id: UUID, stage: Stage, caller: WorkerOrAdmin, service: Service) -> CallbackResult:
    job, applied = await service.start_stage(document_id, stage)
    return _result(job, applied, f"Stage '{stage.value}' is processing.")


@router.post("/download", response_model=CallbackResult, summary="Source file downloaded")
async def download_completed(document_id: UUID, caller: WorkerOrAdmin, service: Service) -> CallbackResult:
    job, applied = await service.complete_download(document_id)
    return _result(job, applied, "Download recorded.")


# ---------------------------------------------------------------------------
# Stage artifacts
# ---------------------------------------------------------------------------

@router.patch("/content", response_model=CallbackResult, summary="Extracted content")
async def content_extracted(
    document_id: UUID,
    body:        ContentPayload,
    caller:      WorkerOrAdmin,
    service:     Service,
) -> CallbackResult:
    job, applied = await service.record_content(document_id, body)
    return _result(job, applied, "Content saved successfully.")


@router.patch("/summary", response_model=CallbackResult, summary="AI summary")
async def summary_generated(
    document_id: UUID,
    body:        SummaryPayload,
    caller:      WorkerOrAdmin,
    service:     Service,
) -> CallbackResult:
    job, applied = await service.record_summary(document_id, body)
    return _result(job, applied, "Summary saved successfully.")


@router.patch("/questions", response_model=CallbackResult, summary="Suggested questions")
async def questions_generated(
    document_id: UUID,
    body:        QuestionsPayload,
    caller:      WorkerOrAdmin,
    service:     Service,
) -> CallbackResult:
    job, applied = await service.record_questions(document_id, body)
    return _result(job, applied, f"{len(body.questions)} questions saved successfully.")


@router.patch("/embedding", response_model=CallbackResult, summary="Embeddings ready")
async def embeddings_ready(
    document_id: UUID,
    body:        EmbeddingPayload,
    caller:      WorkerOrAdmin,
    service:     Service,
) -> CallbackResult:
    job, applied = await service.record_embedding(document_id, body)
    return _result(job, applied, "Embeddings recorded.")


@router.patch("/audiobook", response_model=CallbackResult, summary="Audiobook asset")
async def audiobook_ready(
    document_id: UUID,
    body:        AudiobookPayload,
    caller:      WorkerOrAdmin,
    service:     Service,
) -> CallbackResult:
    await service.record_audiobook(document_id, body)
    return CallbackResult(applied=True, message="Audiobook saved successfully.")


# ---------------------------------------------------------------------------
# Error / end of run
# ---------------------------------------------------------------------------

@router.post("/error", response_model=CallbackResult, summary="Report a stage failure")
async def processing_error(
    document_id: UUID,
    body:        ErrorReportPayload,
    caller:      WorkerOrAdmin,
    service:     Service,
) -> CallbackResult:
    job, applied = await service.report_error(document_id, body.error, body.stage)
    return _result(job, applied, "Error reported successfully.")


@router.post("/complete", response_model=CallbackResult, summary="End-of-run acknowledgement")
async def processing_complete(
    document_id: UUID,
    caller:      WorkerOrAdmin,
    service:     Service,
    body:        CompletePayload | None = None,
) -> CallbackResult:
    processing_time = body.processing_time if body is not None else None
    job, applied = await service.acknowledge_complete(document_id, processing_time)
    return _result(job, applied, f"Run acknowledged; job is {job.status}.")
