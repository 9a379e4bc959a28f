"""
Processing Jobs API Router (operators)

POST /api/v1/processing/jobs                  submit a document for processing
GET  /api/v1/processing/jobs                  paginated listing, filterable
GET  /api/v1/processing/jobs/{job_id}         one job
POST /api/v1/processing/jobs/{job_id}/retry   explicit retry + re-dispatch

All routes require an admin JWT. Domain failures (JobNotFound,
InvalidState, RetryLimitExceeded, DispatchError) are raised by the services
and rendered by the PipelineError handler in main.py.

Retry lifecycle:
  ┌──────────────────────────────────────────────────────────────┐
  │ 1. guard: FAILED/COMPLETED, retry_count < max_retries  (409) │
  │ 2. reset: retry_count+1, stages PENDING, errors cleared      │
  │ 3. dispatch to worker                                        │
  │ 4. dispatch failed → job FAILED with dispatch error    (502) │
  └──────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from docpipe.auth.dependencies import AdminUser
from docpipe.processing.jobs import JobStore
from docpipe.processing.status import JobStatus
from docpipe.schemas.processing import (
    ErrorResponse,
    JobListResponse,
    JobResponse,
    Pagination,
    SubmitJobRequest,
)
from docpipe.services.dispatcher import ProcessingDispatcher
from docpipe.services.retry import RetryController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/processing/jobs", tags=["Processing Jobs"])


# ---------------------------------------------------------------------------
# Service providers (overridden in tests via app.dependency_overrides)
# ---------------------------------------------------------------------------

def get_job_store() -> JobStore:
    return JobStore()


def get_dispatcher() -> ProcessingDispatcher:
    return ProcessingDispatcher()


def get_retry_controller(
    store:      Annotated[JobStore, Depends(get_job_store)],
    dispatcher: Annotated[ProcessingDispatcher, Depends(get_dispatcher)],
) -> RetryController:
    return RetryController(store, dispatcher)


_ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing or invalid JWT"},
    403: {"model": ErrorResponse, "description": "Admin role required"},
    404: {"model": ErrorResponse, "description": "Job or document not found"},
}


# ---------------------------------------------------------------------------
# POST /processing/jobs
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a document for processing",
    description=(
        "Creates the document's job (or re-runs a FAILED/COMPLETED one) and "
        "triggers the processing worker. Returns as soon as the worker accepts."
    ),
    responses={
        **_ERROR_RESPONSES,
        409: {"model": ErrorResponse, "description": "Job in flight or retry limit reached"},
        502: {"model": ErrorResponse, "description": "Worker unreachable; job marked FAILED"},
    },
)
async def submit_job(
    body:       SubmitJobRequest,
    user:       AdminUser,
    controller: Annotated[RetryController, Depends(get_retry_controller)],
) -> JobResponse:
    logger.info("Submit requested | doc=%s by=%s", body.document_id, user.sub)
    job = await controller.submit(body.document_id)
    return JobResponse.model_validate(job)


# ---------------------------------------------------------------------------
# GET /processing/jobs
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=JobListResponse,
    summary="List processing jobs",
    description="Newest first, then by next scheduled attempt. Filter by status and/or document.",
    responses=_ERROR_RESPONSES,
)
async def list_jobs(
    user:        AdminUser,
    store:       Annotated[JobStore, Depends(get_job_store)],
    page:        int              = Query(1, ge=1),
    limit:       int              = Query(20, ge=1, le=100),
    job_status:  JobStatus | None = Query(None, alias="status"),
    document_id: UUID | None      = Query(None),
) -> JobListResponse:
    rows, total = await store.list_jobs(page=page, limit=limit, status=job_status, document_id=document_id)
    jobs = [
        JobResponse.model_validate(job).model_copy(update={"document_title": title})
        for job, title in rows
    ]
    return JobListResponse(jobs=jobs, pagination=Pagination.build(page, limit, total))


# ---------------------------------------------------------------------------
# GET /processing/jobs/{job_id}
# ---------------------------------------------------------------------------

@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get one processing job",
    responses=_ERROR_RESPONSES,
)
async def get_job(
    job_id: UUID,
    user:   AdminUser,
    store:  Annotated[JobStore, Depends(get_job_store)],
) -> JobResponse:
    return JobResponse.model_validate(await store.get(job_id))


# ---------------------------------------------------------------------------
# POST /processing/jobs/{job_id}/retry
# ---------------------------------------------------------------------------

@router.post(
    "/{job_id}/retry",
    response_model=JobResponse,
    summary="Retry a failed or completed job",
    responses={
        **_ERROR_RESPONSES,
        409: {"model": ErrorResponse, "description": "INVALID_STATE or RETRY_LIMIT_EXCEEDED"},
        502: {"model": ErrorResponse, "description": "Worker unreachable; job rolled back to FAILED"},
    },
)
async def retry_job(
    job_id:     UUID,
    user:       AdminUser,
    controller: Annotated[RetryController, Depends(get_retry_controller)],
) -> JobResponse:
    logger.info("Retry requested | job=%s by=%s", job_id, user.sub)
    job = await controller.retry(job_id)
    return JobResponse.model_validate(job)
