"""
Retry Controller — explicit (operator-triggered) re-runs of a processing job.

retry(job_id):
  1. Guard    job must be FAILED or COMPLETED            else InvalidState
              retry_count < max_retries                  else RetryLimitExceeded
  2. Reset    retry_count += 1, all stages PENDING, timestamps/error/counters
              cleared, next_attempt_at = now           (one optimistic update)
  3. Dispatch ask the worker to run the pipeline again
  4. Rollback on DispatchError: download stage FAILED + dispatch error
              message, so the job reads FAILED instead of sitting in PENDING

submit(document_id) is the first-run entry point: it creates the job when
the document has none, otherwise it behaves exactly like retry().

There is no background scheduler. next_attempt_at is bookkeeping for
whatever external scheduler decides to call retry().
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from docpipe.core.exceptions import DispatchError, DocumentNotFound, InvalidState, RetryLimitExceeded
from docpipe.models.documents import Document
from docpipe.models.processing import ProcessingJob
from docpipe.processing.jobs import RETRYABLE_STATUSES, JobStore, utcnow
from docpipe.processing.status import STAGE_ORDER, JobStatus, Stage, StageStatus
from docpipe.services.dispatcher import DispatchMetadata, ProcessingDispatcher

logger = logging.getLogger(__name__)


_COUNTER_FIELDS = (
    "pages_extracted",
    "words_extracted",
    "summary_length",
    "questions_generated",
    "embeddings_created",
    "processing_time",
)


def reset_for_retry(job: ProcessingJob) -> None:
    """
    Apply the retry reset in place. Raises without touching the job when the
    guard fails.
    """
    if job.status not in RETRYABLE_STATUSES:
        raise InvalidState(job.status, RETRYABLE_STATUSES)
    if job.retry_count >= job.max_retries:
        raise RetryLimitExceeded(job.retry_count, job.max_retries)

    job.retry_count += 1
    for stage in STAGE_ORDER:
        setattr(job, stage.column, StageStatus.PENDING.value)
    job.status          = JobStatus.PENDING.value
    job.last_attempt_at = None
    job.completed_at    = None
    job.failed_at       = None
    job.error_message   = None
    for name in _COUNTER_FIELDS:
        setattr(job, name, None)
    job.next_attempt_at = utcnow()


class RetryController:

    def __init__(
        self,
        store:      JobStore,
        dispatcher: ProcessingDispatcher,
    ) -> None:
        self._store      = store
        self._dispatcher = dispatcher

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def retry(self, job_id: UUID) -> ProcessingJob:
        captured: dict = {}

        async def _reset(job: ProcessingJob, db: AsyncSession) -> bool:
            document = await db.get(Document, job.document_id)
            if document is None:
                raise DocumentNotFound(job.document_id)
            reset_for_retry(job)
            captured["document"] = document
            return True

        job, _ = await self._store.update(_reset, job_id=job_id)
        logger.info(
            "Job reset for retry | job=%s doc=%s retry=%d/%d",
            job.id, job.document_id, job.retry_count, job.max_retries,
        )
        return await self._dispatch(job, captured["document"])

    async def submit(self, document_id: UUID) -> ProcessingJob:
        existing = await self._store.find_by_document(document_id)
        if existing is not None:
            return await self.retry(existing.id)

        job, document = await self._store.create(document_id)
        return await self._dispatch(job, document)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _dispatch(self, job: ProcessingJob, document: Document) -> ProcessingJob:
        try:
            await self._dispatcher.dispatch(
                document_id=document.id,
                source_url=document.source_url,
                direct_source_url=document.direct_source_url,
                metadata=DispatchMetadata(title=document.title, authors=list(document.authors or [])),
            )
        except DispatchError as exc:
            await self._mark_dispatch_failed(job.id, exc)
            raise

        async def _stamp(j: ProcessingJob, db: AsyncSession) -> bool:
            j.last_attempt_at = utcnow()
            return True

        job, _ = await self._store.update(_stamp, job_id=job.id)
        return job

    async def _mark_dispatch_failed(self, job_id: UUID, exc: DispatchError) -> None:
        message = f"Failed to dispatch to processing worker: {exc.message}"

        async def _fail(job: ProcessingJob, db: AsyncSession) -> bool:
            now = utcnow()
            setattr(job, Stage.DOWNLOAD.column, StageStatus.FAILED.value)
            job.error_message   = message
            job.failed_at       = now
            job.last_attempt_at = now
            return True

        await self._store.update(_fail, job_id=job_id)
        logger.error("Dispatch failed, job rolled back | job=%s error=%s", job_id, exc.message)

