"""
Job Record Store — optimistic read-modify-write over processing_jobs.

Every mutation runs as:

    for attempt in 1..N:
        open a fresh unit of work
        re-read the job row (and anything else the mutation touches)
        apply the mutation            ← may also write document artifacts
        recompute aggregate status
        flush                         ← UPDATE ... WHERE version_id = :seen
        commit
    on StaleDataError: another writer won, go round again
    on IntegrityError: another writer inserted the same artifact rows
                       (e.g. one embedding version twice), go round again

Two callbacks for different stages therefore never clobber each other: the
loser re-reads the winner's row and applies its own stage on top. Two
deliveries of the same callback collapse into one: the replay finds the
stage COMPLETED and reports applied=False.

Mutations are plain async callables `(job, db) -> bool`. Returning False means
"nothing to do" (an idempotent duplicate); the store then skips the flush and
reports applied=False. Exceptions raised by a mutation (InvalidState,
RetryLimitExceeded, ...) abort the unit of work with no change.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from docpipe.core.config import settings
from docpipe.core.exceptions import DocumentNotFound, InvalidState, JobNotFound
from docpipe.db.session import SessionFactory, get_admin_db
from docpipe.models.documents import Document
from docpipe.models.processing import ProcessingJob
from docpipe.processing.status import (
    STAGE_ORDER,
    JobStatus,
    StageStatus,
    derive_job_status,
    stage_statuses,
)

logger = logging.getLogger(__name__)

Mutation = Callable[[ProcessingJob, AsyncSession], Awaitable[bool]]

# Statuses a job must be in before it can run again
RETRYABLE_STATUSES: tuple[str, ...] = (JobStatus.FAILED.value, JobStatus.COMPLETED.value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def refresh_aggregate(job: ProcessingJob, now: datetime | None = None) -> JobStatus:
    """Recompute job.status from its stages and stamp completed_at on first completion."""
    status = derive_job_status(stage_statuses(job))
    job.status = status.value
    if status is JobStatus.COMPLETED and job.completed_at is None:
        job.completed_at = now or utcnow()
    return status


class JobStore:
    """
    Stateless accessor; safe to share across requests.

    session_factory defaults to get_admin_db. Tests pass a factory yielding a
    mock session.
    """

    def __init__(
        self,
        session_factory: SessionFactory = get_admin_db,
        max_attempts:    int | None     = None,
    ) -> None:
        self._session_factory = session_factory
        self._max_attempts    = max_attempts or settings.job_update_max_attempts

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, job_id: UUID) -> ProcessingJob:
        async with self._session_factory() as db:
            job = await db.get(ProcessingJob, job_id)
        if job is None:
            raise JobNotFound(job_id=job_id)
        return job

    async def find_by_document(self, document_id: UUID) -> ProcessingJob | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ProcessingJob).where(ProcessingJob.document_id == document_id)
            )
            return result.scalars().first()

    async def list_jobs(
        self,
        page:        int,
        limit:       int,
        status:      JobStatus | None = None,
        document_id: UUID | None      = None,
    ) -> tuple[list[tuple[ProcessingJob, str]], int]:
        """
        One page of jobs with their document titles, plus the total count.

        Ordered newest first, then by the next scheduled attempt.
        """
        filters = []
        if status is not None:
            filters.append(ProcessingJob.status == status.value)
        if document_id is not None:
            filters.append(ProcessingJob.document_id == document_id)

        async with self._session_factory() as db:
            total = await db.scalar(
                select(func.count()).select_from(ProcessingJob).where(*filters)
            )
            result = await db.execute(
                select(ProcessingJob, Document.title)
                .join(Document, Document.id == ProcessingJob.document_id)
                .where(*filters)
                .order_by(
                    ProcessingJob.created_at.desc(),
                    ProcessingJob.next_attempt_at.asc().nulls_last(),
                )
                .offset((page - 1) * limit)
                .limit(limit)
            )
            rows = [(job, title) for job, title in result.all()]

        return rows, int(total or 0)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, document_id: UUID) -> tuple[ProcessingJob, Document]:
        """
        Insert a PENDING job for a document that has none. Returns the job and its document.

        Losing the insert race to a concurrent submit (unique document_id)
        raises InvalidState carrying the winner's status.
        """
        try:
            async with self._session_factory() as db:
                document = await db.get(Document, document_id)
                if document is None:
                    raise DocumentNotFound(document_id)
                job = ProcessingJob(
                    id=uuid.uuid4(),
                    document_id=document_id,
                    status=JobStatus.PENDING.value,
                    **{stage.column: StageStatus.PENDING.value for stage in STAGE_ORDER},
                    max_retries=settings.processing_max_retries,
                    retry_count=0,
                    next_attempt_at=utcnow(),
                )
                db.add(job)
                await db.flush()
        except IntegrityError:
            existing = await self.find_by_document(document_id)
            current  = existing.status if existing is not None else JobStatus.PENDING.value
            logger.warning("Job create lost race | doc=%s winner_status=%s", document_id, current)
            raise InvalidState(current, RETRYABLE_STATUSES) from None

        logger.info("Job created | job=%s doc=%s", job.id, document_id)
        return job, document

    async def update(
        self,
        mutation:    Mutation,
        *,
        job_id:      UUID | None = None,
        document_id: UUID | None = None,
    ) -> tuple[ProcessingJob, bool]:
        """
        Apply mutation to the freshly read job, retrying on lost races.

        Returns (job, applied). Raises JobNotFound, anything the mutation
        raises, or the StaleDataError / IntegrityError of the last attempt
        once max_attempts is exhausted.
        """
        if (job_id is None) == (document_id is None):
            raise ValueError("exactly one of job_id or document_id is required")

        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self._session_factory() as db:
                    job = await self._load(db, job_id=job_id, document_id=document_id)
                    applied = await mutation(job, db)
                    if applied:
                        refresh_aggregate(job)
                        await db.flush()
                return job, applied

            except (StaleDataError, IntegrityError) as exc:
                logger.warning(
                    "Job update lost race | job=%s doc=%s attempt=%d/%d error=%s",
                    job_id, document_id, attempt, self._max_attempts, type(exc).__name__,
                )
                if attempt == self._max_attempts:
                    raise

        raise AssertionError("unreachable")   # pragma: no cover

    @staticmethod
    async def _load(
        db:          AsyncSession,
        job_id:      UUID | None,
        document_id: UUID | None,
    ) -> ProcessingJob:
        if job_id is not None:
            result = await db.execute(
                select(ProcessingJob)
                .where(ProcessingJob.id == job_id)
                .execution_options(populate_existing=True)
            )
        else:
            result = await db.execute(
                select(ProcessingJob)
                .where(ProcessingJob.document_id == document_id)
                .execution_options(populate_existing=True)
            )
        job = result.scalars().first()
        if job is None:
            raise JobNotFound(job_id=job_id, document_id=document_id)
        return job
