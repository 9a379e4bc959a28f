"""
Worker Callback Service — applies stage reports from the processing worker.

Each callback is one optimistic job update (see processing/jobs.py):

  ┌──────────────────────────────────────────────────────────────────┐
  │ 1. re-read job row                          (fresh unit of work) │
  │ 2. stage already COMPLETED?  → applied=False, nothing written    │
  │ 3. stage FAILED?             → InvalidState (retry first)        │
  │ 4. write the document artifact              (same transaction)   │
  │ 5. stage → COMPLETED, job counters updated                       │
  │ 6. aggregate status recomputed, flush against version_id         │
  └──────────────────────────────────────────────────────────────────┘

Because the artifact write and the stage transition share one transaction a
reader never sees content without a COMPLETED stage, or the reverse. A lost
race on version_id replays the whole mutation, artifact included.

Callbacks may arrive in any order; nothing here assumes download finished
before extraction reports in.
"""

from __future__ import annotations

import base64
import logging
from typing import Awaitable, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from docpipe.core.exceptions import DocumentNotFound, InvalidState
from docpipe.db.session import SessionFactory, get_admin_db
from docpipe.models.documents import Document
from docpipe.models.processing import ProcessingJob
from docpipe.processing.jobs import JobStore, utcnow
from docpipe.processing.status import (
    JobStatus,
    Stage,
    StageStatus,
    can_transition,
    derive_job_status,
    pick_failing_stage,
    stage_statuses,
)
from docpipe.schemas.processing import (
    AudiobookPayload,
    ContentPayload,
    EmbeddingPayload,
    QuestionsPayload,
    SummaryPayload,
)
from docpipe.services.questions import replace_ai_questions
from docpipe.vectorstore.base import ChunkRecord
from docpipe.vectorstore.pgvector_store import PgVectorIndex

logger = logging.getLogger(__name__)

# Writes a stage's artifact; runs inside the job's unit of work
ArtifactWriter = Callable[[ProcessingJob, Document, AsyncSession], Awaitable[None]]

_CONTENT_HASH_LENGTH = 32


def content_fingerprint(content: str) -> str:
    """Change-detection hash stored beside extracted content."""
    return base64.b64encode(content.encode("utf-8")).decode("ascii")[:_CONTENT_HASH_LENGTH]


async def _load_document(db: AsyncSession, document_id: UUID) -> Document:
    document = await db.get(Document, document_id)
    if document is None:
        raise DocumentNotFound(document_id)
    return document


class CallbackService:

    def __init__(
        self,
        store:           JobStore,
        session_factory: SessionFactory = get_admin_db,
    ) -> None:
        self._store           = store
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Stage start
    # ------------------------------------------------------------------

    async def start_stage(self, document_id: UUID, stage: Stage) -> tuple[ProcessingJob, bool]:
        """Move one stage to PROCESSING. Repeats and late starts are no-ops."""

        async def _start(job: ProcessingJob, db: AsyncSession) -> bool:
            current = StageStatus(getattr(job, stage.column))
            if current in (StageStatus.PROCESSING, StageStatus.COMPLETED):
                return False
            if not can_transition(current, StageStatus.PROCESSING):
                raise InvalidState(
                    current.value,
                    (StageStatus.PENDING.value,),
                    subject=f"Stage '{stage.value}'",
                )
            setattr(job, stage.column, StageStatus.PROCESSING.value)
            if stage is Stage.EXTRACTION:
                document = await _load_document(db, job.document_id)
                document.extraction_status = StageStatus.PROCESSING.value
            return True

        job, applied = await self._store.update(_start, document_id=document_id)
        logger.info(
            "Stage started | doc=%s stage=%s applied=%s status=%s",
            document_id, stage.value, applied, job.status,
        )
        return job, applied

    # ------------------------------------------------------------------
    # Stage completions
    # ------------------------------------------------------------------

    async def complete_download(self, document_id: UUID) -> tuple[ProcessingJob, bool]:
        return await self._complete(document_id, Stage.DOWNLOAD, None)

    async def record_content(
        self,
        document_id: UUID,
        payload:     ContentPayload,
    ) -> tuple[ProcessingJob, bool]:

        async def _write(job: ProcessingJob, document: Document, db: AsyncSession) -> None:
            content = payload.extracted_content
            document.extracted_content  = content
            document.content_hash       = content_fingerprint(content)
            document.content_size       = len(content.encode("utf-8"))
            document.content_page_count = payload.content_page_count
            document.content_word_count = payload.content_word_count
            document.extraction_status  = StageStatus.COMPLETED.value
            document.extracted_at       = utcnow()

            job.pages_extracted = payload.content_page_count
            job.words_extracted = payload.content_word_count

        return await self._complete(document_id, Stage.EXTRACTION, _write)

    async def record_summary(
        self,
        document_id: UUID,
        payload:     SummaryPayload,
    ) -> tuple[ProcessingJob, bool]:

        async def _write(job: ProcessingJob, document: Document, db: AsyncSession) -> None:
            document.summary              = payload.summary
            document.summary_generated_at = utcnow()
            job.summary_length            = len(payload.summary)

        return await self._complete(document_id, Stage.SUMMARY, _write)

    async def record_questions(
        self,
        document_id: UUID,
        payload:     QuestionsPayload,
    ) -> tuple[ProcessingJob, bool]:

        async def _write(job: ProcessingJob, document: Document, db: AsyncSession) -> None:
            inserted = await replace_ai_questions(db, document.id, payload.questions)
            document.questions_generated_at = utcnow()
            job.questions_generated         = inserted

        return await self._complete(document_id, Stage.QUESTIONS, _write)

    async def record_embedding(
        self,
        document_id: UUID,
        payload:     EmbeddingPayload,
    ) -> tuple[ProcessingJob, bool]:
        """
        Mark embedding COMPLETED. When chunks are supplied they become a new
        embedding version in the same transaction; otherwise the worker has
        written the vectors itself and only the count is recorded.
        """

        async def _write(job: ProcessingJob, document: Document, db: AsyncSession) -> None:
            created = payload.embeddings_created
            if payload.chunks:
                version = await PgVectorIndex(db).add_version(
                    document.id,
                    [
                        ChunkRecord(
                            chunk_index=c.chunk_index,
                            chunk_text=c.chunk_text,
                            embedding=c.embedding,
                            page_number=c.page_number,
                            word_count=c.word_count,
                        )
                        for c in payload.chunks
                    ],
                )
                logger.info("Embedding chunks stored | doc=%s version=%d", document.id, version)
                if created is None:
                    created = len(payload.chunks)
            job.embeddings_created = created

        return await self._complete(document_id, Stage.EMBEDDING, _write)

    # ------------------------------------------------------------------
    # Non-stage asset
    # ------------------------------------------------------------------

    async def record_audiobook(self, document_id: UUID, payload: AudiobookPayload) -> Document:
        """Audiobook URLs live on the document only; the job is untouched."""
        async with self._session_factory() as db:
            document = await _load_document(db, document_id)
            document.audiobook_url           = payload.audiobook_url
            document.audiobook_direct_url    = payload.audiobook_direct_url
            document.audiobook_drive_file_id = payload.audiobook_drive_file_id
            document.audiobook_duration      = payload.audiobook_duration
            document.audiobook_status        = StageStatus.COMPLETED.value
            document.audiobook_generated_at  = utcnow()
            await db.flush()

        logger.info("Audiobook recorded | doc=%s file=%s", document_id, payload.audiobook_drive_file_id)
        return document

    # ------------------------------------------------------------------
    # Failure and end-of-run reports
    # ------------------------------------------------------------------

    async def report_error(
        self,
        document_id: UUID,
        error:       str,
        stage:       Stage | None = None,
    ) -> tuple[ProcessingJob, bool]:
        """
        Fail one stage. Completed stages are never touched, so an error naming
        a COMPLETED stage, or an already FAILED one, changes nothing. Retry is
        left to the operator.
        """
        blamed: dict[str, Stage | None] = {}

        async def _fail(job: ProcessingJob, db: AsyncSession) -> bool:
            statuses = stage_statuses(job)
            target   = stage or pick_failing_stage(statuses)
            blamed["stage"] = target
            if target is None:
                return False

            current = statuses[target]
            if current in (StageStatus.COMPLETED, StageStatus.FAILED):
                return False

            now = utcnow()
            setattr(job, target.column, StageStatus.FAILED.value)
            job.error_message = error
            if job.failed_at is None:
                job.failed_at = now
            if target is Stage.EXTRACTION:
                document = await _load_document(db, job.document_id)
                document.extraction_status = StageStatus.FAILED.value
            return True

        job, applied = await self._store.update(_fail, document_id=document_id)
        target = blamed.get("stage")
        logger.warning(
            "Stage failed | doc=%s stage=%s applied=%s status=%s error=%s",
            document_id, target.value if target else None, applied, job.status, error,
        )
        return job, applied

    async def acknowledge_complete(
        self,
        document_id:     UUID,
        processing_time: int | None = None,
    ) -> tuple[ProcessingJob, bool]:
        """End-of-run marker. Stores the worker's wall time; never forces a stage."""

        async def _ack(job: ProcessingJob, db: AsyncSession) -> bool:
            changed = False
            if processing_time is not None and job.processing_time != processing_time:
                job.processing_time = processing_time
                changed = True
            if derive_job_status(stage_statuses(job)) is JobStatus.COMPLETED and job.completed_at is None:
                changed = True
            return changed

        job, applied = await self._store.update(_ack, document_id=document_id)
        logger.info(
            "Run acknowledged | doc=%s status=%s processing_time=%s",
            document_id, job.status, job.processing_time,
        )
        return job, applied

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _complete(
        self,
        document_id: UUID,
        stage:       Stage,
        write:       ArtifactWriter | None,
    ) -> tuple[ProcessingJob, bool]:

        async def _mutation(job: ProcessingJob, db: AsyncSession) -> bool:
            current = StageStatus(getattr(job, stage.column))
            if current is StageStatus.COMPLETED:
                return False
            if not can_transition(current, StageStatus.COMPLETED):
                raise InvalidState(
                    current.value,
                    (StageStatus.PENDING.value, StageStatus.PROCESSING.value),
                    subject=f"Stage '{stage.value}'",
                )
            if write is not None:
                document = await _load_document(db, job.document_id)
                await write(job, document, db)
            setattr(job, stage.column, StageStatus.COMPLETED.value)
            return True

        job, applied = await self._store.update(_mutation, document_id=document_id)
        if applied:
            logger.info(
                "Stage completed | doc=%s stage=%s status=%s",
                document_id, stage.value, job.status,
            )
        else:
            logger.info("Duplicate stage callback ignored | doc=%s stage=%s", document_id, stage.value)
        return job, applied
