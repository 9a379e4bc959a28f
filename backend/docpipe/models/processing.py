"""
SQLAlchemy ORM Model — Processing Jobs

One row per document, reused across retries and never deleted: the audit
timestamps on the row are the history.

Concurrency: version_id is SQLAlchemy's optimistic-lock column. Every UPDATE
is issued as `... WHERE id = :id AND version_id = :seen`; a concurrent writer
that bumped the version first makes the flush raise StaleDataError, and the
job store re-reads and re-applies the mutation.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from docpipe.models.documents import Base

_STAGE_VALUES = "('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')"


class ProcessingJob(Base):
    """
    Per-stage status plus retry bookkeeping for one document's ingestion.

    status is always derive_job_status() of the five stage columns; it is
    stored (not computed on read) so the jobs listing can filter on it.
    """

    __tablename__ = "processing_jobs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'RETRYING')",
            name="processing_jobs_status_check",
        ),
        CheckConstraint(f"download_status IN {_STAGE_VALUES}",   name="processing_jobs_download_check"),
        CheckConstraint(f"extraction_status IN {_STAGE_VALUES}", name="processing_jobs_extraction_check"),
        CheckConstraint(f"summary_status IN {_STAGE_VALUES}",    name="processing_jobs_summary_check"),
        CheckConstraint(f"questions_status IN {_STAGE_VALUES}",  name="processing_jobs_questions_check"),
        CheckConstraint(f"embedding_status IN {_STAGE_VALUES}",  name="processing_jobs_embedding_check"),
        CheckConstraint(
            "retry_count >= 0 AND retry_count <= max_retries",
            name="processing_jobs_retry_bounds_check",
        ),
        Index("idx_processing_jobs_status",  "status"),
        Index("idx_processing_jobs_listing", "created_at", "next_attempt_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # Aggregate + per-stage state
    status:            Mapped[str] = mapped_column(Text, nullable=False, default="PENDING", server_default="PENDING")
    download_status:   Mapped[str] = mapped_column(Text, nullable=False, default="PENDING", server_default="PENDING")
    extraction_status: Mapped[str] = mapped_column(Text, nullable=False, default="PENDING", server_default="PENDING")
    summary_status:    Mapped[str] = mapped_column(Text, nullable=False, default="PENDING", server_default="PENDING")
    questions_status:  Mapped[str] = mapped_column(Text, nullable=False, default="PENDING", server_default="PENDING")
    embedding_status:  Mapped[str] = mapped_column(Text, nullable=False, default="PENDING", server_default="PENDING")

    # Retry bookkeeping
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3, server_default="3")

    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at:    Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at:       Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Stage output counters
    pages_extracted:     Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    words_extracted:     Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    summary_length:      Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    questions_generated: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    embeddings_created:  Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    processing_time:     Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="Worker wall time, ms")

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # eager_defaults: created_at/updated_at come back via RETURNING so the row
    # stays readable after its session closes
    __mapper_args__ = {"version_id_col": version_id, "eager_defaults": True}

    def __repr__(self) -> str:
        return (
            f"<ProcessingJob id={self.id} document={self.document_id} "
            f"status={self.status} retries={self.retry_count}/{self.max_retries}>"
        )
