"""
SQLAlchemy ORM Models — Documents & Suggested Questions

A Document is the library item being processed. Besides catalogue metadata it
owns the artifacts written back by the processing worker:

  content artifact   extracted_content, content_hash, page/word counts, size
  summary            AI summary text
  audiobook asset    URLs + drive file id (not a pipeline stage)

Artifacts are overwritten, not versioned, when a stage re-runs. Embedding
chunks are the exception; see models/embeddings.py.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model — documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    One library document (book) plus the artifacts the worker produced for it.

    extraction_status mirrors the job's extraction stage so readers of the
    document never need to join processing_jobs to know whether content exists.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "extraction_status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')",
            name="documents_extraction_status_check",
        ),
        Index("idx_documents_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )

    # Catalogue metadata used in prompts and dispatch payloads
    title:         Mapped[str]       = mapped_column(Text, nullable=False)
    document_type: Mapped[str]       = mapped_column(Text, nullable=False, default="ebook", server_default="ebook")
    authors:       Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False, default=list, server_default="{}")
    categories:    Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False, default=list, server_default="{}")

    # Source file locations handed to the worker
    source_url: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Shareable link to the uploaded file",
    )
    direct_source_url: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Direct-download link the worker fetches from",
    )

    # Content artifact
    extracted_content:  Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content_hash:       Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="Change-detection fingerprint")
    content_page_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    content_word_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    content_size:       Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, comment="UTF-8 bytes")
    extraction_status:  Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="PENDING",
        server_default="PENDING",
    )
    extracted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Summary artifact
    summary:              Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    summary_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    questions_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Audiobook asset
    audiobook_url:           Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    audiobook_direct_url:    Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    audiobook_drive_file_id: Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    audiobook_duration:      Mapped[Optional[int]]      = mapped_column(Integer, nullable=True, comment="Seconds")
    audiobook_status:        Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    audiobook_generated_at:  Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

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

    def __repr__(self) -> str:
        return f"<Document id={self.id} title={self.title!r} extraction={self.extraction_status}>"


# ---------------------------------------------------------------------------
# SuggestedQuestion model — suggested_questions
# ---------------------------------------------------------------------------

class SuggestedQuestion(Base):
    """
    Q&A pair shown next to the chat.

    AI-generated rows are replaced wholesale (delete then insert) whenever the
    questions stage completes. Manual rows (is_ai_generated=False) survive.
    """

    __tablename__ = "suggested_questions"
    __table_args__ = (
        Index("idx_suggested_questions_document", "document_id", "display_order"),
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
    )
    question:        Mapped[str]  = mapped_column(Text, nullable=False)
    answer:          Mapped[str]  = mapped_column(Text, nullable=False)
    display_order:   Mapped[int]  = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_ai_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<SuggestedQuestion id={self.id} document={self.document_id} "
            f"ai={self.is_ai_generated}>"
        )
