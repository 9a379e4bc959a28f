"""
Suggested Questions — Q&A pairs shown beside a document's chat.

Two writers, two rules:

  questions callback   replace_ai_questions(): delete every AI-generated row,
                       insert the new set (display_order = list position).
                       Runs inside the callback's unit of work so the stage
                       transition and the new rows commit together.

  operators            QuestionService.add() / delete(): manual rows, never
                       touched by AI replacement.
"""

from __future__ import annotations

import logging
from typing import Iterable
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from docpipe.core.exceptions import DocumentNotFound, QuestionNotFound
from docpipe.models.documents import Document, SuggestedQuestion
from docpipe.schemas.chat import SuggestedQuestionCreate
from docpipe.schemas.processing import QuestionItem

logger = logging.getLogger(__name__)


async def replace_ai_questions(
    db:          AsyncSession,
    document_id: UUID,
    items:       Iterable[QuestionItem],
) -> int:
    """Swap the AI-generated question set for a document. Returns rows inserted."""
    await db.execute(
        delete(SuggestedQuestion).where(
            SuggestedQuestion.document_id == document_id,
            SuggestedQuestion.is_ai_generated.is_(True),
        )
    )

    inserted = 0
    for position, item in enumerate(items):
        db.add(
            SuggestedQuestion(
                document_id=document_id,
                question=item.question,
                answer=item.answer,
                display_order=position,
                is_ai_generated=True,
            )
        )
        inserted += 1

    logger.info("AI questions replaced | doc=%s count=%d", document_id, inserted)
    return inserted


class QuestionService:
    """Request-scoped; takes the route's session."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def list(self, document_id: UUID) -> list[SuggestedQuestion]:
        await self._require_document(document_id)
        result = await self._db.execute(
            select(SuggestedQuestion)
            .where(SuggestedQuestion.document_id == document_id)
            .order_by(SuggestedQuestion.display_order, SuggestedQuestion.created_at)
        )
        return list(result.scalars().all())

    async def add(self, document_id: UUID, body: SuggestedQuestionCreate) -> SuggestedQuestion:
        """Add a manual question. Appended after the last one when order is omitted."""
        await self._require_document(document_id)

        order = body.order
        if order is None:
            current_max = await self._db.scalar(
                select(func.max(SuggestedQuestion.display_order))
                .where(SuggestedQuestion.document_id == document_id)
            )
            order = 0 if current_max is None else current_max + 1

        question = SuggestedQuestion(
            document_id=document_id,
            question=body.question,
            answer=body.answer,
            display_order=order,
            is_ai_generated=False,
        )
        self._db.add(question)
        await self._db.flush()
        await self._db.refresh(question)

        logger.info("Manual question added | doc=%s question=%s", document_id, question.id)
        return question

    async def delete(self, document_id: UUID, question_id: UUID) -> None:
        result = await self._db.execute(
            select(SuggestedQuestion).where(
                SuggestedQuestion.id == question_id,
                SuggestedQuestion.document_id == document_id,
            )
        )
        question = result.scalars().first()
        if question is None:
            raise QuestionNotFound(question_id)

        await self._db.delete(question)
        await self._db.flush()
        logger.info("Question deleted | doc=%s question=%s", document_id, question_id)

    async def _require_document(self, document_id: UUID) -> None:
        if await self._db.get(Document, document_id) is None:
            raise DocumentNotFound(document_id)
