"""
Suggested Questions API Router

GET    /api/v1/documents/{document_id}/suggested-questions                 any JWT
POST   /api/v1/documents/{document_id}/suggested-questions                 admin
DELETE /api/v1/documents/{document_id}/suggested-questions/{question_id}   admin

AI-generated rows are written by the questions callback; these routes only
manage manual ones (deletion works on either kind).
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from docpipe.auth.dependencies import DB, AdminUser, CurrentUser
from docpipe.schemas.chat import SuggestedQuestionCreate, SuggestedQuestionResponse
from docpipe.schemas.processing import ErrorResponse
from docpipe.services.questions import QuestionService

router = APIRouter(
    prefix="/documents/{document_id}/suggested-questions",
    tags=["Suggested Questions"],
    responses={
        401: {"model": ErrorResponse, "description": "Missing or invalid JWT"},
        404: {"model": ErrorResponse, "description": "Document or question not found"},
    },
)


def get_question_service(db: DB) -> QuestionService:
    return QuestionService(db)


Service = Annotated[QuestionService, Depends(get_question_service)]


@router.get("", response_model=list[SuggestedQuestionResponse], summary="List suggested questions")
async def list_questions(
    document_id: UUID,
    user:        CurrentUser,
    service:     Service,
) -> list[SuggestedQuestionResponse]:
    questions = await service.list(document_id)
    return [SuggestedQuestionResponse.model_validate(q) for q in questions]


@router.post(
    "",
    response_model=SuggestedQuestionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a manual question",
    responses={403: {"model": ErrorResponse, "description": "Admin role required"}},
)
async def add_question(
    document_id: UUID,
    body:        SuggestedQuestionCreate,
    user:        AdminUser,
    service:     Service,
) -> SuggestedQuestionResponse:
    question = await service.add(document_id, body)
    return SuggestedQuestionResponse.model_validate(question)


@router.delete(
    "/{question_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a question",
    responses={403: {"model": ErrorResponse, "description": "Admin role required"}},
)
async def delete_question(
    document_id: UUID,
    question_id: UUID,
    user:        AdminUser,
    service:     Service,
) -> Response:
    await service.delete(document_id, question_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
