"""
Domain exceptions for the processing pipeline and chat engine.

Every exception carries the HTTP status and stable error_code used by the
exception handler in main.py to render a uniform ErrorResponse. Services
raise these; routes never translate them by hand.
"""

from __future__ import annotations

from uuid import UUID


class PipelineError(Exception):
    """Base class for all expected, user-visible pipeline failures."""

    status_code: int = 500
    error_code:  str = "PIPELINE_ERROR"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class JobNotFound(PipelineError):
    status_code = 404
    error_code  = "JOB_NOT_FOUND"

    def __init__(self, job_id: UUID | None = None, document_id: UUID | None = None) -> None:
        if job_id is not None:
            message = f"Processing job '{job_id}' was not found."
        else:
            message = f"No processing job exists for document '{document_id}'."
        super().__init__(message)


class DocumentNotFound(PipelineError):
    status_code = 404
    error_code  = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: UUID) -> None:
        super().__init__(f"Document '{document_id}' was not found.")


class QuestionNotFound(PipelineError):
    status_code = 404
    error_code  = "QUESTION_NOT_FOUND"

    def __init__(self, question_id: UUID) -> None:
        super().__init__(f"Suggested question '{question_id}' was not found.")


# ---------------------------------------------------------------------------
# State conflicts
# ---------------------------------------------------------------------------

class InvalidState(PipelineError):
    status_code = 409
    error_code  = "INVALID_STATE"

    def __init__(
        self,
        current_status: str,
        allowed:        tuple[str, ...],
        subject:        str = "Job",
    ) -> None:
        super().__init__(
            f"{subject} is {current_status}; operation requires one of: {', '.join(allowed)}.",
            details={"current_status": current_status, "allowed_statuses": list(allowed)},
        )
        self.current_status = current_status


class RetryLimitExceeded(PipelineError):
    status_code = 409
    error_code  = "RETRY_LIMIT_EXCEEDED"

    def __init__(self, retry_count: int, max_retries: int) -> None:
        super().__init__(
            f"Maximum retry limit reached ({retry_count}/{max_retries}).",
            details={"retry_count": retry_count, "max_retries": max_retries},
        )
        self.retry_count = retry_count
        self.max_retries = max_retries


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------

class DispatchError(PipelineError):
    """The processing worker was unreachable or rejected the trigger."""

    status_code = 502
    error_code  = "DISPATCH_FAILED"

    def __init__(self, message: str, worker_status: int | None = None) -> None:
        super().__init__(
            message,
            details={"worker_status": worker_status} if worker_status is not None else None,
        )
        self.worker_status = worker_status


class EmbeddingError(PipelineError):
    """Query embedding failed. Recovered inside the answer composer."""

    status_code = 502
    error_code  = "EMBEDDING_FAILED"


class NoUserMessage(PipelineError):
    status_code = 400
    error_code  = "NO_USER_MESSAGE"

    def __init__(self) -> None:
        super().__init__("No user message found in conversation history.")


class AnswerGenerationError(PipelineError):
    """Every language-model provider failed; the only chat error users see."""

    status_code = 503
    error_code  = "ANSWER_GENERATION_FAILED"
