"""
Unit Tests — Retry Controller
══════════════════════════════
Tests for:
  • reset_for_retry     — guards (status, retry limit) and the full reset
  • RetryController     — retry + dispatch, dispatch-failure rollback, submit
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from docpipe.core.exceptions import DispatchError, InvalidState, RetryLimitExceeded
from docpipe.services.dispatcher import DispatchMetadata, ProcessingDispatcher
from docpipe.services.retry import RetryController, reset_for_retry
from tests.conftest import bind_rows, result_with

ALL_COMPLETED = dict(
    status="COMPLETED",
    download_status="COMPLETED",
    extraction_status="COMPLETED",
    summary_status="COMPLETED",
    questions_status="COMPLETED",
    embedding_status="COMPLETED",
)


@pytest.fixture
def dispatcher():
    d = MagicMock(spec=ProcessingDispatcher)
    d.dispatch = AsyncMock(return_value=None)
    return d


@pytest.fixture
def controller(job_store, dispatcher):
    return RetryController(job_store, dispatcher)


# ─────────────────────────────────────────────────────────────────────────────
# reset_for_retry
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.processing
class TestResetForRetry:

    def test_failed_job_is_reset(self, make_job):
        job = make_job(
            status="FAILED",
            download_status="COMPLETED",
            extraction_status="FAILED",
            retry_count=1,
            error_message="extraction crashed",
            pages_extracted=12,
            processing_time=4000,
        )
        reset_for_retry(job)

        assert job.retry_count == 2
        assert job.status == "PENDING"
        assert job.download_status == "PENDING"
        assert job.extraction_status == "PENDING"
        assert job.error_message is None
        assert job.failed_at is None
        assert job.completed_at is None
        assert job.pages_extracted is None
        assert job.processing_time is None
        assert job.next_attempt_at is not None

    def test_completed_job_can_be_rerun(self, make_job):
        job = make_job(**ALL_COMPLETED)
        reset_for_retry(job)
        assert job.retry_count == 1
        assert job.status == "PENDING"

    @pytest.mark.parametrize("status", ["PENDING", "PROCESSING", "RETRYING"])
    def test_in_flight_job_is_rejected(self, make_job, status):
        job = make_job(status=status, retry_count=0)
        with pytest.raises(InvalidState) as exc_info:
            reset_for_retry(job)
        assert exc_info.value.status_code == 409
        assert job.retry_count == 0

    def test_status_checked_before_limit(self, make_job):
        job = make_job(status="PROCESSING", retry_count=3, max_retries=3)
        with pytest.raises(InvalidState):
            reset_for_retry(job)

    def test_retry_limit_enforced(self, make_job):
        job = make_job(status="FAILED", download_status="FAILED", retry_count=3, max_retries=3)
        with pytest.raises(RetryLimitExceeded) as exc_info:
            reset_for_retry(job)
        assert exc_info.value.details == {"retry_count": 3, "max_retries": 3}
        assert job.status == "FAILED"
        assert job.retry_count == 3


# ─────────────────────────────────────────────────────────────────────────────
# RetryController
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.processing
class TestRetryController:

    async def test_retry_resets_and_dispatches(
        self, controller, dispatcher, mock_db, make_job, make_document,
    ):
        job = make_job(status="FAILED", download_status="FAILED", error_message="boom")
        document = make_document()
        bind_rows(mock_db, job=job, document=document)

        result = await controller.retry(job.id)

        assert result.retry_count == 1
        assert result.status == "PENDING"
        assert result.last_attempt_at is not None
        dispatcher.dispatch.assert_awaited_once_with(
            document_id=document.id,
            source_url=document.source_url,
            direct_source_url=document.direct_source_url,
            metadata=DispatchMetadata(title="The Test Book", authors=["A. Author"]),
        )

    async def test_dispatch_failure_marks_job_failed(
        self, controller, dispatcher, mock_db, make_job, make_document,
    ):
        job = make_job(**ALL_COMPLETED)
        bind_rows(mock_db, job=job, document=make_document())
        dispatcher.dispatch.side_effect = DispatchError("Worker returned 503: busy", worker_status=503)

        with pytest.raises(DispatchError):
            await controller.retry(job.id)

        assert job.retry_count == 1
        assert job.download_status == "FAILED"
        assert job.status == "FAILED"
        assert job.failed_at is not None
        assert job.error_message.startswith("Failed to dispatch to processing worker")

    async def test_retry_limit_does_not_dispatch(
        self, controller, dispatcher, mock_db, make_job, make_document,
    ):
        job = make_job(status="FAILED", download_status="FAILED", retry_count=3)
        bind_rows(mock_db, job=job, document=make_document())

        with pytest.raises(RetryLimitExceeded):
            await controller.retry(job.id)
        dispatcher.dispatch.assert_not_awaited()
        mock_db.flush.assert_not_awaited()

    async def test_submit_creates_job_for_new_document(
        self, controller, dispatcher, mock_db, make_document,
    ):
        document = make_document()
        added = []
        mock_db.add.side_effect = added.append

        async def _execute(stmt):
            return result_with(added[0] if added else None)

        async def _get(model, key):
            return document if key == document.id else None

        mock_db.execute = AsyncMock(side_effect=_execute)
        mock_db.get     = AsyncMock(side_effect=_get)

        job = await controller.submit(document.id)

        assert job is added[0]
        assert job.retry_count == 0
        assert job.last_attempt_at is not None
        dispatcher.dispatch.assert_awaited_once()

    async def test_submit_existing_job_goes_through_retry(
        self, controller, dispatcher, mock_db, make_job, make_document,
    ):
        job = make_job(**ALL_COMPLETED)
        bind_rows(mock_db, job=job, document=make_document())

        result = await controller.submit(job.document_id)

        assert result.retry_count == 1
        mock_db.add.assert_not_called()
        dispatcher.dispatch.assert_awaited_once()

    async def test_submit_in_flight_job_conflicts(
        self, controller, dispatcher, mock_db, make_job, make_document,
    ):
        job = make_job(status="PROCESSING", download_status="PROCESSING")
        bind_rows(mock_db, job=job, document=make_document())

        with pytest.raises(InvalidState):
            await controller.submit(job.document_id)
        dispatcher.dispatch.assert_not_awaited()

    async def test_retry_unknown_job(self, controller, mock_db):
        from docpipe.core.exceptions import JobNotFound
        with pytest.raises(JobNotFound):
            await controller.retry(uuid.uuid4())
