"""
Unit Tests — Stage Status Machine
══════════════════════════════════
Tests for:
  • can_transition      — allowed and forbidden single-stage moves
  • derive_job_status   — aggregate status from the five stages
  • pick_failing_stage  — which stage an unnamed error report blames
  • Stage.column        — ORM column names
"""

from __future__ import annotations

import pytest

from docpipe.processing.status import (
    STAGE_ORDER,
    JobStatus,
    Stage,
    StageStatus,
    can_transition,
    derive_job_status,
    pick_failing_stage,
    stage_statuses,
)

P, R, C, F = (
    StageStatus.PENDING,
    StageStatus.PROCESSING,
    StageStatus.COMPLETED,
    StageStatus.FAILED,
)


@pytest.mark.unit
@pytest.mark.processing
class TestCanTransition:

    @pytest.mark.parametrize("current,target", [
        (P, R), (P, C), (P, F),
        (R, R), (R, C), (R, F),
        (F, P),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target) is True

    @pytest.mark.parametrize("current,target", [
        (C, P), (C, R), (C, F), (C, C),
        (F, R), (F, C), (F, F),
        (P, P), (R, P),
    ])
    def test_forbidden(self, current, target):
        assert can_transition(current, target) is False

    def test_accepts_plain_strings(self):
        assert can_transition("PENDING", "COMPLETED") is True
        assert can_transition("COMPLETED", "PENDING") is False

    def test_unknown_status_raises(self):
        with pytest.raises(ValueError):
            can_transition("DONE", "PENDING")


@pytest.mark.unit
@pytest.mark.processing
class TestDeriveJobStatus:

    def test_all_pending_is_pending(self):
        assert derive_job_status([P] * 5) is JobStatus.PENDING

    def test_all_completed_is_completed(self):
        assert derive_job_status([C] * 5) is JobStatus.COMPLETED

    def test_any_processing_is_processing(self):
        assert derive_job_status([C, R, P, P, P]) is JobStatus.PROCESSING

    def test_partial_completion_is_processing(self):
        """Some stages done, none running: still in flight."""
        assert derive_job_status([C, C, P, P, P]) is JobStatus.PROCESSING

    def test_failure_beats_everything_else(self):
        assert derive_job_status([C, C, F, R, P]) is JobStatus.FAILED

    def test_failure_with_retry_scheduled_is_retrying(self):
        assert derive_job_status([F, P, P, P, P], retry_scheduled=True) is JobStatus.RETRYING

    def test_retry_flag_ignored_without_failure(self):
        assert derive_job_status([C] * 5, retry_scheduled=True) is JobStatus.COMPLETED

    def test_accepts_stage_mapping(self):
        stages = {stage: C for stage in STAGE_ORDER}
        stages[Stage.EMBEDDING] = R
        assert derive_job_status(stages) is JobStatus.PROCESSING

    def test_wrong_stage_count_raises(self):
        with pytest.raises(ValueError, match="Expected 5"):
            derive_job_status([C, C])


@pytest.mark.unit
@pytest.mark.processing
class TestPickFailingStage:

    def _statuses(self, *values: StageStatus) -> dict[Stage, StageStatus]:
        return dict(zip(STAGE_ORDER, values))

    def test_prefers_processing_stage(self):
        statuses = self._statuses(C, C, R, P, P)
        assert pick_failing_stage(statuses) is Stage.SUMMARY

    def test_falls_back_to_first_unfinished(self):
        statuses = self._statuses(C, C, C, P, P)
        assert pick_failing_stage(statuses) is Stage.QUESTIONS

    def test_all_completed_blames_nothing(self):
        assert pick_failing_stage(self._statuses(C, C, C, C, C)) is None

    def test_nothing_started_blames_download(self):
        assert pick_failing_stage(self._statuses(P, P, P, P, P)) is Stage.DOWNLOAD


@pytest.mark.unit
@pytest.mark.processing
class TestStageColumns:

    def test_order_matches_pipeline(self):
        assert [s.value for s in STAGE_ORDER] == [
            "download", "extraction", "summary", "questions", "embedding",
        ]

    def test_column_names(self):
        assert Stage.DOWNLOAD.column == "download_status"
        assert Stage.EMBEDDING.column == "embedding_status"

    def test_stage_statuses_reads_job(self, make_job):
        job = make_job(summary_status="FAILED")
        statuses = stage_statuses(job)
        assert statuses[Stage.SUMMARY] is F
        assert statuses[Stage.DOWNLOAD] is P
