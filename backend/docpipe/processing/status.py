"""
Stage Status Machine — pure functions, no I/O.

Each of the five pipeline stages moves independently:

    PENDING ──► PROCESSING ──► COMPLETED
       │            │
       └────────────┴────────► FAILED ──(retry reset)──► PENDING

COMPLETED is terminal until a retry resets the whole job. FAILED can only go
back to PENDING, and only through the retry controller.

The aggregate job status is never set directly; it is derived from the five
stage values by derive_job_status() so the rules live in one place.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Mapping


class Stage(str, Enum):
    """Pipeline stages, in the order the worker runs them."""
    DOWNLOAD   = "download"
    EXTRACTION = "extraction"
    SUMMARY    = "summary"
    QUESTIONS  = "questions"
    EMBEDDING  = "embedding"

    @property
    def column(self) -> str:
        """Name of this stage's status column on ProcessingJob."""
        return f"{self.value}_status"


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)


class StageStatus(str, Enum):
    PENDING    = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED  = "COMPLETED"
    FAILED     = "FAILED"


class JobStatus(str, Enum):
    PENDING    = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED  = "COMPLETED"
    FAILED     = "FAILED"
    RETRYING   = "RETRYING"


# current → allowed targets
_TRANSITIONS: dict[StageStatus, frozenset[StageStatus]] = {
    StageStatus.PENDING: frozenset({
        StageStatus.PROCESSING, StageStatus.COMPLETED, StageStatus.FAILED,
    }),
    StageStatus.PROCESSING: frozenset({
        StageStatus.PROCESSING, StageStatus.COMPLETED, StageStatus.FAILED,
    }),
    StageStatus.COMPLETED: frozenset(),
    StageStatus.FAILED: frozenset({StageStatus.PENDING}),
}


def can_transition(current: StageStatus | str, target: StageStatus | str) -> bool:
    """True if a single stage may move from current to target."""
    return StageStatus(target) in _TRANSITIONS[StageStatus(current)]


def derive_job_status(
    stages: Mapping[Stage, StageStatus | str] | Iterable[StageStatus | str],
    retry_scheduled: bool = False,
) -> JobStatus:
    """
    Aggregate job status from the five stage statuses.

      all COMPLETED                       → COMPLETED
      any FAILED, retry scheduled         → RETRYING
      any FAILED                          → FAILED
      any PROCESSING, or some COMPLETED   → PROCESSING
      otherwise (all PENDING)             → PENDING

    Accepts either a {Stage: status} mapping or a plain iterable of statuses.
    """
    values = stages.values() if isinstance(stages, Mapping) else stages
    statuses = [StageStatus(v) for v in values]
    if len(statuses) != len(STAGE_ORDER):
        raise ValueError(f"Expected {len(STAGE_ORDER)} stage statuses, got {len(statuses)}")

    if all(s is StageStatus.COMPLETED for s in statuses):
        return JobStatus.COMPLETED
    if StageStatus.FAILED in statuses:
        return JobStatus.RETRYING if retry_scheduled else JobStatus.FAILED
    if StageStatus.PROCESSING in statuses or StageStatus.COMPLETED in statuses:
        return JobStatus.PROCESSING
    return JobStatus.PENDING


def stage_statuses(job) -> dict[Stage, StageStatus]:
    """Read the five stage columns off a ProcessingJob (or any look-alike)."""
    return {stage: StageStatus(getattr(job, stage.column)) for stage in STAGE_ORDER}


def pick_failing_stage(statuses: Mapping[Stage, StageStatus]) -> Stage | None:
    """
    Stage to blame for an error report that did not name one.

    Prefers the first stage currently PROCESSING, then the first that has not
    COMPLETED. None when every stage is already COMPLETED.
    """
    for stage in STAGE_ORDER:
        if statuses[stage] is StageStatus.PROCESSING:
            return stage
    for stage in STAGE_ORDER:
        if statuses[stage] is not StageStatus.COMPLETED:
            return stage
    return None
