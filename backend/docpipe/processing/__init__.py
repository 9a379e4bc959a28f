"""
Processing Job Package
══════════════════════

Tracks each document through the external worker's five-stage pipeline:

  download → extraction → summary → questions → embedding

Modules
───────
  status.py   Stage status machine and aggregate job-status derivation (pure)
  jobs.py     JobStore: optimistic read-modify-write over processing_jobs

Design principles
─────────────────
  • The aggregate status is derived, never assigned by callers.
  • Every job write is a version-checked unit of work that is replayed on a
    lost race.
"""

from docpipe.processing.status import (
    STAGE_ORDER,
    JobStatus,
    Stage,
    StageStatus,
    can_transition,
    derive_job_status,
)
from docpipe.processing.jobs import JobStore

__all__ = [
    "STAGE_ORDER",
    "JobStatus",
    "JobStore",
    "Stage",
    "StageStatus",
    "can_transition",
    "derive_job_status",
]
