"""
Sync jobs: durable progress records and the worker that executes them.

Starting a sync only writes a job row; a worker (in the API process or
`ledger worker`) claims it and runs the coordinator, persisting progress
after every item so the client can poll.
"""

from ledger_sync.jobs.store import (
    InvalidJobTransition,
    Job,
    JobNotFound,
    JobStatus,
    JobStore,
    JobStoreError,
)

__all__ = [
    "InvalidJobTransition",
    "Job",
    "JobNotFound",
    "JobStatus",
    "JobStore",
    "JobStoreError",
]
