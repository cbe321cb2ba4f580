"""
Sync job store.

Durable record of a sync run, written by the worker and polled by the
client. State machine:

    started -> running -> completed | failed

No transition leaves a terminal state. processed_items only grows and is
capped at total_items. Messages are append-only.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from ledger_sync.db.database import session_scope
from ledger_sync.db.models import SyncJob, SyncJobMessage
from ledger_sync.sync.constants import MAX_MESSAGE_LENGTH


class JobStatus(str, Enum):
    STARTED = "started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobStoreError(Exception):
    """The durable progress store could not be read or written."""


class JobNotFound(JobStoreError):
    """No job with the given id."""


class InvalidJobTransition(JobStoreError):
    """Write attempted against a job in a state that does not allow it."""


@dataclass
class JobMessage:
    ts: float
    level: str
    text: str


@dataclass
class Job:
    """Read-only snapshot of a job."""

    job_id: str
    kind: str
    status: JobStatus
    total_items: int
    processed_items: int
    messages: list[JobMessage] = field(default_factory=list)
    payload: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    def to_dict(self, include_payload: bool = False) -> dict[str, Any]:
        data = {
            "job_id": self.job_id,
            "kind": self.kind,
            "status": self.status.value,
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "messages": [
                {"ts": m.ts, "level": m.level, "text": m.text} for m in self.messages
            ],
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_payload:
            data["payload"] = self.payload
        return data


def _snapshot(row: SyncJob) -> Job:
    return Job(
        job_id=row.job_id,
        kind=row.kind,
        status=JobStatus(row.status),
        total_items=row.total_items,
        processed_items=row.processed_items,
        messages=[JobMessage(ts=m.ts, level=m.level, text=m.text) for m in row.messages],
        payload=row.payload,
        result=row.result,
        error=row.error,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _message(level: str, text: str) -> SyncJobMessage:
    return SyncJobMessage(ts=time.time() * 1000, level=level, text=text[:MAX_MESSAGE_LENGTH])


class JobStore:
    """SQLAlchemy-backed job store shared by the API and the worker."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._factory = session_factory

    @contextmanager
    def _scope(self) -> Generator[Session, None, None]:
        try:
            with session_scope(self._factory) as session:
                yield session
        except JobStoreError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Job store failure: {e}")
            raise JobStoreError(str(e)) from e

    @staticmethod
    def _load(session: Session, job_id: str) -> SyncJob:
        row = session.get(SyncJob, job_id, options=[selectinload(SyncJob.messages)])
        if row is None:
            raise JobNotFound(f"Job not found: {job_id}")
        return row

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def create_job(
        self,
        expected_total: int,
        kind: str = "bulk_seed",
        payload: dict[str, Any] | None = None,
    ) -> str:
        """Write a 'started' job and return its id. The job is now queued for a worker."""
        if expected_total < 0:
            raise ValueError("expected_total must be >= 0")

        job_id = uuid.uuid4().hex
        with self._scope() as session:
            job = SyncJob(
                job_id=job_id,
                kind=kind,
                status=JobStatus.STARTED.value,
                total_items=expected_total,
                processed_items=0,
                payload=payload,
            )
            job.messages.append(_message("info", "Job created"))
            session.add(job)

        logger.info(f"Created {kind} job {job_id} ({expected_total} items)")
        return job_id

    def claim(self, job_id: str) -> bool:
        """Move a started job to running. Returns False if another worker got it first."""
        with self._scope() as session:
            result = session.execute(
                update(SyncJob)
                .where(SyncJob.job_id == job_id, SyncJob.status == JobStatus.STARTED.value)
                .values(status=JobStatus.RUNNING.value)
            )
            claimed = result.rowcount == 1
            if claimed:
                line = _message("info", "Worker started job")
                line.job_id = job_id
                session.add(line)
        if claimed:
            logger.info(f"Claimed job {job_id}")
        return claimed

    def claim_next(self) -> Job | None:
        """Claim the oldest started job, if any."""
        while True:
            with self._scope() as session:
                job_id = session.execute(
                    select(SyncJob.job_id)
                    .where(SyncJob.status == JobStatus.STARTED.value)
                    .order_by(SyncJob.created_at, SyncJob.job_id)
                    .limit(1)
                ).scalar_one_or_none()
            if job_id is None:
                return None
            if self.claim(job_id):
                return self.get_job(job_id)

    def append_progress(
        self,
        job_id: str,
        processed_delta: int = 0,
        message: str | None = None,
        level: str = "info",
    ) -> int:
        """
        Advance the processed counter and append a log line.

        Returns:
            The new processed_items value

        Raises:
            ValueError: On a negative delta
            InvalidJobTransition: If the job is already terminal
        """
        if processed_delta < 0:
            raise ValueError("processed_delta must be >= 0")

        with self._scope() as session:
            job = self._load(session, job_id)
            status = JobStatus(job.status)
            if status.terminal:
                raise InvalidJobTransition(f"Job {job_id} is {status.value}; progress rejected")

            if status == JobStatus.STARTED:
                job.status = JobStatus.RUNNING.value
            job.processed_items = min(job.total_items, job.processed_items + processed_delta)
            if message:
                job.messages.append(_message(level, message))
            return job.processed_items

    def complete(self, job_id: str, result: dict[str, Any] | None = None) -> None:
        with self._scope() as session:
            job = self._load(session, job_id)
            status = JobStatus(job.status)
            if status != JobStatus.RUNNING:
                raise InvalidJobTransition(f"Cannot complete job {job_id} in state {status.value}")
            job.status = JobStatus.COMPLETED.value
            job.result = result
            job.messages.append(_message("info", "Job completed"))
        logger.info(f"Job {job_id} completed")

    def fail(self, job_id: str, error: str) -> None:
        with self._scope() as session:
            job = self._load(session, job_id)
            status = JobStatus(job.status)
            if status.terminal:
                raise InvalidJobTransition(f"Cannot fail job {job_id} in state {status.value}")
            job.status = JobStatus.FAILED.value
            job.error = error
            job.messages.append(_message("error", error or "error"))
        logger.error(f"Job {job_id} failed: {error}")

    # =========================================================================
    # READS
    # =========================================================================

    def get_job(self, job_id: str) -> Job:
        """Raises JobNotFound for unknown ids."""
        with self._scope() as session:
            return _snapshot(self._load(session, job_id))

    def list_jobs(self, limit: int = 20) -> list[Job]:
        """Most recent jobs first."""
        with self._scope() as session:
            rows = session.execute(
                select(SyncJob)
                .options(selectinload(SyncJob.messages))
                .order_by(SyncJob.created_at.desc())
                .limit(limit)
            ).scalars().all()
            return [_snapshot(row) for row in rows]
