"""
Sync worker.

Claims queued jobs from the job store and runs them through the
SyncCoordinator, persisting progress after every processed item.

Runs either in a background thread (inside the API process) or in the
foreground via `ledger worker`.

Usage:
    worker = SyncWorker(JobStore())
    worker.start()
    # ... API runs ...
    worker.stop()
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from loguru import logger

from config import get_settings
from ledger_sync.jobs.controller import BULK_SEED, FLASHCARDS, NUMBER_REPAIR, SELECTION
from ledger_sync.jobs.store import Job, JobStatus, JobStore, JobStoreError
from ledger_sync.sync.coordinator import CancellationToken, ProgressCallback, SyncCoordinator
from ledger_sync.sync.models import FlashcardGroup, Lecture, SyncSummary

CoordinatorFactory = Callable[[ProgressCallback, CancellationToken], SyncCoordinator]


def default_coordinator_factory(
    progress_callback: ProgressCallback,
    cancel_token: CancellationToken,
) -> SyncCoordinator:
    return SyncCoordinator(progress_callback=progress_callback, cancel_token=cancel_token)


class SyncWorker:
    """Executes sync jobs one at a time."""

    def __init__(
        self,
        store: JobStore,
        coordinator_factory: CoordinatorFactory | None = None,
        poll_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._coordinator_factory = coordinator_factory or default_coordinator_factory
        self._poll_seconds = poll_seconds or get_settings().sync_worker_poll_seconds
        self._cancel_tokens: dict[str, CancellationToken] = {}
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def run_once(self) -> bool:
        """Claim and run the oldest queued job. Returns False if the queue was empty."""
        job = self._store.claim_next()
        if job is None:
            return False
        self.execute(job)
        return True

    def run_job(self, job_id: str) -> Job:
        """Claim a specific job and run it in the calling thread."""
        if not self._store.claim(job_id):
            job = self._store.get_job(job_id)
            raise JobStoreError(f"Job {job_id} is {job.status.value}, not started")
        self.execute(self._store.get_job(job_id))
        return self._store.get_job(job_id)

    def execute(self, job: Job) -> None:
        """
        Run a claimed job to a terminal state.

        Raises:
            JobStoreError: If progress could not be persisted
        """
        job_id = job.job_id
        cancel_token = CancellationToken()
        self._cancel_tokens[job_id] = cancel_token

        def progress(delta: int, level: str, message: str) -> None:
            self._store.append_progress(job_id, delta, message, level)

        coordinator = self._coordinator_factory(progress, cancel_token)

        try:
            summary = self._dispatch(coordinator, job.kind, job.payload or {})
        except JobStoreError:
            logger.exception(f"Job store failed while running {job_id}")
            raise
        except Exception as e:
            logger.exception(f"Job {job_id} failed")
            self._store.fail(job_id, str(e) or e.__class__.__name__)
            return
        finally:
            self._cancel_tokens.pop(job_id, None)

        if summary.cancelled:
            current = self._store.get_job(job_id)
            self._store.fail(
                job_id,
                f"Cancelled after {current.processed_items} of {current.total_items} items",
            )
            return

        self._store.complete(job_id, summary.to_dict())

    @staticmethod
    def _dispatch(coordinator: SyncCoordinator, kind: str, payload: dict[str, Any]) -> SyncSummary:
        users = payload.get("users")

        if kind in (BULK_SEED, NUMBER_REPAIR):
            lectures = [Lecture.from_dict(item) for item in payload.get("lectures", [])]
            if kind == BULK_SEED:
                return coordinator.run_bulk_sync(lectures, users, payload.get("roster_titles"))
            return coordinator.run_number_repair(lectures, users)

        if kind == SELECTION:
            return coordinator.run_selection_sync(
                Lecture.from_dict(payload["lecture"]),
                payload["user"],
                bool(payload.get("selected", True)),
                users,
                payload.get("roster_titles"),
            )

        if kind == FLASHCARDS:
            return coordinator.run_flashcard_sync(
                Lecture.from_dict(payload["lecture"]),
                [FlashcardGroup.from_dict(group) for group in payload.get("groups", [])],
                users,
            )

        raise ValueError(f"Unknown job kind: {kind}")

    def cancel(self, job_id: str) -> bool:
        """Ask a running job to stop after its current item."""
        token = self._cancel_tokens.get(job_id)
        if token is None:
            return False
        token.cancel()
        logger.warning(f"Cancellation requested for job {job_id}")
        return True

    # =========================================================================
    # BACKGROUND LOOP
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start polling for jobs in a daemon thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="sync-worker", daemon=True)
        self._thread.start()
        logger.info(f"Sync worker started (poll every {self._poll_seconds}s)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        for token in list(self._cancel_tokens.values()):
            token.cancel()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Sync worker stopped")

    def run_forever(self) -> None:
        """Poll until stop() is called."""
        while not self._stop_event.is_set():
            try:
                if self.run_once():
                    continue
            except JobStoreError as e:
                logger.error(f"Sync worker could not reach the job store: {e}")
            except Exception:
                logger.exception("Unexpected error in sync worker loop")
            self._stop_event.wait(self._poll_seconds)


def job_is_pending(job: Job) -> bool:
    return job.status in (JobStatus.STARTED, JobStatus.RUNNING)
