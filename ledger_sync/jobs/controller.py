"""
Sync job controller.

The boundary used by the HTTP API and the CLI: validates a sync request,
writes the job (which queues it) and returns the job id immediately.
Execution happens later in a SyncWorker.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from loguru import logger

from ledger_sync.jobs.store import Job, JobStore
from ledger_sync.sync.constants import resolve_user_name
from ledger_sync.sync.credentials import CredentialProvider, SettingsCredentialProvider
from ledger_sync.sync.models import FlashcardGroup, Lecture

# Job kinds
BULK_SEED = "bulk_seed"
SELECTION = "selection"
NUMBER_REPAIR = "number_repair"
FLASHCARDS = "flashcards"


class SyncJobController:
    """Creates sync jobs and exposes them for polling."""

    def __init__(
        self,
        store: JobStore | None = None,
        credentials: CredentialProvider | None = None,
    ) -> None:
        self._store = store or JobStore()
        self._credentials = credentials or SettingsCredentialProvider()

    def _users(self, users: Sequence[str] | None) -> list[str]:
        if users is None:
            return self._credentials.users()
        resolved = []
        for name in users:
            user = resolve_user_name(name)
            if user is None:
                raise ValueError(f"Unknown user: {name}")
            resolved.append(user)
        return resolved

    def start_bulk_sync(
        self,
        lectures: Sequence[Lecture],
        users: Sequence[str] | None = None,
        kind: str = BULK_SEED,
        roster_titles: Sequence[str] | None = None,
    ) -> str:
        """Queue a bulk seed (or number repair) over all lectures."""
        if kind not in (BULK_SEED, NUMBER_REPAIR):
            raise ValueError(f"Unsupported bulk job kind: {kind}")
        user_list = self._users(users)
        payload: dict[str, Any] = {
            "lectures": [lecture.to_dict() for lecture in lectures],
            "users": user_list,
            "roster_titles": list(roster_titles or []),
        }
        return self._store.create_job(len(lectures) * len(user_list), kind, payload)

    def start_selection_sync(
        self,
        lecture: Lecture,
        acting_user: str,
        selected: bool,
        users: Sequence[str] | None = None,
        roster_titles: Sequence[str] | None = None,
    ) -> str:
        """Queue mirroring one user's toggle into every user's database."""
        user = resolve_user_name(acting_user)
        if user is None:
            raise ValueError(f"Unknown user: {acting_user}")
        user_list = self._users(users)
        payload = {
            "lecture": lecture.to_dict(),
            "user": user,
            "selected": selected,
            "users": user_list,
            "roster_titles": list(roster_titles or []),
        }
        logger.info(f"Queueing selection sync: {user} {'select' if selected else 'unselect'} {lecture.label}")
        return self._store.create_job(len(user_list), SELECTION, payload)

    def start_flashcard_sync(
        self,
        lecture: Lecture,
        groups: Sequence[FlashcardGroup],
        users: Sequence[str] | None = None,
    ) -> str:
        """Queue appending flashcard summaries to the lecture's pages."""
        if not groups:
            raise ValueError("At least one flashcard group is required")
        user_list = self._users(users)
        payload = {
            "lecture": lecture.to_dict(),
            "groups": [group.to_dict() for group in groups],
            "users": user_list,
        }
        return self._store.create_job(len(user_list), FLASHCARDS, payload)

    def get_job(self, job_id: str) -> Job:
        """Raises JobNotFound for unknown ids."""
        return self._store.get_job(job_id)
