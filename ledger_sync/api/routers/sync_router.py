"""
Sync operations router.

Starting a sync only creates a job and returns its id; the worker runs it
and the client polls GET /sync/jobs/{job_id} until the status is terminal.
A multi-minute sync across three workspaces never has to fit in one request.
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from pydantic import BaseModel, Field

from config import get_settings
from ledger_sync.jobs.controller import BULK_SEED, NUMBER_REPAIR, SyncJobController
from ledger_sync.jobs.store import JobNotFound, JobStore
from ledger_sync.jobs.worker import SyncWorker
from ledger_sync.sync.constants import USER_LETTERS
from ledger_sync.sync.credentials import SettingsCredentialProvider
from ledger_sync.sync.errors import ConfigMissing
from ledger_sync.sync.models import FlashcardGroup, FlashcardPage, Lecture

router = APIRouter()


# ========================================
# Dependencies
# ========================================


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


def get_controller(request: Request) -> SyncJobController:
    return request.app.state.controller


def get_worker(request: Request) -> SyncWorker | None:
    return getattr(request.app.state, "worker", None)


# ========================================
# Request/Response Models
# ========================================


class LecturePayload(BaseModel):
    """A lecture as sent by the roster client."""

    id: str
    lecture_number: int = Field(alias="lectureNumber")
    title: str
    date: str | None = None
    time: str | None = None
    subject_area: str | None = Field(default=None, alias="subjectArea")
    selections: dict[str, bool] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    def to_lecture(self) -> Lecture:
        return Lecture(
            id=self.id,
            lecture_number=self.lecture_number,
            title=self.title,
            date=self.date,
            time=self.time,
            subject_area=self.subject_area,
            selections=dict(self.selections),
        )


class StartSyncRequest(BaseModel):
    """Request model for bulk seed / number repair."""

    lectures: list[LecturePayload]
    mode: Literal["bulk_seed", "number_repair"] = BULK_SEED
    users: list[str] | None = None


class SelectionSyncRequest(BaseModel):
    lecture: LecturePayload
    user: str
    selected: bool = True
    # Titles of the other roster lectures; their pages are never matched by number alone
    roster_titles: list[str] = Field(default_factory=list, alias="rosterTitles")

    model_config = {"populate_by_name": True}


class FlashcardPagePayload(BaseModel):
    page_number: int = Field(alias="pageNumber")
    text_content: str = Field(default="", alias="textContent")

    model_config = {"populate_by_name": True}


class FlashcardGroupPayload(BaseModel):
    question: str
    summary: str = ""
    pages: list[FlashcardPagePayload] = Field(default_factory=list)

    def to_group(self) -> FlashcardGroup:
        return FlashcardGroup(
            question=self.question,
            summary=self.summary,
            pages=[FlashcardPage(p.page_number, p.text_content) for p in self.pages],
        )


class FlashcardSyncRequest(BaseModel):
    lecture: LecturePayload
    groups: list[FlashcardGroupPayload] = Field(min_length=1)


class StartSyncResponse(BaseModel):
    success: bool = True
    job_id: str


class UserStatus(BaseModel):
    user: str
    letter: str
    configured: bool
    error: str | None = None


# ========================================
# Sync Endpoints
# ========================================


@router.post("/jobs", response_model=StartSyncResponse, summary="Start a bulk sync job")
def start_sync(
    request: StartSyncRequest,
    controller: SyncJobController = Depends(get_controller),
) -> StartSyncResponse:
    """
    Queue a bulk seed or number repair over the given lectures.

    **Request Body:**
    - `lectures` (list): Lectures from the roster
    - `mode` (str): `bulk_seed` (default) or `number_repair`
    - `users` (list): Restrict to these users (default: all roster users)
    """
    logger.info(f"Sync requested (mode={request.mode}, lectures={len(request.lectures)})")
    try:
        job_id = controller.start_bulk_sync(
            [lecture.to_lecture() for lecture in request.lectures],
            users=request.users,
            kind=NUMBER_REPAIR if request.mode == NUMBER_REPAIR else BULK_SEED,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return StartSyncResponse(job_id=job_id)


@router.post("/selection", response_model=StartSyncResponse, summary="Mirror a selection toggle")
def start_selection_sync(
    request: SelectionSyncRequest,
    controller: SyncJobController = Depends(get_controller),
) -> StartSyncResponse:
    """Queue mirroring one user's select/unselect into every user's database."""
    try:
        job_id = controller.start_selection_sync(
            request.lecture.to_lecture(),
            request.user,
            request.selected,
            roster_titles=request.roster_titles,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return StartSyncResponse(job_id=job_id)


@router.post("/flashcards", response_model=StartSyncResponse, summary="Append flashcards")
def start_flashcard_sync(
    request: FlashcardSyncRequest,
    controller: SyncJobController = Depends(get_controller),
) -> StartSyncResponse:
    """Queue appending flashcard summaries to the lecture's page in every database."""
    try:
        job_id = controller.start_flashcard_sync(
            request.lecture.to_lecture(), [group.to_group() for group in request.groups]
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return StartSyncResponse(job_id=job_id)


@router.get("/jobs/{job_id}", summary="Poll a sync job")
def get_job(job_id: str, store: JobStore = Depends(get_job_store)) -> dict[str, Any]:
    """
    Return the job's status, counters, message log and (when terminal) result.

    Poll until `status` is `completed` or `failed`.
    """
    try:
        return store.get_job(job_id).to_dict()
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Not found")


@router.post("/jobs/{job_id}/cancel", summary="Cancel a running job")
def cancel_job(
    job_id: str,
    store: JobStore = Depends(get_job_store),
    worker: SyncWorker | None = Depends(get_worker),
) -> dict[str, Any]:
    """Stop a running job after its current item. Completed writes are kept."""
    try:
        store.get_job(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Not found")

    cancelled = worker.cancel(job_id) if worker is not None else False
    return {"job_id": job_id, "cancelled": cancelled}


@router.get("/users", response_model=list[UserStatus], summary="Configured users")
def get_users() -> list[UserStatus]:
    """Report which roster users have a Notion token and course page configured."""
    provider = SettingsCredentialProvider(get_settings())
    statuses = []
    for user in provider.users():
        try:
            provider.resolve(user)
            statuses.append(UserStatus(user=user, letter=USER_LETTERS[user], configured=True))
        except ConfigMissing as e:
            statuses.append(
                UserStatus(user=user, letter=USER_LETTERS[user], configured=False, error=str(e))
            )
    return statuses
