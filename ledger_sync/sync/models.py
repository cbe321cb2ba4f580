"""
Domain models for the sync engine.

Lecture is the local canonical record; RemoteRecord is its projection in
one user's Notion database. ItemOutcome and SyncSummary carry per-pair
results back to the job store and the API.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class Lecture:
    """A lecture in the shared roster."""

    id: str
    lecture_number: int
    title: str
    date: str | None = None
    time: str | None = None
    subject_area: str | None = None
    selections: dict[str, bool] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Lecture:
        """Parse a roster document (accepts camelCase keys from the web client)."""
        number = data.get("lecture_number", data.get("lectureNumber"))
        return cls(
            id=str(data.get("id", "")),
            lecture_number=int(number) if number is not None else 0,
            title=data.get("title", ""),
            date=data.get("date"),
            time=data.get("time"),
            subject_area=data.get("subject_area", data.get("subjectArea")),
            selections=dict(data.get("selections", {}) or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @property
    def label(self) -> str:
        return f"{self.lecture_number}. {self.title}"


@dataclass
class RemoteRecord:
    """A lecture page inside one user's Notion database."""

    remote_id: str
    display_title: str
    selection_field: str = ""
    number: int | None = None


@dataclass(frozen=True)
class UserCredential:
    """Resolved Notion access for one roster user."""

    user: str
    token: str
    root_page_id: str

    def __repr__(self) -> str:
        return f"UserCredential(user={self.user!r}, root_page_id={self.root_page_id!r})"


@dataclass
class FlashcardPage:
    """Extracted text of one slide/page in a flashcard group."""

    page_number: int
    text_content: str


@dataclass
class FlashcardGroup:
    """A question with its summary and the source pages it covers."""

    question: str
    summary: str = ""
    pages: list[FlashcardPage] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlashcardGroup:
        return cls(
            question=data.get("question", ""),
            summary=data.get("summary", ""),
            pages=[
                FlashcardPage(
                    page_number=int(page.get("page_number", page.get("pageNumber", 0))),
                    text_content=page.get("text_content", page.get("textContent", "")),
                )
                for page in data.get("pages", [])
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# Outcome statuses
SUCCESS = "success"
SKIPPED = "skipped"
ERROR = "error"


@dataclass
class ItemOutcome:
    """Result of processing one (user, lecture) pair."""

    user: str
    lecture_id: str
    lecture_label: str
    status: str
    action: str
    message: str = ""
    error_kind: str | None = None
    ambiguous: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SyncSummary:
    """Aggregated statistics for a sync run."""

    def __init__(self) -> None:
        self.outcomes: list[ItemOutcome] = []
        self.created = 0
        self.updated = 0
        self.cancelled = False
        self.start_time = datetime.now()
        self.end_time: datetime | None = None

    def record(self, outcome: ItemOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == SUCCESS:
            if outcome.action == "create":
                self.created += 1
            else:
                self.updated += 1

    def merge(self, other: SyncSummary) -> None:
        for outcome in other.outcomes:
            self.record(outcome)
        self.cancelled = self.cancelled or other.cancelled

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == SUCCESS)

    @property
    def skip_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == SKIPPED)

    @property
    def error_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == ERROR)

    def finish(self) -> None:
        """Mark sync as finished."""
        self.end_time = datetime.now()

    def duration_seconds(self) -> float:
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()

    def per_user(self) -> dict[str, dict[str, int]]:
        """Success/skip/error counts keyed by user."""
        breakdown: dict[str, dict[str, int]] = {}
        for outcome in self.outcomes:
            counts = breakdown.setdefault(outcome.user, {SUCCESS: 0, SKIPPED: 0, ERROR: 0})
            counts[outcome.status] += 1
        return breakdown

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for job results and API responses."""
        return {
            "success_count": self.success_count,
            "skip_count": self.skip_count,
            "error_count": self.error_count,
            "created": self.created,
            "updated": self.updated,
            "cancelled": self.cancelled,
            "duration_seconds": round(self.duration_seconds(), 2),
            "by_user": self.per_user(),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
