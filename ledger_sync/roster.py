"""
Lecture roster store interface.

The roster itself (CRUD, calendar import) lives outside the sync engine.
The engine only reads from it; InMemoryLectureRoster and the JSON loader
cover the CLI and tests.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Protocol

from loguru import logger

from ledger_sync.sync.models import Lecture

LectureFilter = Callable[[Lecture], bool]


class LectureRoster(Protocol):
    def list_lectures(self, lecture_filter: LectureFilter | None = None) -> list[Lecture]: ...

    def get_lecture(self, lecture_id: str) -> Lecture: ...


class InMemoryLectureRoster:
    """Roster backed by a dict, ordered by lecture number."""

    def __init__(self, lectures: Iterable[Lecture] = ()) -> None:
        self._lectures: dict[str, Lecture] = {lecture.id: lecture for lecture in lectures}

    def list_lectures(self, lecture_filter: LectureFilter | None = None) -> list[Lecture]:
        lectures = sorted(self._lectures.values(), key=lambda lec: (lec.lecture_number, lec.title))
        if lecture_filter is not None:
            lectures = [lec for lec in lectures if lecture_filter(lec)]
        return lectures

    def get_lecture(self, lecture_id: str) -> Lecture:
        """Raises KeyError for unknown ids."""
        try:
            return self._lectures[lecture_id]
        except KeyError:
            raise KeyError(f"Lecture not found: {lecture_id}") from None


def load_roster(path: str | Path) -> InMemoryLectureRoster:
    """
    Load lectures from a JSON export of the roster.

    Accepts either a list of lecture documents or {"lectures": [...]}.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    items = data.get("lectures", []) if isinstance(data, dict) else data
    lectures = [Lecture.from_dict(item) for item in items]
    logger.info(f"Loaded {len(lectures)} lectures from {path}")
    return InMemoryLectureRoster(lectures)


def by_numbers(numbers: Iterable[int]) -> LectureFilter:
    wanted = set(numbers)
    return lambda lecture: lecture.lecture_number in wanted
