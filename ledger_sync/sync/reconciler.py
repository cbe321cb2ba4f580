"""
Per-user, per-lecture reconciliation.

Given the local lecture, the remote search result and the triggering
action, decide what (if anything) to write to the user's Notion database
and build the property payload for it. Pure: no I/O happens here.

Decision rules:
    - no remote record + bulk seed            -> Create
    - no remote record + select/unselect      -> NoOp (bulk sync must run first)
    - remote record with drifted number/title -> UpdateNumber (checked first)
    - remote record + select/unselect         -> UpdateSelection if the letters change
    - remote record + bulk seed               -> UpdateSelection if local selections differ
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from config import get_settings
from ledger_sync.sync.constants import NO_REMOTE_RECORD_REASON, USER_LETTERS, letter_for
from ledger_sync.sync.models import Lecture, RemoteRecord
from ledger_sync.sync.selection import SelectionSet
from ledger_sync.sync.titles import canonical_title, format_title, is_exact_match, parse_number


class ActionKind(str, Enum):
    BULK_SEED = "bulk_seed"
    SELECT = "select"
    UNSELECT = "unselect"
    REPAIR_NUMBERS = "repair_numbers"


@dataclass(frozen=True)
class UserAction:
    """The action that triggered reconciliation."""

    kind: ActionKind
    user: str | None = None

    @classmethod
    def bulk_seed(cls) -> UserAction:
        return cls(ActionKind.BULK_SEED)

    @classmethod
    def select(cls, user: str) -> UserAction:
        return cls(ActionKind.SELECT, user)

    @classmethod
    def unselect(cls, user: str) -> UserAction:
        return cls(ActionKind.UNSELECT, user)

    @classmethod
    def toggle(cls, user: str, selected: bool) -> UserAction:
        return cls.select(user) if selected else cls.unselect(user)

    @classmethod
    def repair_numbers(cls) -> UserAction:
        return cls(ActionKind.REPAIR_NUMBERS)

    @property
    def is_toggle(self) -> bool:
        return self.kind in (ActionKind.SELECT, ActionKind.UNSELECT)


@dataclass(frozen=True)
class RemoteSearchResult:
    """The record a lecture resolved to in one user's database, if any."""

    record: RemoteRecord | None = None
    ambiguous: bool = False

    @property
    def found(self) -> bool:
        return self.record is not None


# =============================================================================
# Decisions
# =============================================================================


@dataclass(frozen=True)
class Create:
    payload: dict[str, Any]
    name = "create"


@dataclass(frozen=True)
class UpdateSelection:
    remote_id: str
    selection_field: str
    payload: dict[str, Any] = field(default_factory=dict)
    name = "update_selection"


@dataclass(frozen=True)
class UpdateNumber:
    remote_id: str
    new_title: str
    number: int
    payload: dict[str, Any] = field(default_factory=dict)
    name = "update_number"


@dataclass(frozen=True)
class NoOp:
    reason: str
    name = "noop"


Decision = Union[Create, UpdateSelection, UpdateNumber, NoOp]


class LectureReconciler:
    """Decides Create / UpdateSelection / UpdateNumber / NoOp for one pair."""

    def __init__(
        self,
        property_map: dict[str, str] | None = None,
        app_base_url: str | None = None,
    ) -> None:
        settings = get_settings()
        self.properties = property_map or settings.get_notion_property_map()
        self.app_base_url = (app_base_url or settings.app_base_url).rstrip("/")

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def reconcile(
        self,
        lecture: Lecture,
        search: RemoteSearchResult,
        action: UserAction,
    ) -> Decision:
        record = search.record

        if record is None:
            if action.kind == ActionKind.BULK_SEED:
                return Create(payload=self.create_properties(lecture))
            if action.is_toggle:
                return NoOp(NO_REMOTE_RECORD_REASON)
            return NoOp("no remote record")

        drift = self._title_drift(lecture, record)
        if drift is not None:
            return UpdateNumber(
                remote_id=record.remote_id,
                new_title=drift,
                number=lecture.lecture_number,
                payload=self.number_properties(drift, lecture.lecture_number),
            )

        if action.kind == ActionKind.REPAIR_NUMBERS:
            return NoOp("numbering already matches")

        current = SelectionSet.parse(record.selection_field)
        desired = self._desired_selection(lecture, current, action)
        if desired == current:
            return NoOp("already up to date")

        serialized = desired.serialize_onto(record.selection_field)
        return UpdateSelection(
            remote_id=record.remote_id,
            selection_field=serialized,
            payload=self.selection_properties(serialized),
        )

    # =========================================================================
    # PAYLOAD BUILDERS
    # =========================================================================

    def create_properties(self, lecture: Lecture) -> dict[str, Any]:
        """Properties for a new lecture page."""
        selection = SelectionSet.from_selections(lecture.selections)
        title = format_title(lecture.lecture_number, lecture.title)
        properties: dict[str, Any] = {
            **self.number_properties(title, lecture.lecture_number),
            **self.selection_properties(selection.serialize()),
            self.properties["url"]: {
                "url": f"{self.app_base_url}#lecture-{lecture.lecture_number}",
            },
        }
        if lecture.subject_area:
            properties[self.properties["subject"]] = {"select": {"name": lecture.subject_area}}
        return properties

    def selection_properties(self, selection_field: str) -> dict[str, Any]:
        return {
            self.properties["selection"]: {
                "rich_text": [{"type": "text", "text": {"content": selection_field}}]
                if selection_field
                else [],
            }
        }

    def number_properties(self, title: str, number: int) -> dict[str, Any]:
        return {
            self.properties["title"]: {
                "title": [{"type": "text", "text": {"content": title}}],
            },
            self.properties["number"]: {"number": number},
        }

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _title_drift(self, lecture: Lecture, record: RemoteRecord) -> str | None:
        """Return the corrected title if the remote numbering or title drifted."""
        remote_number = parse_number(record.display_title)
        numbers_agree = remote_number == lecture.lecture_number and (
            record.number is None or record.number == lecture.lecture_number
        )
        exact = is_exact_match(lecture, record.display_title)

        if numbers_agree and exact:
            return None

        # Keep the remote spelling when only the number moved
        title = canonical_title(record.display_title) if exact else lecture.title
        return format_title(lecture.lecture_number, title)

    @staticmethod
    def _desired_selection(
        lecture: Lecture,
        current: SelectionSet,
        action: UserAction,
    ) -> SelectionSet:
        if action.is_toggle:
            letter = letter_for(action.user or "")
            if action.kind == ActionKind.SELECT:
                return current.with_letter(letter)
            return current.without_letter(letter)

        # Bulk seed: users present in the local map win, others keep remote state
        desired = current
        for user, selected in lecture.selections.items():
            letter = USER_LETTERS.get(user)
            if letter is None:
                continue
            desired = desired.with_letter(letter) if selected else desired.without_letter(letter)
        return desired
