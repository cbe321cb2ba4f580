"""
Selection set value type.

The remote selection field is a comma-separated list of user letters
("D, A"). A field built from scratch lists letters in the fixed user
priority order; an existing field keeps its own token order, so a select
followed by an unselect gives back the string it started from.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from ledger_sync.sync.constants import SELECTION_SEPARATOR, USER_LETTERS, USER_PRIORITY

_TOKEN_SPLIT = re.compile(r"[,\s]+")


def _tokens(field: str | None) -> list[str]:
    """Tokens of a field in their written order, upper-cased and deduplicated."""
    if not field:
        return []
    tokens: list[str] = []
    for token in _TOKEN_SPLIT.split(field.replace("[", " ").replace("]", " ")):
        token = token.strip().upper()
        if token and token not in tokens:
            tokens.append(token)
    return tokens


def _sort_key(letter: str) -> tuple[int, str]:
    # Unknown tokens sort after the roster letters, alphabetically
    if letter in USER_PRIORITY:
        return (USER_PRIORITY.index(letter), letter)
    return (len(USER_PRIORITY), letter)


@dataclass(frozen=True)
class SelectionSet:
    """Immutable set of user letter tokens."""

    letters: frozenset[str] = frozenset()

    @classmethod
    def parse(cls, field: str | None) -> SelectionSet:
        """Parse a serialized selection field. Brackets from older tags are ignored."""
        return cls(frozenset(_tokens(field)))

    @classmethod
    def from_selections(cls, selections: Mapping[str, bool]) -> SelectionSet:
        """Project a lecture's per-user selection map onto letters."""
        return cls(
            frozenset(
                USER_LETTERS[user]
                for user, selected in selections.items()
                if selected and user in USER_LETTERS
            )
        )

    @classmethod
    def of(cls, letters: Iterable[str]) -> SelectionSet:
        return cls(frozenset(letters))

    def with_letter(self, letter: str) -> SelectionSet:
        return SelectionSet(self.letters | {letter})

    def without_letter(self, letter: str) -> SelectionSet:
        return SelectionSet(self.letters - {letter})

    def ordered(self) -> list[str]:
        return sorted(self.letters, key=_sort_key)

    def serialize(self) -> str:
        return SELECTION_SEPARATOR.join(self.ordered())

    def serialize_onto(self, field: str | None) -> str:
        """
        Serialize as an edit of an existing field.

        Tokens that are still selected keep their order; a new letter goes in
        front of the first token it outranks, so a canonical field stays
        canonical and removing the letter again restores the original order.
        """
        result = [token for token in _tokens(field) if token in self.letters]
        for letter in self.ordered():
            if letter in result:
                continue
            index = next(
                (i for i, token in enumerate(result) if _sort_key(token) > _sort_key(letter)),
                len(result),
            )
            result.insert(index, letter)
        return SELECTION_SEPARATOR.join(result)

    def __contains__(self, letter: object) -> bool:
        return letter in self.letters

    def __len__(self) -> int:
        return len(self.letters)

    def __str__(self) -> str:
        return self.serialize()
