"""
Lecture title matching.

Remote records are keyed by their human-authored title ("12. Kardiologi"),
not by a stable id, so every lookup goes through these helpers.

Match precedence:
    1. Case-insensitive equality of canonical titles (number prefix stripped).
    2. Only if (1) finds nothing: remote title starts with the lecture's
       numbered prefix ("12." followed by a non-digit). Anchoring at the start
       keeps "1." from matching "11. Foo". Records titled after another lecture
       of the same run are never taken by the fallback, and number repair uses
       exact matches only.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from loguru import logger

from ledger_sync.sync.models import Lecture, RemoteRecord

_NUMBER_PREFIX = re.compile(r"^\s*(\d+)\.\s*")


def canonical_title(title: str) -> str:
    """Strip a leading "N. " prefix and surrounding whitespace."""
    return _NUMBER_PREFIX.sub("", title or "", count=1).strip()


def parse_number(title: str) -> int | None:
    """Return the leading lecture number of a title, or None."""
    match = _NUMBER_PREFIX.match(title or "")
    return int(match.group(1)) if match else None


def format_title(number: int, title: str) -> str:
    """Format a display title as "N. Title"."""
    return f"{number}. {canonical_title(title)}"


def title_key(title: str) -> str:
    """Comparison key of a title: canonical, case-folded."""
    return canonical_title(title).casefold()


def _has_number_prefix(remote_title: str, number: int) -> bool:
    return re.match(rf"^\s*{number}\.(?!\d)", remote_title or "") is not None


def is_exact_match(lecture: Lecture, remote_title: str) -> bool:
    return title_key(lecture.title) == title_key(remote_title)


def is_match(lecture: Lecture, remote_title: str) -> bool:
    """True if the remote title refers to this lecture (exact or prefix fallback)."""
    return is_exact_match(lecture, remote_title) or _has_number_prefix(
        remote_title, lecture.lecture_number
    )


def reserved_titles(titles: Iterable[str]) -> frozenset[str]:
    """Title keys of a run's lectures, used to keep the prefix fallback off their pages."""
    return frozenset(title_key(title) for title in titles)


def find_matches(
    lecture: Lecture,
    records: Sequence[RemoteRecord],
    reserved: frozenset[str] = frozenset(),
    exact_only: bool = False,
) -> list[RemoteRecord]:
    """
    Return the candidates for a lecture, preserving remote order.

    Exact canonical matches win; the prefix fallback is only consulted when
    there are none, and never yields a record whose title belongs to another
    lecture in ``reserved``. A renumbered lecture ("12. Kardiologi" now being
    13) stays with its own page instead of being claimed by whatever lecture
    took number 12.
    """
    exact = [r for r in records if is_exact_match(lecture, r.display_title)]
    if exact or exact_only:
        return exact
    own = title_key(lecture.title)
    return [
        r
        for r in records
        if _has_number_prefix(r.display_title, lecture.lecture_number)
        and (title_key(r.display_title) == own or title_key(r.display_title) not in reserved)
    ]


def select_match(
    lecture: Lecture,
    records: Sequence[RemoteRecord],
    user: str | None = None,
    reserved: frozenset[str] = frozenset(),
    exact_only: bool = False,
) -> tuple[RemoteRecord | None, bool]:
    """
    Pick the record to reconcile against.

    Returns:
        Tuple of (record or None, ambiguous). When several records match, the
        first one is used and ambiguous is True; no further record is created.
    """
    matches = find_matches(lecture, records, reserved, exact_only)
    if not matches:
        return None, False

    ambiguous = len(matches) > 1
    if ambiguous:
        logger.warning(
            "Duplicate remote records for {} in {}'s database: {} (using {})",
            lecture.label,
            user or "?",
            [m.display_title for m in matches],
            matches[0].remote_id,
        )
    return matches[0], ambiguous
