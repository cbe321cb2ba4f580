"""
Roster constants shared by the sync engine.

Centralizes the user allow-list and letter tokens so the reconciler,
the selection field and the API agree on the same ordering.
"""

from __future__ import annotations

# =============================================================================
# Users
# =============================================================================
# Fixed allow-list, in priority order. The order drives selection serialization.
USER_LETTERS: dict[str, str] = {
    "David": "D",
    "Albin": "A",
    "Mattias": "M",
}

USER_PRIORITY: tuple[str, ...] = tuple(USER_LETTERS.values())

# Display names that the client may send instead of the roster name
USER_ALIASES: dict[str, str] = {
    "dronnlid": "David",
}

# =============================================================================
# Selection field
# =============================================================================
SELECTION_SEPARATOR = ", "

# =============================================================================
# Job messages
# =============================================================================
MAX_MESSAGE_LENGTH = 400

NO_REMOTE_RECORD_REASON = (
    "cannot select lecture that doesn't exist remotely - bulk sync must run first"
)


def resolve_user_name(name: str) -> str | None:
    """
    Map a client-supplied user name to a roster user.

    Matching is case-insensitive; known aliases are substring-matched
    (e.g. "dronnlid@example.com" maps to David).
    """
    if not name:
        return None

    lowered = name.strip().lower()
    for user in USER_LETTERS:
        if user.lower() == lowered:
            return user

    for alias, user in USER_ALIASES.items():
        if alias in lowered:
            return user

    return None


def letter_for(user: str) -> str:
    """Return the letter token for a roster user (raises KeyError if unknown)."""
    return USER_LETTERS[user]
