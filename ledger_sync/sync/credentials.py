"""
Credential providers.

The coordinator resolves each user's (token, course page) once per job
through a provider instead of reading process-wide settings, so tests
can hand it fixed credentials.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from config import Settings, get_settings
from ledger_sync.sync.constants import USER_LETTERS
from ledger_sync.sync.errors import ConfigMissing
from ledger_sync.sync.models import UserCredential


class CredentialProvider(Protocol):
    def users(self) -> list[str]:
        """Users this provider knows about (configured or not)."""
        ...

    def resolve(self, user: str) -> UserCredential:
        """Return the user's credential or raise ConfigMissing."""
        ...


class SettingsCredentialProvider:
    """Reads NOTION_TOKEN_<USER> / NOTION_COURSE_PAGE_<USER> from settings."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._credentials = (settings or get_settings()).get_user_credentials()

    def users(self) -> list[str]:
        return list(self._credentials)

    def resolve(self, user: str) -> UserCredential:
        token, page_id = self._credentials.get(user, (None, None))
        if not token:
            raise ConfigMissing(
                f"No Notion token configured for {user} (set NOTION_TOKEN_{user.upper()})"
            )
        if not page_id:
            raise ConfigMissing(
                f"No course page configured for {user} (set NOTION_COURSE_PAGE_{user.upper()})"
            )
        return UserCredential(user=user, token=token, root_page_id=page_id)


class StaticCredentialProvider:
    """Credentials from a plain mapping of user -> (token, page id)."""

    def __init__(self, credentials: Mapping[str, tuple[str | None, str | None]]) -> None:
        self._credentials = dict(credentials)

    def users(self) -> list[str]:
        # Roster order first so runs are deterministic
        known = [u for u in USER_LETTERS if u in self._credentials]
        return known + [u for u in self._credentials if u not in known]

    def resolve(self, user: str) -> UserCredential:
        token, page_id = self._credentials.get(user, (None, None))
        if not token or not page_id:
            raise ConfigMissing(f"No Notion credentials configured for {user}")
        return UserCredential(user=user, token=token, root_page_id=page_id)
