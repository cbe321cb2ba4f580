"""
Notion Client - Typed wrapper around the official Notion SDK for one user workspace.

IMPORTANT: Uses official Notion Python SDK (notion_client).
Allowed methods: client.pages.retrieve(), client.pages.create(),
                 client.pages.update(), client.blocks.children.list(),
                 client.blocks.children.append(), client.databases.query()

SDK and transport failures are translated into the sync error taxonomy
(ledger_sync.sync.errors) here, so nothing above this layer sees HTTP codes.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import httpx
from loguru import logger
from notion_client import Client
from notion_client.errors import HTTPResponseError, RequestTimeoutError

from config import get_settings
from ledger_sync.sync.errors import (
    InvalidRemoteRequest,
    RateLimited,
    RemoteNotFound,
    RemoteUnauthorized,
    SyncError,
    TransientRemoteError,
)
from ledger_sync.sync.models import Lecture, RemoteRecord, UserCredential
from ledger_sync.sync.titles import canonical_title

T = TypeVar("T")

# Notion rejects more than 100 children per append request
MAX_BLOCKS_PER_APPEND = 100


class RemoteStoreClient(Protocol):
    """Operations the coordinator needs from one user's workspace."""

    user: str

    def get_root_page(self, page_id: str) -> dict[str, Any]: ...

    def find_child_database(self, page_id: str) -> str: ...

    def query_database(self, database_id: str, lecture: Lecture | None = None) -> list[RemoteRecord]: ...

    def create_page(self, database_id: str, properties: dict[str, Any]) -> RemoteRecord: ...

    def update_page_properties(self, page_id: str, properties: dict[str, Any]) -> dict[str, Any] | None: ...

    def append_blocks(self, block_id: str, children: list[dict[str, Any]]) -> int: ...


def translate_error(error: Exception, description: str) -> SyncError:
    """Map an SDK/transport exception to the sync error taxonomy."""
    if isinstance(error, SyncError):
        return error

    if isinstance(error, RequestTimeoutError):
        return TransientRemoteError(f"{description}: request timed out")

    if isinstance(error, HTTPResponseError):
        status = getattr(error, "status", None)
        message = f"{description}: HTTP {status}: {error}"
        if status in (401, 403):
            return RemoteUnauthorized(message)
        if status == 404:
            return RemoteNotFound(message)
        if status == 429:
            headers = getattr(error, "headers", None) or {}
            retry_after = headers.get("retry-after") if hasattr(headers, "get") else None
            try:
                seconds = float(retry_after) if retry_after is not None else None
            except ValueError:
                seconds = None
            return RateLimited(message, retry_after=seconds)
        if status is not None and status >= 500:
            return TransientRemoteError(message)
        return InvalidRemoteRequest(message)

    if isinstance(error, httpx.TransportError):
        return TransientRemoteError(f"{description}: {error.__class__.__name__}: {error}")

    return InvalidRemoteRequest(f"{description}: {error}")


def _plain_text(rich_text: list[dict[str, Any]] | None) -> str:
    """Extract plain text from Notion's rich_text/title arrays."""
    if not rich_text:
        return ""
    parts = []
    for item in rich_text:
        text = item.get("plain_text") or item.get("text", {}).get("content", "")
        parts.append(text)
    return "".join(parts)


def record_from_page(page: dict[str, Any], property_map: dict[str, str]) -> RemoteRecord:
    """Build a RemoteRecord from a raw Notion page, whatever the title property is called."""
    props = page.get("properties", {}) or {}

    title_prop = props.get(property_map["title"])
    if not title_prop or title_prop.get("type", "title") != "title":
        title_prop = next((p for p in props.values() if p.get("type") == "title"), {})
    title = _plain_text(title_prop.get("title"))

    selection_prop = props.get(property_map["selection"], {}) or {}
    selection = _plain_text(selection_prop.get("rich_text"))

    number_prop = props.get(property_map["number"], {}) or {}
    number = number_prop.get("number")

    return RemoteRecord(
        remote_id=page.get("id", ""),
        display_title=title,
        selection_field=selection,
        number=int(number) if number is not None else None,
    )


class NotionWorkspaceClient:
    """
    Typed wrapper around the official Notion SDK for one user's workspace.

    Handles:
    - Pagination for block listings and database queries
    - Error translation (401/403/404/429/5xx/timeouts)
    - Fallback query methods (databases.query → raw request)
    - Dry-run mode for writes
    """

    def __init__(
        self,
        user: str,
        token: str,
        client: Client | None = None,
        property_map: dict[str, str] | None = None,
        dry_run: bool | None = None,
    ) -> None:
        self._settings = get_settings()
        self.user = user
        self.properties = property_map or self._settings.get_notion_property_map()
        self.dry_run = self._settings.dry_run if dry_run is None else dry_run
        self._client = client or Client(
            auth=token,
            notion_version=self._settings.notion_version,
            timeout_ms=self._settings.notion_timeout_ms,
        )
        logger.debug(f"Notion client initialized for {user}")

    @classmethod
    def for_credential(cls, credential: UserCredential) -> NotionWorkspaceClient:
        return cls(user=credential.user, token=credential.token)

    def _call(self, description: str, fn: Callable[..., T], **kwargs: Any) -> T:
        try:
            return fn(**kwargs)
        except Exception as e:
            raise translate_error(e, f"{description} ({self.user})") from e

    # =========================================================================
    # DISCOVERY
    # =========================================================================

    def get_root_page(self, page_id: str) -> dict[str, Any]:
        """Retrieve the user's course page."""
        logger.debug(f"Getting course page for {self.user}: {page_id}")
        return self._call("retrieve course page", self._client.pages.retrieve, page_id=page_id)

    def find_child_database(self, page_id: str) -> str:
        """
        Return the ID of the first inline database on a page.

        Raises:
            RemoteNotFound: If the page has no child database
        """
        start_cursor: str | None = None

        while True:
            kwargs: dict[str, Any] = {"block_id": page_id, "page_size": 100}
            if start_cursor:
                kwargs["start_cursor"] = start_cursor
            response = self._call("list course page blocks", self._client.blocks.children.list, **kwargs)

            for block in response.get("results", []):
                if block.get("type") == "child_database":
                    logger.debug(f"Found lecture database on {self.user}'s course page")
                    return block["id"]

            if not response.get("has_more"):
                break
            start_cursor = response.get("next_cursor")

        raise RemoteNotFound(f"No database found on {self.user}'s course page {page_id}")

    # =========================================================================
    # QUERIES
    # =========================================================================

    def query_database(
        self,
        database_id: str,
        lecture: Lecture | None = None,
    ) -> list[RemoteRecord]:
        """
        Query the lecture database.

        Args:
            database_id: Notion database ID
            lecture: When given, only pages whose title contains the canonical
                title or starts with the lecture's "N." prefix are returned

        Returns:
            Remote records in the order Notion returned them
        """
        body: dict[str, Any] = {"page_size": 100}
        if lecture is not None:
            title_property = self.properties["title"]
            clauses: list[dict[str, Any]] = [
                {"property": title_property, "title": {"starts_with": f"{lecture.lecture_number}."}},
            ]
            # Notion rejects an empty "contains"
            title = canonical_title(lecture.title)
            if title:
                clauses.insert(0, {"property": title_property, "title": {"contains": title}})
            body["filter"] = {"or": clauses}

        records: list[RemoteRecord] = []
        start_cursor: str | None = None

        while True:
            if start_cursor:
                body["start_cursor"] = start_cursor
            response = self._query(database_id, body)
            records.extend(record_from_page(page, self.properties) for page in response.get("results", []))

            if not response.get("has_more"):
                break
            start_cursor = response.get("next_cursor")

        logger.debug(f"Query on {self.user}'s database returned {len(records)} records")
        return records

    def _query(self, database_id: str, body: dict[str, Any]) -> dict[str, Any]:
        """Use databases.query when the SDK has it, else the raw endpoint."""
        databases = getattr(self._client, "databases", None)
        query_fn = getattr(databases, "query", None)
        if callable(query_fn):
            return self._call("query lecture database", query_fn, database_id=database_id, **body)

        return self._call(
            "query lecture database",
            self._client.request,
            path=f"databases/{database_id}/query",
            method="POST",
            body=body,
        )

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    def create_page(self, database_id: str, properties: dict[str, Any]) -> RemoteRecord:
        """Create a lecture page in the database."""
        if self.dry_run:
            logger.info(f"DRY RUN: Would create page in {self.user}'s database with {properties}")
            return record_from_page({"id": "dry-run", "properties": properties}, self.properties)

        page = self._call(
            "create lecture page",
            self._client.pages.create,
            parent={"database_id": database_id},
            properties=properties,
        )
        return record_from_page(page, self.properties)

    def update_page_properties(
        self,
        page_id: str,
        properties: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Update properties of an existing page. Returns None in dry-run mode."""
        if self.dry_run:
            logger.info(f"DRY RUN: Would update page {page_id} for {self.user} with {properties}")
            return None

        return self._call(
            "update lecture page",
            self._client.pages.update,
            page_id=page_id,
            properties=properties,
        )

    def append_blocks(self, block_id: str, children: list[dict[str, Any]]) -> int:
        """
        Append one batch of blocks to a page. Returns the number of blocks sent.

        Callers split larger lists with blocks.chunk_blocks() so that a retry
        never re-sends a batch that already landed.
        """
        if len(children) > MAX_BLOCKS_PER_APPEND:
            raise InvalidRemoteRequest(
                f"Cannot append {len(children)} blocks in one request (max {MAX_BLOCKS_PER_APPEND})"
            )

        if self.dry_run:
            logger.info(f"DRY RUN: Would append {len(children)} blocks to {block_id} for {self.user}")
            return 0

        self._call(
            "append blocks",
            self._client.blocks.children.append,
            block_id=block_id,
            children=children,
        )
        return len(children)
