"""Notion block builders for flashcard summaries appended to lecture pages."""

from __future__ import annotations

from typing import Any

from ledger_sync.sync.models import FlashcardGroup
from ledger_sync.sync.notion_client import MAX_BLOCKS_PER_APPEND

# Notion caps a single rich_text item at 2000 characters
MAX_TEXT_LENGTH = 2000


def _rich_text(content: str, **annotations: Any) -> list[dict[str, Any]]:
    chunks = [content[i:i + MAX_TEXT_LENGTH] for i in range(0, len(content), MAX_TEXT_LENGTH)] or [""]
    items = []
    for chunk in chunks:
        item: dict[str, Any] = {"type": "text", "text": {"content": chunk}}
        if annotations:
            item["annotations"] = annotations
        items.append(item)
    return items


def _block(block_type: str, rich_text: list[dict[str, Any]]) -> dict[str, Any]:
    return {"object": "block", "type": block_type, block_type: {"rich_text": rich_text}}


def flashcard_blocks(groups: list[FlashcardGroup]) -> list[dict[str, Any]]:
    """
    Build the blocks for a list of flashcard groups.

    Each group becomes a heading, an italic grey summary, one heading and
    paragraph per source page, and a trailing divider.
    """
    blocks: list[dict[str, Any]] = []

    for group in groups:
        blocks.append(_block("heading_2", _rich_text(f"📋 {group.question}")))
        if group.summary:
            blocks.append(_block("paragraph", _rich_text(group.summary, italic=True, color="gray")))

        for page in group.pages:
            blocks.append(_block("heading_3", _rich_text(f"📄 Sida {page.page_number} - Extraherad text")))
            blocks.append(_block("paragraph", _rich_text(page.text_content)))

        blocks.append({"object": "block", "type": "divider", "divider": {}})

    return blocks


def chunk_blocks(
    blocks: list[dict[str, Any]],
    size: int = MAX_BLOCKS_PER_APPEND,
) -> list[list[dict[str, Any]]]:
    """Split blocks into append-sized batches."""
    return [blocks[i:i + size] for i in range(0, len(blocks), size)]
