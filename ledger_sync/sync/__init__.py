"""
Notion sync engine.

Mirrors the lecture roster into every user's Notion lecture database.

Components:
- notion_client: Notion API wrapper with typed error translation
- titles: "N. Title" matching policy
- reconciler: Pure decision logic (create / update selection / update number / no-op)
- retry: Exponential backoff for rate limits and transient failures
- coordinator: Users x lectures orchestration with per-item error isolation
"""
