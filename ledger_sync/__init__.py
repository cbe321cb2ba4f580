"""Notioneringsledger: keeps the shared lecture roster in step with each user's Notion database."""

__version__ = "0.1.0"
