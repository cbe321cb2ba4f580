"""
Configuration settings for the notioneringsledger sync service.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database (job store)
    # ========================================
    database_url: str = Field(
        default="sqlite:///./notioneringsledger.db",
        description="SQLAlchemy connection string for the sync job store",
    )

    # ========================================
    # Notion API
    # ========================================
    notion_version: str = Field(
        default="2022-06-28",
        description="Notion API version",
    )
    notion_timeout_ms: int = Field(
        default=60000,
        description="Per-request timeout for Notion API calls",
    )

    # ─── Per-user credentials ──────────────────────────────────────────────────
    # One integration token and one course page per user workspace.
    notion_token_david: str | None = Field(default=None, description="David's Notion token")
    notion_token_albin: str | None = Field(default=None, description="Albin's Notion token")
    notion_token_mattias: str | None = Field(default=None, description="Mattias' Notion token")

    notion_course_page_david: str | None = Field(
        default=None,
        description="Page ID of David's course page (holds the lecture database)",
    )
    notion_course_page_albin: str | None = Field(
        default=None,
        description="Page ID of Albin's course page (holds the lecture database)",
    )
    notion_course_page_mattias: str | None = Field(
        default=None,
        description="Page ID of Mattias' course page (holds the lecture database)",
    )

    # ─── Lecture database schema ───────────────────────────────────────────────
    notion_title_property: str = Field(default="Föreläsning", description="Title property")
    notion_number_property: str = Field(default="Nummer", description="Lecture number property")
    notion_selection_property: str = Field(
        default="Vems",
        description="Rich text property holding the selection letters",
    )
    notion_subject_property: str = Field(default="Subject Area", description="Subject select")
    notion_url_property: str = Field(default="URL", description="Back-link URL property")

    # ========================================
    # Sync Behavior
    # ========================================
    notion_retry_attempts: int = Field(
        default=3,
        description="Maximum attempts per remote call (transient failures only)",
    )
    notion_retry_base_delay_ms: int = Field(
        default=1000,
        description="Backoff before the second attempt; doubles for each further attempt",
    )
    notion_retry_jitter: bool = Field(
        default=False,
        description="Add up to 10% random jitter to retry backoff",
    )
    notion_write_delay_ms: int = Field(
        default=200,
        description="Pause after each remote write (~5 writes/sec per workspace)",
    )
    sync_parallel_users: bool = Field(
        default=False,
        description="Run each user's lecture stream in its own thread",
    )
    sync_worker_enabled: bool = Field(
        default=True,
        description="Run the job worker inside the API process",
    )
    sync_worker_poll_seconds: float = Field(
        default=2.0,
        description="How often the worker looks for started jobs",
    )
    app_base_url: str = Field(
        default="https://ankiologernas-notioneringsledger.netlify.app",
        description="Base URL used for lecture back-links in Notion",
    )
    dry_run: bool = Field(
        default=False,
        description="Log Notion writes without making changes",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default="logs/notioneringsledger_sync.log",
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # API Server
    # ========================================
    api_host: str = Field(
        default="127.0.0.1",
        description="API server host",
    )
    api_port: int = Field(
        default=8100,
        description="API server port",
    )

    # ========================================
    # Helper Methods
    # ========================================
    def get_user_credentials(self) -> dict[str, tuple[str | None, str | None]]:
        """Return (token, course page id) per roster user, including unset values."""
        return {
            "David": (self.notion_token_david, self.notion_course_page_david),
            "Albin": (self.notion_token_albin, self.notion_course_page_albin),
            "Mattias": (self.notion_token_mattias, self.notion_course_page_mattias),
        }

    def get_configured_users(self) -> list[str]:
        """Return users that have both a token and a course page configured."""
        return [
            user
            for user, (token, page_id) in self.get_user_credentials().items()
            if token and page_id
        ]

    def get_notion_property_map(self) -> dict[str, str]:
        """Return the lecture database property names keyed by role."""
        return {
            "title": self.notion_title_property,
            "number": self.notion_number_property,
            "selection": self.notion_selection_property,
            "subject": self.notion_subject_property,
            "url": self.notion_url_property,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
