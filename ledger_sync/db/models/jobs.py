"""
Sync job tables.

A job row is both the durable progress record polled by the client and the
work-queue entry claimed by the worker: status 'started' means not yet claimed.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, ForeignKey, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class SyncJob(Base):
    """One sync run."""

    __tablename__ = "sync_jobs"

    job_id: Mapped[str] = mapped_column(Text, primary_key=True)
    kind: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="started", index=True)
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=func.now())
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    messages: Mapped[list[SyncJobMessage]] = relationship(
        back_populates="job",
        order_by="SyncJobMessage.id",
        cascade="all, delete-orphan",
    )


class SyncJobMessage(Base):
    """Append-only progress log line of a job."""

    __tablename__ = "sync_job_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(ForeignKey("sync_jobs.job_id"), nullable=False, index=True)
    ts: Mapped[float] = mapped_column(nullable=False)
    level: Mapped[str] = mapped_column(Text, nullable=False, default="info")
    text: Mapped[str] = mapped_column(Text, nullable=False)

    job: Mapped[SyncJob] = relationship(back_populates="messages")
