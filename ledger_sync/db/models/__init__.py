# SQLAlchemy models
from .base import Base
from .jobs import SyncJob, SyncJobMessage

__all__ = [
    "Base",
    "SyncJob",
    "SyncJobMessage",
]
