"""SQLAlchemy ORM models for Knowledge Hub."""

from hub.models.base import Base
from hub.models.source import (
    MirroredFile,
    Source,
    SourceMode,
    SourceType,
    SyncLog,
    SyncStatus,
)
from hub.models.user import ApiKey, User

__all__ = [
    "ApiKey",
    "Base",
    "MirroredFile",
    "Source",
    "SourceMode",
    "SourceType",
    "SyncLog",
    "SyncStatus",
    "User",
]
