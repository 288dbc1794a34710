"""Local folder sync schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from hub.schemas.source import SourceResponse, SyncLogResponse


class LocalFilePayload(BaseModel):
    """One scanned file pushed by the client."""

    path: str = Field(min_length=1, max_length=1000, description="Path relative to the folder")
    name: str | None = Field(default=None, max_length=255)
    content: str
    size: int = Field(ge=0)
    mime_type: str | None = Field(default=None, max_length=100)
    file_hash: str = Field(min_length=1, max_length=64, description="SHA-256 of the content")


class LocalSyncRequest(BaseModel):
    """Push a folder's current state to a local_sync source."""

    source_id: int
    files: list[LocalFilePayload] = Field(default_factory=list)
    deleted_paths: list[str] = Field(default_factory=list)
    dry_run: bool = False


class LocalSyncResponse(BaseModel):
    source_id: int
    dry_run: bool
    files_added: int
    files_updated: int
    files_deleted: int
    files_unchanged: int
    errors: list[str]
    synced_at: str | None = None
    sync_log_id: int | None = None


class SyncStatusResponse(BaseModel):
    source: SourceResponse
    file_count: int
    recent_syncs: list[SyncLogResponse]


class SyncClearResponse(BaseModel):
    source_id: int
    files_deleted: int
