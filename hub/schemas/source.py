"""Source, file and sync log schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SourceCreate(BaseModel):
    """Request to register a source."""

    name: str = Field(min_length=1, max_length=255)
    mode: str = Field(description="One of 'remote', 'link', 'local_sync'")
    path: str = Field(
        min_length=1, description="owner/repo for remote, URL for link, folder for local_sync"
    )
    branch: str | None = Field(default=None, max_length=100)
    description: str | None = None
    source_type: str = Field(default="code", description="'code' or 'study'")


class SourceUpdate(BaseModel):
    """Partial update of a source."""

    name: str | None = Field(default=None, max_length=255)
    description: str | None = None
    branch: str | None = Field(default=None, max_length=100)


class SourceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    mode: str
    source_type: str
    origin: str
    branch: str | None = None
    description: str | None = None
    synced_at: str | None = None
    created_at: str
    updated_at: str


class SourceListResponse(BaseModel):
    sources: list[SourceResponse]
    total: int
    limit: int
    offset: int


class SyncLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source_id: int
    status: str
    files_added: int
    files_attempted: int
    files_updated: int = 0
    files_deleted: int = 0
    error_message: str | None = None
    started_at: str
    completed_at: str | None = None


class FileSummary(BaseModel):
    """File metadata without content, for listings."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    source_id: int
    path: str
    name: str
    size: int | None = None
    content_hash: str | None = None
    mime_type: str | None = None
    updated_at: str


class FileDetail(FileSummary):
    content: str | None = None
    created_at: str


class FileListResponse(BaseModel):
    files: list[FileSummary]
    total: int
    limit: int
    offset: int
