"""Remote repository import and browsing schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class GitHubSyncRequest(BaseModel):
    """Request to import (or re-import) a GitHub repository."""

    origin: str = Field(min_length=3, description="Repository as 'owner/repo'")
    branch: str | None = Field(default=None, max_length=100)
    sync_files: bool = True
    max_files: int = Field(default=500, ge=0)


class SourceSyncRequest(BaseModel):
    """Request to re-sync an already registered remote source."""

    max_files: int = Field(default=500, ge=0)


class GitHubSyncResponse(BaseModel):
    source_id: int
    origin: str
    branch: str
    files_synced: int
    files_attempted: int = 0
    truncated: bool = False
    sync_log_id: int


class RepositorySummary(BaseModel):
    id: int | None = None
    name: str | None = None
    full_name: str | None = None
    description: str | None = None
    html_url: str | None = None
    default_branch: str | None = None
    private: bool = False
    language: str | None = None
    stars: int = 0
    updated_at: str | None = None
    owner: str | None = None


class TreeFile(BaseModel):
    path: str
    sha: str
    size: int | None = None


class TreeResponse(BaseModel):
    repo: str
    branch: str
    sha: str
    files: list[TreeFile]
    truncated: bool


class RemoteUserResponse(BaseModel):
    login: str | None = None
    id: int | None = None
    name: str | None = None
    email: str | None = None
    avatar_url: str | None = None


class ContentItem(BaseModel):
    name: str
    path: str
    type: str
    sha: str
    size: int | None = None
    download_url: str | None = None


class ContentsResponse(BaseModel):
    """One directory of a repository, as listed by the remote."""

    repo: str
    path: str
    branch: str | None = None
    entries: list[ContentItem]
