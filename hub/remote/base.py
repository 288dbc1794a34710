"""Data classes and protocol shared by remote repository clients."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

_REPO_SEGMENT = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_repo_path(repo: str) -> tuple[str, str]:
    """Split ``owner/repo`` into its two segments, raising ValueError when malformed."""
    parts = repo.strip().split("/")
    if len(parts) != 2:
        msg = "Repository must be in the format 'owner/repo'"
        raise ValueError(msg)
    owner, name = parts
    for segment in (owner, name):
        if not segment or segment in (".", "..") or not _REPO_SEGMENT.match(segment):
            msg = "Repository must be in the format 'owner/repo'"
            raise ValueError(msg)
    return owner, name


def deadline_after(seconds: float) -> float:
    """Return an absolute deadline on the running event loop's clock."""
    return asyncio.get_running_loop().time() + seconds


def deadline_expired(deadline: float | None) -> bool:
    if deadline is None:
        return False
    return asyncio.get_running_loop().time() >= deadline


@dataclass(frozen=True)
class RepositoryInfo:
    """Repository metadata returned by the remote."""

    full_name: str
    name: str
    default_branch: str
    description: str | None = None
    private: bool = False


@dataclass(frozen=True)
class TreeEntry:
    """One entry of a recursive tree listing."""

    path: str
    type: str  # "blob" or "tree"
    sha: str
    size: int | None = None


@dataclass
class RepositoryTree:
    """Recursive tree listing; ``truncated`` means the remote dropped entries."""

    sha: str
    entries: list[TreeEntry] = field(default_factory=list)
    truncated: bool = False


@dataclass(frozen=True)
class BlobPayload:
    """Raw file payload plus its transfer encoding."""

    path: str
    content: str
    encoding: str
    sha: str | None = None
    size: int | None = None


@dataclass(frozen=True)
class ContentEntry:
    """One child of a directory listing."""

    name: str
    path: str
    type: str  # "file", "dir", "symlink" or "submodule"
    sha: str
    size: int | None = None
    download_url: str | None = None


@runtime_checkable
class RemoteTreeClient(Protocol):
    """Read-only view of a remote repository host."""

    async def fetch_repository(
        self, repo: str, *, deadline: float | None = None
    ) -> RepositoryInfo:
        """Fetch repository metadata including its default branch."""
        ...

    async def fetch_tree(
        self, repo: str, branch: str, *, deadline: float | None = None
    ) -> RepositoryTree:
        """Fetch the recursive file listing of ``branch``."""
        ...

    async def fetch_blob(
        self, repo: str, path: str, branch: str, *, deadline: float | None = None
    ) -> BlobPayload:
        """Fetch one file's content and transfer encoding."""
        ...
