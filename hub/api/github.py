"""GitHub repository import, browsing and removal endpoints.

Remote failures (``RemoteError`` family) and concurrent-sync rejections are
translated into HTTP responses by the application-level exception handlers.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from hub.api.deps import get_github_client, get_session, get_settings, require_auth
from hub.config import Settings
from hub.models.source import SourceMode
from hub.models.user import User
from hub.remote.base import deadline_after, validate_repo_path
from hub.remote.github import GitHubClient
from hub.schemas.github import (
    ContentItem,
    ContentsResponse,
    GitHubSyncRequest,
    GitHubSyncResponse,
    RemoteUserResponse,
    RepositorySummary,
    TreeFile,
    TreeResponse,
)
from hub.services.source_service import delete_source, find_source_by_origin, get_source
from hub.services.sync_service import SyncRequest, SyncResult, sync_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/github", tags=["github"])


def sync_response(result: SyncResult) -> GitHubSyncResponse:
    return GitHubSyncResponse(
        source_id=result.source_id,
        origin=result.origin,
        branch=result.branch,
        files_synced=result.files_synced,
        files_attempted=result.files_attempted,
        truncated=result.truncated,
        sync_log_id=result.sync_log_id,
    )


@router.post("", response_model=GitHubSyncResponse)
async def import_repository_endpoint(
    body: GitHubSyncRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    client: Annotated[GitHubClient, Depends(get_github_client)],
    user: Annotated[User, Depends(require_auth)],
) -> GitHubSyncResponse:
    """Import a GitHub repository as a remote source and mirror its files."""
    if body.max_files > settings.sync_max_files_limit:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"max_files must not exceed {settings.sync_max_files_limit}",
        )
    try:
        validate_repo_path(body.origin)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    result = await sync_repository(
        session,
        client,
        user.id,
        SyncRequest(
            origin=body.origin.strip(),
            branch=(body.branch or "").strip() or None,
            sync_files=body.sync_files,
            max_files=body.max_files,
        ),
        deadline=deadline_after(settings.sync_timeout_seconds),
        stale_after_seconds=settings.sync_stale_after_seconds,
    )
    return sync_response(result)


@router.get("/repos", response_model=list[RepositorySummary])
async def list_repositories_endpoint(
    client: Annotated[GitHubClient, Depends(get_github_client)],
    user: Annotated[User, Depends(require_auth)],
) -> list[RepositorySummary]:
    """List repositories visible to the caller's GitHub credential."""
    repos = await client.list_repositories()
    return [RepositorySummary(**repo) for repo in repos]


@router.get("/tree", response_model=TreeResponse)
async def repository_tree_endpoint(
    client: Annotated[GitHubClient, Depends(get_github_client)],
    user: Annotated[User, Depends(require_auth)],
    repo: Annotated[str, Query(min_length=3)],
    branch: Annotated[str | None, Query(max_length=100)] = None,
) -> TreeResponse:
    """Show a repository's file listing without syncing anything."""
    try:
        validate_repo_path(repo)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    tree_branch = branch
    if not tree_branch:
        tree_branch = (await client.fetch_repository(repo)).default_branch
    tree = await client.fetch_tree(repo, tree_branch)
    return TreeResponse(
        repo=repo,
        branch=tree_branch,
        sha=tree.sha,
        files=[
            TreeFile(path=e.path, sha=e.sha, size=e.size)
            for e in tree.entries
            if e.type == "blob"
        ],
        truncated=tree.truncated,
    )


@router.get("/contents", response_model=ContentsResponse)
async def repository_contents_endpoint(
    client: Annotated[GitHubClient, Depends(get_github_client)],
    user: Annotated[User, Depends(require_auth)],
    repo: Annotated[str, Query(min_length=3)],
    path: Annotated[str, Query(max_length=1000)] = "",
    branch: Annotated[str | None, Query(max_length=100)] = None,
) -> ContentsResponse:
    """List a single directory of a repository without syncing anything."""
    try:
        validate_repo_path(repo)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if ".." in path.split("/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Path must not contain '..'"
        )

    entries = await client.fetch_contents(repo, path, branch or None)
    return ContentsResponse(
        repo=repo,
        path=path.strip("/"),
        branch=branch or None,
        entries=[
            ContentItem(
                name=e.name,
                path=e.path,
                type=e.type,
                sha=e.sha,
                size=e.size,
                download_url=e.download_url,
            )
            for e in entries
        ],
    )


@router.get("/user", response_model=RemoteUserResponse)
async def remote_user_endpoint(
    client: Annotated[GitHubClient, Depends(get_github_client)],
    user: Annotated[User, Depends(require_auth)],
) -> RemoteUserResponse:
    """Return the GitHub profile behind the caller's credential."""
    return RemoteUserResponse(**await client.fetch_user())


@router.delete("", status_code=204)
async def remove_repository_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
    source_id: Annotated[int | None, Query()] = None,
    repo: Annotated[str | None, Query()] = None,
) -> None:
    """Remove a remote repository source with its mirrored files."""
    if source_id is None and not repo:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either source_id or repo required",
        )

    if source_id is not None:
        source = await get_source(session, user.id, source_id)
    else:
        source = await find_source_by_origin(
            session, user.id, (repo or "").strip(), SourceMode.REMOTE.value
        )
    if source is None or source.mode != SourceMode.REMOTE.value:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Source not found")

    await delete_source(session, user.id, source.id)
