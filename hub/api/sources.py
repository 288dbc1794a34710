"""Source registry endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from hub.api.deps import get_github_client, get_session, get_settings, require_auth
from hub.api.github import sync_response
from hub.config import Settings
from hub.models.source import SourceMode, SourceType
from hub.models.user import User
from hub.remote.base import deadline_after
from hub.remote.github import GitHubClient
from hub.schemas.github import GitHubSyncResponse, SourceSyncRequest
from hub.schemas.source import (
    SourceCreate,
    SourceListResponse,
    SourceResponse,
    SourceUpdate,
    SyncLogResponse,
)
from hub.services.source_service import (
    create_source,
    delete_source,
    get_source,
    list_sources,
    list_sync_logs,
    update_source,
)
from hub.services.sync_service import sync_source

router = APIRouter(prefix="/api/sources", tags=["sources"])


@router.get("", response_model=SourceListResponse)
async def list_sources_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
    mode: Annotated[SourceMode | None, Query()] = None,
    source_type: Annotated[SourceType | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> SourceListResponse:
    """List the caller's sources."""
    sources, total = await list_sources(
        session,
        user.id,
        mode=mode.value if mode else None,
        source_type=source_type.value if source_type else None,
        limit=limit,
        offset=offset,
    )
    return SourceListResponse(
        sources=[SourceResponse.model_validate(s) for s in sources],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=SourceResponse, status_code=201)
async def create_source_endpoint(
    body: SourceCreate,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> SourceResponse:
    """Register a source without syncing it."""
    try:
        source = await create_source(session, user.id, body)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return SourceResponse.model_validate(source)


@router.get("/{source_id}", response_model=SourceResponse)
async def get_source_endpoint(
    source_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> SourceResponse:
    source = await get_source(session, user.id, source_id)
    if source is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Source not found")
    return SourceResponse.model_validate(source)


@router.patch("/{source_id}", response_model=SourceResponse)
async def update_source_endpoint(
    source_id: int,
    body: SourceUpdate,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> SourceResponse:
    try:
        source = await update_source(session, user.id, source_id, body)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if source is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Source not found")
    return SourceResponse.model_validate(source)


@router.delete("/{source_id}", status_code=204)
async def delete_source_endpoint(
    source_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> None:
    """Delete a source together with its mirrored files and sync history."""
    deleted = await delete_source(session, user.id, source_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Source not found")


@router.get("/{source_id}/sync-logs", response_model=list[SyncLogResponse])
async def list_sync_logs_endpoint(
    source_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[SyncLogResponse]:
    source = await get_source(session, user.id, source_id)
    if source is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Source not found")
    logs = await list_sync_logs(session, source_id, limit=limit)
    return [SyncLogResponse.model_validate(log) for log in logs]


@router.post("/{source_id}/sync", response_model=GitHubSyncResponse)
async def sync_source_endpoint(
    source_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    client: Annotated[GitHubClient, Depends(get_github_client)],
    user: Annotated[User, Depends(require_auth)],
    body: SourceSyncRequest | None = None,
) -> GitHubSyncResponse:
    """Re-sync a registered remote source."""
    max_files = body.max_files if body is not None else SourceSyncRequest().max_files
    if max_files > settings.sync_max_files_limit:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"max_files must not exceed {settings.sync_max_files_limit}",
        )

    source = await get_source(session, user.id, source_id)
    if source is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Source not found")
    if source.mode != SourceMode.REMOTE.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Source is not a remote repository",
        )

    result = await sync_source(
        session,
        client,
        source,
        max_files=max_files,
        deadline=deadline_after(settings.sync_timeout_seconds),
        stale_after_seconds=settings.sync_stale_after_seconds,
    )
    return sync_response(result)
