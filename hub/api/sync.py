"""Local folder sync endpoints.

Only the hub API key is needed; no remote credential is involved.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from hub.api.deps import get_session, get_settings, require_auth
from hub.config import Settings
from hub.models.source import SourceMode
from hub.models.user import User
from hub.schemas.source import SourceResponse, SyncLogResponse
from hub.schemas.sync import (
    LocalSyncRequest,
    LocalSyncResponse,
    SyncClearResponse,
    SyncStatusResponse,
)
from hub.services.local_sync_service import (
    LocalFile,
    clear_local_files,
    local_sync_status,
    push_local_files,
)
from hub.services.source_service import get_source

if TYPE_CHECKING:
    from hub.models.source import Source

router = APIRouter(prefix="/api/sync", tags=["sync"])

_NOT_LOCAL = "Source is not configured for local_sync mode"


async def _owned_source(session: AsyncSession, user: User, source_id: int) -> Source:
    source = await get_source(session, user.id, source_id)
    if source is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Source not found")
    return source


@router.get("", response_model=SyncStatusResponse)
async def sync_status_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
    source_id: Annotated[int, Query()],
) -> SyncStatusResponse:
    """Report a source's file count and its five most recent syncs."""
    source = await _owned_source(session, user, source_id)
    report = await local_sync_status(session, source)
    return SyncStatusResponse(
        source=SourceResponse.model_validate(report.source),
        file_count=report.file_count,
        recent_syncs=[SyncLogResponse.model_validate(log) for log in report.recent_syncs],
    )


@router.post("", response_model=LocalSyncResponse)
async def push_files_endpoint(
    body: LocalSyncRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    user: Annotated[User, Depends(require_auth)],
) -> LocalSyncResponse:
    """Reconcile a pushed folder snapshot with the stored files."""
    if len(body.files) > settings.local_sync_max_files:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"A push must not carry more than {settings.local_sync_max_files} files",
        )
    source = await _owned_source(session, user, body.source_id)
    if source.mode != SourceMode.LOCAL_SYNC.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_NOT_LOCAL)

    result = await push_local_files(
        session,
        source,
        [
            LocalFile(
                path=f.path,
                content=f.content,
                size=f.size,
                file_hash=f.file_hash,
                name=f.name,
                mime_type=f.mime_type,
            )
            for f in body.files
        ],
        body.deleted_paths,
        dry_run=body.dry_run,
        max_file_bytes=settings.local_sync_max_file_bytes,
        stale_after_seconds=settings.sync_stale_after_seconds,
    )
    return LocalSyncResponse(
        source_id=result.source_id,
        dry_run=result.dry_run,
        files_added=result.files_added,
        files_updated=result.files_updated,
        files_deleted=result.files_deleted,
        files_unchanged=result.files_unchanged,
        errors=result.errors,
        synced_at=result.synced_at,
        sync_log_id=result.sync_log_id,
    )


@router.delete("", response_model=SyncClearResponse)
async def clear_files_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
    source_id: Annotated[int, Query()],
) -> SyncClearResponse:
    """Remove every synced file of a local_sync source."""
    source = await _owned_source(session, user, source_id)
    if source.mode != SourceMode.LOCAL_SYNC.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_NOT_LOCAL)
    deleted = await clear_local_files(session, source)
    return SyncClearResponse(source_id=source_id, files_deleted=deleted)
