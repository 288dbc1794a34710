"""Mirrored file browsing endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from hub.api.deps import get_session, require_auth
from hub.models.user import User
from hub.schemas.source import FileDetail, FileListResponse, FileSummary
from hub.services.source_service import get_file, list_files

router = APIRouter(prefix="/api/files", tags=["files"])


@router.get("", response_model=FileListResponse)
async def list_files_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
    source_id: Annotated[int | None, Query()] = None,
    path: Annotated[str | None, Query(description="Path prefix")] = None,
    mime_type: Annotated[str | None, Query()] = None,
    search: Annotated[str | None, Query(max_length=200)] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> FileListResponse:
    """List mirrored files, without content."""
    files, total = await list_files(
        session,
        user.id,
        source_id=source_id,
        path_prefix=path,
        mime_type=mime_type,
        search=search,
        limit=limit,
        offset=offset,
    )
    return FileListResponse(
        files=[FileSummary.model_validate(f) for f in files],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{file_id}", response_model=FileDetail)
async def get_file_endpoint(
    file_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> FileDetail:
    """Return a mirrored file with its content."""
    mirrored = await get_file(session, user.id, file_id)
    if mirrored is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return FileDetail.model_validate(mirrored)
