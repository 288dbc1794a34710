"""Source registry: owner-scoped queries and CRUD for sources, files and sync logs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from sqlalchemy import delete, func, select

from hub.models.source import MirroredFile, Source, SourceMode, SourceType, SyncLog
from hub.remote.base import validate_repo_path
from hub.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from hub.schemas.source import SourceCreate, SourceUpdate

logger = logging.getLogger(__name__)


def _is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_origin(mode: str, origin: str) -> str:
    """Check mode-specific origin rules and return the normalized origin."""
    origin = origin.strip()
    if not origin:
        msg = "Path is required"
        raise ValueError(msg)
    if mode == SourceMode.REMOTE:
        validate_repo_path(origin)
    elif mode == SourceMode.LINK:
        if not _is_valid_url(origin):
            msg = "Link mode requires a valid URL"
            raise ValueError(msg)
    elif mode != SourceMode.LOCAL_SYNC:
        msg = f"Mode must be one of: {', '.join(m.value for m in SourceMode)}"
        raise ValueError(msg)
    return origin


async def create_source(session: AsyncSession, owner_id: int, data: SourceCreate) -> Source:
    """Register a new Source. Raises ValueError for invalid or duplicate origins."""
    origin = validate_origin(data.mode, data.path)
    if data.source_type not in {t.value for t in SourceType}:
        msg = "source_type must be 'code' or 'study'"
        raise ValueError(msg)

    existing = await session.execute(
        select(Source.id).where(
            Source.owner_id == owner_id,
            Source.origin == origin,
            Source.mode == data.mode,
        )
    )
    if existing.scalar_one_or_none() is not None:
        msg = f"A {data.mode} source for {origin!r} already exists"
        raise ValueError(msg)

    now = format_iso(now_utc())
    source = Source(
        owner_id=owner_id,
        name=data.name.strip(),
        mode=data.mode,
        source_type=data.source_type,
        origin=origin,
        branch=(data.branch or "").strip() or None,
        description=(data.description or "").strip() or None,
        created_at=now,
        updated_at=now,
    )
    session.add(source)
    await session.commit()
    await session.refresh(source)
    logger.info("Registered %s source %r for user %d", source.mode, origin, owner_id)
    return source


async def list_sources(
    session: AsyncSession,
    owner_id: int,
    *,
    mode: str | None = None,
    source_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Source], int]:
    """List the owner's sources, most recently updated first, with a total count."""
    filters = [Source.owner_id == owner_id]
    if mode is not None:
        filters.append(Source.mode == mode)
    if source_type is not None:
        filters.append(Source.source_type == source_type)

    total = await session.scalar(select(func.count()).select_from(Source).where(*filters))
    stmt = (
        select(Source)
        .where(*filters)
        .order_by(Source.updated_at.desc(), Source.id.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all()), int(total or 0)


async def get_source(session: AsyncSession, owner_id: int, source_id: int) -> Source | None:
    """Return one of the owner's sources, or None."""
    stmt = select(Source).where(Source.id == source_id, Source.owner_id == owner_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def find_source_by_origin(
    session: AsyncSession, owner_id: int, origin: str, mode: str
) -> Source | None:
    stmt = select(Source).where(
        Source.owner_id == owner_id, Source.origin == origin, Source.mode == mode
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def update_source(
    session: AsyncSession, owner_id: int, source_id: int, data: SourceUpdate
) -> Source | None:
    """Update name, description or branch. Returns None when not found."""
    source = await get_source(session, owner_id, source_id)
    if source is None:
        return None
    if data.name is not None:
        name = data.name.strip()
        if not name:
            msg = "Name must not be empty"
            raise ValueError(msg)
        source.name = name
    if data.description is not None:
        source.description = data.description.strip() or None
    if data.branch is not None:
        source.branch = data.branch.strip() or None
    source.updated_at = format_iso(now_utc())
    await session.commit()
    await session.refresh(source)
    return source


async def delete_source(session: AsyncSession, owner_id: int, source_id: int) -> bool:
    """Delete a Source together with its files and sync logs."""
    source = await get_source(session, owner_id, source_id)
    if source is None:
        return False
    await session.execute(delete(MirroredFile).where(MirroredFile.source_id == source_id))
    await session.execute(delete(SyncLog).where(SyncLog.source_id == source_id))
    await session.delete(source)
    await session.commit()
    logger.info("Deleted source %d (%s)", source_id, source.origin)
    return True


async def list_sync_logs(
    session: AsyncSession, source_id: int, *, limit: int = 20
) -> list[SyncLog]:
    """Most recent sync logs for a Source."""
    stmt = (
        select(SyncLog)
        .where(SyncLog.source_id == source_id)
        .order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_files(
    session: AsyncSession,
    owner_id: int,
    *,
    source_id: int | None = None,
    path_prefix: str | None = None,
    mime_type: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[MirroredFile], int]:
    """List mirrored files belonging to the owner's sources."""
    filters = [Source.owner_id == owner_id]
    if source_id is not None:
        filters.append(MirroredFile.source_id == source_id)
    if path_prefix:
        filters.append(MirroredFile.path.startswith(path_prefix, autoescape=True))
    if mime_type:
        filters.append(MirroredFile.mime_type == mime_type)
    if search:
        filters.append(MirroredFile.name.contains(search, autoescape=True))

    base = select(MirroredFile).join(Source, Source.id == MirroredFile.source_id).where(*filters)
    total = await session.scalar(select(func.count()).select_from(base.subquery()))
    stmt = base.order_by(MirroredFile.path).limit(limit).offset(offset)
    result = await session.execute(stmt)
    return list(result.scalars().all()), int(total or 0)


async def get_file(session: AsyncSession, owner_id: int, file_id: int) -> MirroredFile | None:
    """Return a mirrored file if it belongs to one of the owner's sources."""
    stmt = (
        select(MirroredFile)
        .join(Source, Source.id == MirroredFile.source_id)
        .where(MirroredFile.id == file_id, Source.owner_id == owner_id)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
