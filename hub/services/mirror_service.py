"""Mirror reconciler: durable Source, File and SyncLog writes for a sync."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from hub.models.source import MirroredFile, Source, SyncLog, SyncStatus
from hub.services.datetime_service import format_iso, now_utc
from hub.services.sync_policy import file_extension

if TYPE_CHECKING:
    from collections.abc import Collection

    from sqlalchemy.ext.asyncio import AsyncSession

    from hub.services.batch_fetcher import FetchedFile

logger = logging.getLogger(__name__)

MIME_TYPES: dict[str, str] = {
    "md": "text/markdown",
    "txt": "text/plain",
    "json": "application/json",
    "js": "text/javascript",
    "jsx": "text/javascript",
    "ts": "text/typescript",
    "tsx": "text/typescript",
    "py": "text/x-python",
    "rs": "text/x-rust",
    "go": "text/x-go",
    "java": "text/x-java",
    "c": "text/x-c",
    "h": "text/x-c",
    "cpp": "text/x-c++",
    "css": "text/css",
    "scss": "text/x-scss",
    "html": "text/html",
    "xml": "application/xml",
    "yaml": "text/yaml",
    "yml": "text/yaml",
    "toml": "text/toml",
    "ini": "text/plain",
    "sh": "text/x-shellscript",
    "bash": "text/x-shellscript",
    "zsh": "text/x-shellscript",
}
DEFAULT_MIME_TYPE = "text/plain"

_MAX_ERROR_MESSAGE = 1000
ABANDONED_MESSAGE = "Abandoned: sync did not finish before the stale cutoff"


def mime_type_for(path: str) -> str:
    """Derive a MIME type from the path's extension."""
    ext = file_extension(path)
    if ext is None:
        return DEFAULT_MIME_TYPE
    return MIME_TYPES.get(ext, DEFAULT_MIME_TYPE)


def _insert_for(session: AsyncSession, model: type[Any]) -> Any:
    """Return a dialect-specific INSERT supporting ON CONFLICT DO UPDATE."""
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert(model)
    if dialect == "postgresql":
        return postgresql.insert(model)
    msg = f"Upsert is not supported for database dialect {dialect!r}"
    raise NotImplementedError(msg)


async def ensure_source(
    session: AsyncSession,
    owner_id: int,
    origin: str,
    mode: str,
    *,
    name: str,
    branch: str | None = None,
    description: str | None = None,
) -> int:
    """Find or create the Source keyed by (owner, origin, mode) and return its id.

    An existing Source gets its name, branch and description refreshed.
    """
    now = format_iso(now_utc())
    stmt = _insert_for(session, Source).values(
        owner_id=owner_id,
        origin=origin,
        mode=mode,
        name=name,
        branch=branch,
        description=description,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["owner_id", "origin", "mode"],
        set_={
            "name": stmt.excluded.name,
            "branch": stmt.excluded.branch,
            "description": stmt.excluded.description,
            "updated_at": stmt.excluded.updated_at,
        },
    ).returning(Source.id)
    result = await session.execute(stmt)
    source_id: int = result.scalar_one()
    await session.commit()
    return source_id


async def open_sync_log(session: AsyncSession, source_id: int) -> int:
    """Create a sync log in the ``syncing`` state and return its id."""
    log = SyncLog(
        source_id=source_id,
        status=SyncStatus.SYNCING.value,
        files_added=0,
        files_attempted=0,
        started_at=format_iso(now_utc()),
    )
    session.add(log)
    await session.commit()
    return log.id


async def upsert_file(
    session: AsyncSession,
    source_id: int,
    fetched: FetchedFile,
    *,
    name: str | None = None,
    mime_type: str | None = None,
) -> bool:
    """Insert or overwrite the File keyed by (source_id, path).

    ``name`` and ``mime_type`` default to values derived from the path.
    Returns False, after rolling back just this write, if the database
    rejects it.
    """
    now = format_iso(now_utc())
    name = name or fetched.path.rsplit("/", 1)[-1]
    try:
        stmt = _insert_for(session, MirroredFile).values(
            source_id=source_id,
            path=fetched.path,
            name=name,
            content=fetched.content,
            size=fetched.size,
            content_hash=fetched.content_hash,
            mime_type=mime_type or mime_type_for(fetched.path),
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["source_id", "path"],
            set_={
                "name": stmt.excluded.name,
                "content": stmt.excluded.content,
                "size": stmt.excluded.size,
                "content_hash": stmt.excluded.content_hash,
                "mime_type": stmt.excluded.mime_type,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await session.execute(stmt)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.warning("Failed to store %s for source %d: %s", fetched.path, source_id, exc)
        return False
    return True


async def file_hashes(session: AsyncSession, source_id: int) -> dict[str, str | None]:
    """Map each stored path of the Source to its content hash."""
    result = await session.execute(
        select(MirroredFile.path, MirroredFile.content_hash).where(
            MirroredFile.source_id == source_id
        )
    )
    return {path: content_hash for path, content_hash in result.all()}


async def delete_files(
    session: AsyncSession, source_id: int, paths: Collection[str] | None = None
) -> int:
    """Delete the Source's files at ``paths``, or all of them when ``paths`` is None."""
    stmt = delete(MirroredFile).where(MirroredFile.source_id == source_id)
    if paths is not None:
        if not paths:
            return 0
        stmt = stmt.where(MirroredFile.path.in_(list(paths)))
    result = await session.execute(stmt)
    await session.commit()
    return int(result.rowcount or 0)


async def close_sync_log(
    session: AsyncSession,
    log_id: int,
    files_added: int,
    files_attempted: int = 0,
    *,
    files_updated: int = 0,
    files_deleted: int = 0,
    error_message: str | None = None,
) -> str:
    """Mark a sync log ``success`` and stamp its Source's ``synced_at``.

    ``error_message`` records per-file problems of an otherwise successful
    sync. Returns the completion timestamp.
    """
    now = format_iso(now_utc())
    log = await session.get(SyncLog, log_id)
    if log is None:
        msg = f"Sync log {log_id} not found"
        raise LookupError(msg)
    if log.status != SyncStatus.SYNCING.value:
        msg = f"Sync log {log_id} is already closed ({log.status})"
        raise ValueError(msg)
    log.status = SyncStatus.SUCCESS.value
    log.files_added = files_added
    log.files_attempted = files_attempted
    log.files_updated = files_updated
    log.files_deleted = files_deleted
    if error_message:
        log.error_message = error_message[:_MAX_ERROR_MESSAGE]
    log.completed_at = now
    await session.execute(
        update(Source).where(Source.id == log.source_id).values(synced_at=now, updated_at=now)
    )
    await session.commit()
    return now


async def fail_sync_log(session: AsyncSession, log_id: int, message: str) -> None:
    """Mark a sync log ``failure``; a log that is already closed is left alone."""
    await session.rollback()
    log = await session.get(SyncLog, log_id)
    if log is None or log.status != SyncStatus.SYNCING.value:
        return
    log.status = SyncStatus.FAILURE.value
    log.error_message = message[:_MAX_ERROR_MESSAGE]
    log.completed_at = format_iso(now_utc())
    await session.commit()


async def has_active_sync(session: AsyncSession, source_id: int, stale_before: str) -> bool:
    """Return True if the Source has a ``syncing`` log started after ``stale_before``.

    Older ``syncing`` logs belong to a run that never finished; they are
    closed as ``failure`` here so they do not stay open forever.
    """
    now = format_iso(now_utc())
    abandoned = await session.execute(
        update(SyncLog)
        .where(
            SyncLog.source_id == source_id,
            SyncLog.status == SyncStatus.SYNCING.value,
            SyncLog.started_at <= stale_before,
        )
        .values(
            status=SyncStatus.FAILURE.value,
            error_message=ABANDONED_MESSAGE,
            completed_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if abandoned.rowcount:
        await session.commit()
        logger.warning(
            "Closed %d abandoned sync log(s) for source %d", abandoned.rowcount, source_id
        )

    stmt = (
        select(SyncLog.id)
        .where(
            SyncLog.source_id == source_id,
            SyncLog.status == SyncStatus.SYNCING.value,
            SyncLog.started_at > stale_before,
        )
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none() is not None
