"""Local folder sync: reconcile files pushed by a client against a local_sync Source.

The client scans the folder and sends file contents together with their
hashes. Files whose hash matches the stored one are left untouched.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from hub.exceptions import SyncInProgressError
from hub.models.source import MirroredFile, SourceMode
from hub.services.batch_fetcher import FetchedFile
from hub.services.datetime_service import iso_before
from hub.services.mirror_service import (
    close_sync_log,
    delete_files,
    fail_sync_log,
    file_hashes,
    has_active_sync,
    open_sync_log,
    upsert_file,
)
from hub.services.source_service import list_sync_logs
from hub.services.sync_service import DEFAULT_STALE_AFTER_SECONDS, source_locks

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from hub.models.source import Source, SyncLog

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_BYTES = 1_000_000
RECENT_SYNCS = 5


@dataclass(frozen=True)
class LocalFile:
    """One file as scanned and hashed by the client."""

    path: str
    content: str
    size: int
    file_hash: str
    name: str | None = None
    mime_type: str | None = None


@dataclass
class LocalSyncResult:
    """Outcome of a push; counts are predictions when ``dry_run`` is set."""

    source_id: int
    dry_run: bool
    files_added: int = 0
    files_updated: int = 0
    files_deleted: int = 0
    files_unchanged: int = 0
    errors: list[str] = field(default_factory=list)
    synced_at: str | None = None
    sync_log_id: int | None = None


@dataclass(frozen=True)
class LocalSyncStatus:
    source: Source
    file_count: int
    recent_syncs: list[SyncLog]


def normalize_local_path(path: str) -> str:
    """Return ``path`` as a clean relative POSIX path, raising ValueError otherwise."""
    cleaned = path.strip().replace("\\", "/")
    if not cleaned:
        msg = "Path must not be empty"
        raise ValueError(msg)
    if cleaned.startswith("/") or (len(cleaned) > 1 and cleaned[1] == ":"):
        msg = f"Path must be relative: {path}"
        raise ValueError(msg)
    segments = cleaned.split("/")
    if any(segment in ("", ".", "..") for segment in segments):
        msg = f"Path must not contain empty, '.' or '..' segments: {path}"
        raise ValueError(msg)
    return cleaned


def _require_local_source(source: Source) -> None:
    if source.mode != SourceMode.LOCAL_SYNC.value:
        msg = "Source is not configured for local_sync mode"
        raise ValueError(msg)


async def push_local_files(
    session: AsyncSession,
    source: Source,
    files: Sequence[LocalFile],
    deleted_paths: Sequence[str] = (),
    *,
    dry_run: bool = False,
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
    stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
) -> LocalSyncResult:
    """Add new files, overwrite changed ones and delete ``deleted_paths``.

    A file that cannot be accepted is reported in ``errors`` and skipped;
    the push as a whole still succeeds. A dry run opens no Sync Log and
    writes nothing.
    """
    _require_local_source(source)
    source_id = source.id
    result = LocalSyncResult(source_id=source_id, dry_run=dry_run, synced_at=source.synced_at)
    existing = await file_hashes(session, source_id)

    to_write: list[tuple[LocalFile, str]] = []
    seen: set[str] = set()
    for local in files:
        try:
            path = normalize_local_path(local.path)
        except ValueError as exc:
            result.errors.append(str(exc))
            continue
        if path in seen:
            result.errors.append(f"Duplicate path in push: {path}")
            continue
        seen.add(path)
        if len(local.content.encode("utf-8")) > max_file_bytes:
            result.errors.append(f"{path} exceeds {max_file_bytes} bytes")
            continue
        if path in existing and existing[path] == local.file_hash:
            result.files_unchanged += 1
        else:
            to_write.append((local, path))

    to_delete: set[str] = set()
    for raw in deleted_paths:
        try:
            path = normalize_local_path(raw)
        except ValueError as exc:
            result.errors.append(str(exc))
            continue
        if path in existing and path not in seen:
            to_delete.add(path)

    if dry_run:
        result.files_added = sum(1 for _, path in to_write if path not in existing)
        result.files_updated = len(to_write) - result.files_added
        result.files_deleted = len(to_delete)
        return result

    async with source_locks.hold(source_id):
        if await has_active_sync(session, source_id, iso_before(stale_after_seconds)):
            raise SyncInProgressError(source_id)

        log_id = await open_sync_log(session, source_id)
        result.sync_log_id = log_id
        logger.info(
            "Local sync %d started for source %d: %d file(s) pushed, %d deletion(s)",
            log_id,
            source_id,
            len(files),
            len(to_delete),
        )
        try:
            for local, path in to_write:
                stored = await upsert_file(
                    session,
                    source_id,
                    FetchedFile(
                        path=path,
                        content=local.content,
                        size=local.size,
                        content_hash=local.file_hash,
                    ),
                    name=local.name,
                    mime_type=local.mime_type,
                )
                if not stored:
                    result.errors.append(f"Failed to store {path}")
                elif path in existing:
                    result.files_updated += 1
                else:
                    result.files_added += 1

            result.files_deleted = await delete_files(session, source_id, to_delete)
            result.synced_at = await close_sync_log(
                session,
                log_id,
                result.files_added,
                len(files),
                files_updated=result.files_updated,
                files_deleted=result.files_deleted,
                error_message="; ".join(result.errors) or None,
            )
        except (Exception, asyncio.CancelledError) as exc:
            logger.error("Local sync %d for source %d failed: %s", log_id, source_id, exc)
            await fail_sync_log(session, log_id, str(exc) or type(exc).__name__)
            raise

    logger.info(
        "Local sync %d finished: %d added, %d updated, %d deleted, %d unchanged",
        log_id,
        result.files_added,
        result.files_updated,
        result.files_deleted,
        result.files_unchanged,
    )
    return result


async def local_sync_status(session: AsyncSession, source: Source) -> LocalSyncStatus:
    """File count and the most recent sync logs of a Source."""
    file_count = await session.scalar(
        select(func.count()).select_from(MirroredFile).where(MirroredFile.source_id == source.id)
    )
    recent = await list_sync_logs(session, source.id, limit=RECENT_SYNCS)
    return LocalSyncStatus(source=source, file_count=int(file_count or 0), recent_syncs=recent)


async def clear_local_files(session: AsyncSession, source: Source) -> int:
    """Delete every file of a local_sync Source and reset its ``synced_at``."""
    _require_local_source(source)
    async with source_locks.hold(source.id):
        deleted = await delete_files(session, source.id)
        source.synced_at = None
        await session.commit()
    logger.info("Cleared %d file(s) from local source %d", deleted, source.id)
    return deleted
