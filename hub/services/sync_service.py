"""Remote repository sync: resolve, list, filter, fetch and reconcile."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from hub.exceptions import SyncInProgressError
from hub.models.source import Source, SourceMode
from hub.remote.base import validate_repo_path
from hub.services.batch_fetcher import BatchFetcher, FetchedFile
from hub.services.datetime_service import format_iso, iso_before, now_utc
from hub.services.mirror_service import (
    close_sync_log,
    ensure_source,
    fail_sync_log,
    has_active_sync,
    open_sync_log,
    upsert_file,
)
from hub.services.sync_policy import DEFAULT_MAX_FILES, select_entries

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession

    from hub.remote.base import RemoteTreeClient

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_SECONDS = 1800


@dataclass(frozen=True)
class SyncRequest:
    """A request to mirror ``origin`` (``owner/repo``)."""

    origin: str
    branch: str | None = None
    sync_files: bool = True
    max_files: int = DEFAULT_MAX_FILES


@dataclass(frozen=True)
class SyncResult:
    """Summary of a completed sync."""

    source_id: int
    origin: str
    branch: str
    files_synced: int
    files_attempted: int
    truncated: bool
    sync_log_id: int


class SourceLockRegistry:
    """Per-Source mutual exclusion within this process.

    A second sync of a Source that is already being synced is rejected
    rather than queued.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}

    def is_locked(self, source_id: int) -> bool:
        lock = self._locks.get(source_id)
        return lock is not None and lock.locked()

    def active_count(self) -> int:
        return sum(1 for lock in self._locks.values() if lock.locked())

    @asynccontextmanager
    async def hold(self, source_id: int) -> AsyncIterator[None]:
        if self.is_locked(source_id):
            raise SyncInProgressError(source_id)
        lock = self._locks.setdefault(source_id, asyncio.Lock())
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
            self._locks.pop(source_id, None)


source_locks = SourceLockRegistry()


def active_sync_count() -> int:
    """Number of Sources currently being synced by this process."""
    return source_locks.active_count()


async def sync_repository(
    session: AsyncSession,
    client: RemoteTreeClient,
    owner_id: int,
    request: SyncRequest,
    *,
    deadline: float | None = None,
    stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
) -> SyncResult:
    """Mirror a remote repository into the owner's local file store.

    Repository lookup failures propagate before any Sync Log is opened.
    """
    origin = request.origin.strip()
    validate_repo_path(origin)

    repo_info = await client.fetch_repository(origin, deadline=deadline)
    branch = request.branch or repo_info.default_branch

    source_id = await ensure_source(
        session,
        owner_id,
        origin,
        SourceMode.REMOTE.value,
        name=repo_info.name,
        branch=branch,
        description=repo_info.description,
    )
    return await _run_sync(
        session,
        client,
        source_id=source_id,
        origin=origin,
        branch=branch,
        sync_files=request.sync_files,
        max_files=request.max_files,
        deadline=deadline,
        stale_after_seconds=stale_after_seconds,
    )


async def sync_source(
    session: AsyncSession,
    client: RemoteTreeClient,
    source: Source,
    *,
    max_files: int = DEFAULT_MAX_FILES,
    deadline: float | None = None,
    stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
) -> SyncResult:
    """Re-sync an already registered remote Source.

    The repository is looked up first so that a revoked credential or a
    deleted repository fails before any Sync Log is opened.
    """
    if source.mode != SourceMode.REMOTE.value:
        msg = "Source is not a remote repository"
        raise ValueError(msg)
    validate_repo_path(source.origin)

    repo_info = await client.fetch_repository(source.origin, deadline=deadline)
    branch = source.branch or repo_info.default_branch
    if not source.branch or source.description != repo_info.description:
        source.branch = branch
        source.description = repo_info.description
        source.updated_at = format_iso(now_utc())
        await session.commit()

    return await _run_sync(
        session,
        client,
        source_id=source.id,
        origin=source.origin,
        branch=branch,
        sync_files=True,
        max_files=max_files,
        deadline=deadline,
        stale_after_seconds=stale_after_seconds,
    )


async def _run_sync(
    session: AsyncSession,
    client: RemoteTreeClient,
    *,
    source_id: int,
    origin: str,
    branch: str,
    sync_files: bool,
    max_files: int,
    deadline: float | None,
    stale_after_seconds: int,
) -> SyncResult:
    async with source_locks.hold(source_id):
        if await has_active_sync(session, source_id, iso_before(stale_after_seconds)):
            raise SyncInProgressError(source_id)

        log_id = await open_sync_log(session, source_id)
        logger.info("Sync %d started for %s@%s (source %d)", log_id, origin, branch, source_id)

        files_synced = 0
        attempted = 0
        truncated = False
        try:
            if sync_files:
                tree = await client.fetch_tree(origin, branch, deadline=deadline)
                decision = select_entries(tree, max_files)
                truncated = decision.truncated
                if truncated:
                    logger.warning(
                        "Tree listing for %s@%s is truncated; skipping file sync", origin, branch
                    )
                else:
                    logger.info(
                        "Sync %d: %d of %d entries eligible, fetching %d",
                        log_id,
                        decision.eligible,
                        decision.considered,
                        len(decision.entries),
                    )

                fetcher = BatchFetcher(client, origin, branch, deadline=deadline)
                async for outcomes in fetcher.iter_batches(decision.entries):
                    for outcome in outcomes:
                        attempted += 1
                        if isinstance(outcome, FetchedFile) and await upsert_file(
                            session, source_id, outcome
                        ):
                            files_synced += 1

            await close_sync_log(session, log_id, files_synced, attempted)
        except (Exception, asyncio.CancelledError) as exc:
            logger.error("Sync %d for %s failed: %s", log_id, origin, exc)
            await fail_sync_log(session, log_id, str(exc) or type(exc).__name__)
            raise

    logger.info("Sync %d finished: %d/%d files stored", log_id, files_synced, attempted)
    return SyncResult(
        source_id=source_id,
        origin=origin,
        branch=branch,
        files_synced=files_synced,
        files_attempted=attempted,
        truncated=truncated,
        sync_log_id=log_id,
    )
