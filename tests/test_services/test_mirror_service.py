"""Tests for durable Source, File and SyncLog writes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import func, select

from hub.models.source import MirroredFile, Source, SyncLog
from hub.services.batch_fetcher import FetchedFile
from hub.services.datetime_service import iso_before
from hub.services.mirror_service import (
    close_sync_log,
    delete_files,
    ensure_source,
    fail_sync_log,
    file_hashes,
    has_active_sync,
    mime_type_for,
    open_sync_log,
    upsert_file,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from hub.models.user import User


def _fetched(path: str, content: str = "body") -> FetchedFile:
    return FetchedFile(path=path, content=content, size=len(content), content_hash=f"h-{content}")


async def _file_count(session: AsyncSession, source_id: int) -> int:
    result = await session.scalar(
        select(func.count()).select_from(MirroredFile).where(MirroredFile.source_id == source_id)
    )
    return int(result or 0)


class TestMimeTypes:
    def test_known_extensions(self) -> None:
        assert mime_type_for("README.md") == "text/markdown"
        assert mime_type_for("src/app.PY") == "text/x-python"
        assert mime_type_for("data.json") == "application/json"

    def test_unknown_or_missing_extension_defaults_to_plain_text(self) -> None:
        assert mime_type_for("Makefile") == "text/plain"
        assert mime_type_for("image.png") == "text/plain"


class TestEnsureSource:
    async def test_creates_then_reuses_source(self, db_session: AsyncSession, owner: User) -> None:
        first = await ensure_source(
            db_session, owner.id, "acme/widgets", "remote", name="widgets", branch="main"
        )
        second = await ensure_source(
            db_session,
            owner.id,
            "acme/widgets",
            "remote",
            name="widgets",
            branch="develop",
            description="Now described",
        )

        assert first == second
        count = await db_session.scalar(select(func.count()).select_from(Source))
        assert count == 1
        source = (
            await db_session.execute(
                select(Source).where(Source.id == first).execution_options(populate_existing=True)
            )
        ).scalar_one()
        assert source.branch == "develop"
        assert source.description == "Now described"

    async def test_mode_is_part_of_the_key(self, db_session: AsyncSession, owner: User) -> None:
        remote = await ensure_source(db_session, owner.id, "acme/widgets", "remote", name="w")
        local = await ensure_source(db_session, owner.id, "acme/widgets", "local_sync", name="w")
        assert remote != local


class TestUpsertFile:
    async def test_second_write_overwrites_in_place(
        self, db_session: AsyncSession, owner: User
    ) -> None:
        source_id = await ensure_source(db_session, owner.id, "acme/widgets", "remote", name="w")

        assert await upsert_file(db_session, source_id, _fetched("docs/guide.md", "v1"))
        assert await upsert_file(db_session, source_id, _fetched("docs/guide.md", "v2"))

        assert await _file_count(db_session, source_id) == 1
        stored = (
            await db_session.execute(
                select(MirroredFile)
                .where(MirroredFile.source_id == source_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        assert stored.content == "v2"
        assert stored.content_hash == "h-v2"
        assert stored.name == "guide.md"
        assert stored.mime_type == "text/markdown"

    async def test_same_path_in_different_sources_is_distinct(
        self, db_session: AsyncSession, owner: User
    ) -> None:
        a = await ensure_source(db_session, owner.id, "acme/a", "remote", name="a")
        b = await ensure_source(db_session, owner.id, "acme/b", "remote", name="b")

        await upsert_file(db_session, a, _fetched("README.md"))
        await upsert_file(db_session, b, _fetched("README.md"))

        assert await _file_count(db_session, a) == 1
        assert await _file_count(db_session, b) == 1

    async def test_rejected_write_returns_false(
        self, db_session: AsyncSession, owner: User
    ) -> None:
        # No such source: the foreign key rejects the row.
        assert not await upsert_file(db_session, 9999, _fetched("README.md"))
        assert await _file_count(db_session, 9999) == 0


class TestSyncLogLifecycle:
    async def test_open_then_close(self, db_session: AsyncSession, owner: User) -> None:
        source_id = await ensure_source(db_session, owner.id, "acme/widgets", "remote", name="w")
        log_id = await open_sync_log(db_session, source_id)

        log = await db_session.get(SyncLog, log_id)
        assert log is not None
        assert log.status == "syncing"
        assert log.completed_at is None

        await close_sync_log(db_session, log_id, files_added=3, files_attempted=4)

        await db_session.refresh(log)
        assert log.status == "success"
        assert log.files_added == 3
        assert log.files_attempted == 4
        assert log.completed_at is not None
        source = await db_session.get(Source, source_id)
        assert source is not None
        await db_session.refresh(source)
        assert source.synced_at == log.completed_at

    async def test_close_twice_is_rejected(self, db_session: AsyncSession, owner: User) -> None:
        source_id = await ensure_source(db_session, owner.id, "acme/widgets", "remote", name="w")
        log_id = await open_sync_log(db_session, source_id)
        await close_sync_log(db_session, log_id, 0)

        with pytest.raises(ValueError, match="already closed"):
            await close_sync_log(db_session, log_id, 0)

    async def test_close_unknown_log(self, db_session: AsyncSession) -> None:
        with pytest.raises(LookupError):
            await close_sync_log(db_session, 404, 0)

    async def test_fail_records_message(self, db_session: AsyncSession, owner: User) -> None:
        source_id = await ensure_source(db_session, owner.id, "acme/widgets", "remote", name="w")
        log_id = await open_sync_log(db_session, source_id)

        await fail_sync_log(db_session, log_id, "x" * 5000)

        log = await db_session.get(SyncLog, log_id)
        assert log is not None
        assert log.status == "failure"
        assert log.error_message == "x" * 1000
        assert log.completed_at is not None

    async def test_fail_leaves_closed_log_alone(
        self, db_session: AsyncSession, owner: User
    ) -> None:
        source_id = await ensure_source(db_session, owner.id, "acme/widgets", "remote", name="w")
        log_id = await open_sync_log(db_session, source_id)
        await close_sync_log(db_session, log_id, 1)

        await fail_sync_log(db_session, log_id, "late failure")

        log = await db_session.get(SyncLog, log_id)
        assert log is not None
        assert log.status == "success"
        assert log.error_message is None

    async def test_active_sync_detection_ignores_stale_logs(
        self, db_session: AsyncSession, owner: User
    ) -> None:
        source_id = await ensure_source(db_session, owner.id, "acme/widgets", "remote", name="w")
        assert not await has_active_sync(db_session, source_id, iso_before(60))

        await open_sync_log(db_session, source_id)

        assert await has_active_sync(db_session, source_id, iso_before(60))
        # A cutoff in the future makes every running log look stale.
        assert not await has_active_sync(db_session, source_id, iso_before(-60))

    async def test_stale_running_log_is_closed_as_abandoned(
        self, db_session: AsyncSession, owner: User
    ) -> None:
        source_id = await ensure_source(db_session, owner.id, "acme/widgets", "remote", name="w")
        stale = SyncLog(
            source_id=source_id,
            status="syncing",
            files_added=0,
            files_attempted=0,
            started_at=iso_before(7200),
        )
        db_session.add(stale)
        await db_session.commit()
        fresh_id = await open_sync_log(db_session, source_id)

        assert await has_active_sync(db_session, source_id, iso_before(3600))

        await db_session.refresh(stale)
        assert stale.status == "failure"
        assert (stale.error_message or "").startswith("Abandoned")
        assert stale.completed_at is not None
        fresh = await db_session.get(SyncLog, fresh_id)
        assert fresh is not None
        assert fresh.status == "syncing"

    async def test_close_records_local_counts_and_errors(
        self, db_session: AsyncSession, owner: User
    ) -> None:
        source_id = await ensure_source(db_session, owner.id, "/notes", "local_sync", name="n")
        log_id = await open_sync_log(db_session, source_id)

        completed = await close_sync_log(
            db_session, log_id, 1, 3, files_updated=1, files_deleted=2, error_message="bad.md"
        )

        log = await db_session.get(SyncLog, log_id)
        assert log is not None
        assert (log.files_updated, log.files_deleted) == (1, 2)
        assert log.error_message == "bad.md"
        assert log.completed_at == completed


class TestFileHashesAndDeletion:
    async def test_hashes_and_selective_delete(
        self, db_session: AsyncSession, owner: User
    ) -> None:
        source_id = await ensure_source(db_session, owner.id, "/notes", "local_sync", name="n")
        for path in ("a.md", "b.md", "c.md"):
            await upsert_file(db_session, source_id, _fetched(path, path))

        assert await file_hashes(db_session, source_id) == {
            "a.md": "h-a.md",
            "b.md": "h-b.md",
            "c.md": "h-c.md",
        }
        assert await delete_files(db_session, source_id, []) == 0
        assert await delete_files(db_session, source_id, {"a.md", "missing.md"}) == 1
        assert await _file_count(db_session, source_id) == 2
        assert await delete_files(db_session, source_id) == 2
        assert await _file_count(db_session, source_id) == 0

    async def test_explicit_name_and_mime_type(
        self, db_session: AsyncSession, owner: User
    ) -> None:
        source_id = await ensure_source(db_session, owner.id, "/notes", "local_sync", name="n")
        await upsert_file(
            db_session, source_id, _fetched("deck.key"), name="Deck", mime_type="app/x-key"
        )

        stored = await db_session.scalar(
            select(MirroredFile).where(MirroredFile.source_id == source_id)
        )
        assert stored is not None
        assert (stored.name, stored.mime_type) == ("Deck", "app/x-key")
