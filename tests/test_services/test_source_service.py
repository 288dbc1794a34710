"""Tests for the source registry service."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import func, select

from hub.models.source import MirroredFile, SyncLog
from hub.models.user import User
from hub.schemas.source import SourceCreate, SourceUpdate
from hub.services.batch_fetcher import FetchedFile
from hub.services.datetime_service import format_iso, now_utc
from hub.services.mirror_service import open_sync_log, upsert_file
from hub.services.source_service import (
    create_source,
    delete_source,
    find_source_by_origin,
    get_file,
    get_source,
    list_files,
    list_sources,
    list_sync_logs,
    update_source,
    validate_origin,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


async def _other_user(session: AsyncSession) -> User:
    now = format_iso(now_utc())
    user = User(username="intruder", display_name="Intruder", created_at=now, updated_at=now)
    session.add(user)
    await session.commit()
    return user


class TestValidateOrigin:
    def test_remote_requires_owner_repo(self) -> None:
        assert validate_origin("remote", " acme/widgets ") == "acme/widgets"
        with pytest.raises(ValueError, match="owner/repo"):
            validate_origin("remote", "acme")

    def test_remote_rejects_traversal_segments(self) -> None:
        with pytest.raises(ValueError):
            validate_origin("remote", "../etc")

    def test_link_requires_http_url(self) -> None:
        assert validate_origin("link", "https://example.com/a") == "https://example.com/a"
        with pytest.raises(ValueError, match="valid URL"):
            validate_origin("link", "ftp://example.com")

    def test_local_sync_accepts_any_folder(self) -> None:
        assert validate_origin("local_sync", "~/notes") == "~/notes"

    def test_unknown_mode(self) -> None:
        with pytest.raises(ValueError, match="Mode must be one of"):
            validate_origin("carrier-pigeon", "x")

    def test_blank_origin(self) -> None:
        with pytest.raises(ValueError, match="required"):
            validate_origin("link", "   ")


class TestSourceCrud:
    async def test_create_and_list(self, db_session: AsyncSession, owner: User) -> None:
        await create_source(
            db_session, owner.id, SourceCreate(name="Widgets", mode="remote", path="acme/widgets")
        )
        await create_source(
            db_session,
            owner.id,
            SourceCreate(
                name="Docs", mode="link", path="https://docs.example.com", source_type="study"
            ),
        )

        sources, total = await list_sources(db_session, owner.id)
        assert total == 2
        assert {s.origin for s in sources} == {"acme/widgets", "https://docs.example.com"}

        study, study_total = await list_sources(db_session, owner.id, source_type="study")
        assert study_total == 1
        assert study[0].name == "Docs"

        remote, _ = await list_sources(db_session, owner.id, mode="remote")
        assert [s.origin for s in remote] == ["acme/widgets"]

    async def test_duplicate_origin_rejected(self, db_session: AsyncSession, owner: User) -> None:
        data = SourceCreate(name="Widgets", mode="remote", path="acme/widgets")
        await create_source(db_session, owner.id, data)
        with pytest.raises(ValueError, match="already exists"):
            await create_source(db_session, owner.id, data)

    async def test_invalid_source_type(self, db_session: AsyncSession, owner: User) -> None:
        with pytest.raises(ValueError, match="source_type"):
            await create_source(
                db_session,
                owner.id,
                SourceCreate(name="x", mode="remote", path="acme/x", source_type="video"),
            )

    async def test_sources_are_scoped_to_owner(
        self, db_session: AsyncSession, owner: User
    ) -> None:
        source = await create_source(
            db_session, owner.id, SourceCreate(name="W", mode="remote", path="acme/widgets")
        )
        other = await _other_user(db_session)

        assert await get_source(db_session, other.id, source.id) is None
        assert await find_source_by_origin(db_session, other.id, "acme/widgets", "remote") is None
        assert not await delete_source(db_session, other.id, source.id)
        # The same origin may be registered by someone else.
        theirs = await create_source(
            db_session, other.id, SourceCreate(name="W", mode="remote", path="acme/widgets")
        )
        assert theirs.id != source.id

    async def test_update(self, db_session: AsyncSession, owner: User) -> None:
        source = await create_source(
            db_session, owner.id, SourceCreate(name="W", mode="remote", path="acme/widgets")
        )
        updated = await update_source(
            db_session, owner.id, source.id, SourceUpdate(name=" Widgets ", branch="dev")
        )
        assert updated is not None
        assert updated.name == "Widgets"
        assert updated.branch == "dev"

        with pytest.raises(ValueError, match="empty"):
            await update_source(db_session, owner.id, source.id, SourceUpdate(name="  "))
        assert await update_source(db_session, owner.id, 999, SourceUpdate(name="x")) is None

    async def test_delete_removes_files_and_logs(
        self, db_session: AsyncSession, owner: User
    ) -> None:
        source = await create_source(
            db_session, owner.id, SourceCreate(name="W", mode="remote", path="acme/widgets")
        )
        await upsert_file(
            db_session,
            source.id,
            FetchedFile(path="README.md", content="hi", size=2, content_hash="abc"),
        )
        await open_sync_log(db_session, source.id)

        assert await delete_source(db_session, owner.id, source.id)

        assert await get_source(db_session, owner.id, source.id) is None
        assert await db_session.scalar(select(func.count()).select_from(MirroredFile)) == 0
        assert await db_session.scalar(select(func.count()).select_from(SyncLog)) == 0


class TestFilesAndLogs:
    async def test_list_files_filters(self, db_session: AsyncSession, owner: User) -> None:
        source = await create_source(
            db_session, owner.id, SourceCreate(name="W", mode="remote", path="acme/widgets")
        )
        for path in ("README.md", "docs/guide.md", "docs/api.json", "src/app.py"):
            await upsert_file(
                db_session,
                source.id,
                FetchedFile(path=path, content=path, size=len(path), content_hash=path),
            )

        files, total = await list_files(db_session, owner.id)
        assert total == 4
        assert [f.path for f in files] == [
            "README.md",
            "docs/api.json",
            "docs/guide.md",
            "src/app.py",
        ]

        docs, _ = await list_files(db_session, owner.id, path_prefix="docs/")
        assert [f.path for f in docs] == ["docs/api.json", "docs/guide.md"]

        markdown, md_total = await list_files(db_session, owner.id, mime_type="text/markdown")
        assert md_total == 2
        assert {f.name for f in markdown} == {"README.md", "guide.md"}

        found, _ = await list_files(db_session, owner.id, search="app")
        assert [f.path for f in found] == ["src/app.py"]

        page, page_total = await list_files(db_session, owner.id, limit=1, offset=1)
        assert page_total == 4
        assert [f.path for f in page] == ["docs/api.json"]

    async def test_files_are_scoped_to_owner(
        self, db_session: AsyncSession, owner: User
    ) -> None:
        source = await create_source(
            db_session, owner.id, SourceCreate(name="W", mode="remote", path="acme/widgets")
        )
        await upsert_file(
            db_session,
            source.id,
            FetchedFile(path="README.md", content="hi", size=2, content_hash="abc"),
        )
        files, _ = await list_files(db_session, owner.id)
        other = await _other_user(db_session)

        assert await get_file(db_session, owner.id, files[0].id) is not None
        assert await get_file(db_session, other.id, files[0].id) is None
        assert await list_files(db_session, other.id) == ([], 0)

    async def test_sync_logs_newest_first(self, db_session: AsyncSession, owner: User) -> None:
        source = await create_source(
            db_session, owner.id, SourceCreate(name="W", mode="remote", path="acme/widgets")
        )
        first = await open_sync_log(db_session, source.id)
        second = await open_sync_log(db_session, source.id)

        logs = await list_sync_logs(db_session, source.id)
        assert [log.id for log in logs] == [second, first]
        assert len(await list_sync_logs(db_session, source.id, limit=1)) == 1
