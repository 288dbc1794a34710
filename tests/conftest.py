"""Shared test fixtures for Knowledge Hub."""

from __future__ import annotations

import asyncio
import base64
import hashlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hub.config import Settings
from hub.database import create_engine, init_schema
from hub.main import create_app
from hub.remote.github import GitHubClient
from hub.services.auth_service import ensure_bootstrap_user

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from hub.models.user import User

TEST_API_KEY = "hub_0123456789abcdef0123456789abcdef"
TEST_GITHUB_TOKEN = "ghp_test_token"


class FakeGitHub:
    """In-memory stand-in for the GitHub REST endpoints the hub reads.

    Serve it through ``transport`` to a ``GitHubClient``. Every request is
    recorded, and blob fetch concurrency is tracked in ``max_in_flight``.
    """

    def __init__(self) -> None:
        self.repos: dict[str, dict[str, Any]] = {}
        self.entries: dict[str, list[dict[str, Any]]] = {}
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.truncated: set[str] = set()
        self.blob_errors: dict[str, int] = {}
        self.raw_blobs: dict[str, dict[str, Any]] = {}
        self.user: dict[str, Any] = {
            "login": "octocat",
            "id": 1,
            "name": "The Octocat",
            "email": None,
            "avatar_url": "https://avatars.example.com/octocat",
        }
        self.requests: list[httpx.Request] = []
        self.blob_delay = 0.0
        self.tree_gate: asyncio.Event | None = None
        self.tree_started = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0

    def add_repo(
        self,
        repo: str,
        *,
        default_branch: str = "main",
        description: str | None = None,
        private: bool = False,
    ) -> None:
        owner, name = repo.split("/")
        self.repos[repo] = {
            "id": len(self.repos) + 1,
            "name": name,
            "full_name": repo,
            "description": description,
            "html_url": f"https://github.com/{repo}",
            "default_branch": default_branch,
            "private": private,
            "language": "Python",
            "stargazers_count": 3,
            "updated_at": "2026-01-01T00:00:00Z",
            "owner": {"login": owner},
        }
        self.entries.setdefault(repo, [])

    def add_file(
        self, repo: str, path: str, content: str | bytes, *, size: int | None = None
    ) -> None:
        """Add a blob with fetchable content; ``size`` overrides the listed size."""
        data = content.encode() if isinstance(content, str) else content
        self.blobs[(repo, path)] = data
        self.entries[repo].append(
            {
                "path": path,
                "type": "blob",
                "sha": hashlib.sha1(data).hexdigest(),
                "size": len(data) if size is None else size,
            }
        )

    def add_dir(self, repo: str, path: str) -> None:
        self.entries[repo].append(
            {"path": path, "type": "tree", "sha": hashlib.sha1(path.encode()).hexdigest()}
        )

    def blob_requests(self) -> list[str]:
        paths = [r.url.path for r in self.requests]
        return [p.split("/contents/", 1)[1] for p in paths if "/contents/" in p]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.strip("/").split("/")

        if parts == ["user"]:
            return httpx.Response(200, json=self.user)
        if parts == ["user", "repos"]:
            return httpx.Response(200, json=list(self.repos.values()))
        if parts[0] != "repos" or len(parts) < 3:
            return _not_found()

        repo = f"{parts[1]}/{parts[2]}"
        rest = parts[3:]
        if repo not in self.repos:
            return _not_found()
        if not rest:
            return httpx.Response(200, json=self.repos[repo])
        if rest[:2] == ["git", "trees"]:
            return await self._tree(repo)
        if rest[0] == "contents":
            path = "/".join(rest[1:])
            if self._is_dir(repo, path):
                return self._listing(repo, path)
            return await self._blob(repo, path)
        return _not_found()

    def _is_dir(self, repo: str, path: str) -> bool:
        if not path:
            return True
        return any(e["path"] == path and e["type"] == "tree" for e in self.entries[repo])

    def _listing(self, repo: str, path: str) -> httpx.Response:
        prefix = f"{path}/" if path else ""
        children = [
            e
            for e in self.entries[repo]
            if e["path"].startswith(prefix) and "/" not in e["path"][len(prefix) :]
        ]
        return httpx.Response(
            200,
            json=[
                {
                    "name": e["path"].rsplit("/", 1)[-1],
                    "path": e["path"],
                    "sha": e["sha"],
                    "size": e.get("size", 0),
                    "type": "dir" if e["type"] == "tree" else "file",
                    "download_url": None
                    if e["type"] == "tree"
                    else f"https://raw.example.com/{repo}/{e['path']}",
                }
                for e in children
            ],
        )

    async def _tree(self, repo: str) -> httpx.Response:
        self.tree_started.set()
        if self.tree_gate is not None:
            await self.tree_gate.wait()
        return httpx.Response(
            200,
            json={
                "sha": hashlib.sha1(repo.encode()).hexdigest(),
                "tree": self.entries[repo],
                "truncated": repo in self.truncated,
            },
        )

    async def _blob(self, repo: str, path: str) -> httpx.Response:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.blob_delay)
        finally:
            self.in_flight -= 1

        if path in self.blob_errors:
            return httpx.Response(self.blob_errors[path], json={"message": "Server Error"})
        if path in self.raw_blobs:
            return httpx.Response(200, json=self.raw_blobs[path])
        data = self.blobs.get((repo, path))
        if data is None:
            return _not_found()
        return httpx.Response(
            200,
            json={
                "path": path,
                "content": base64.b64encode(data).decode(),
                "encoding": "base64",
                "sha": hashlib.sha1(data).hexdigest(),
                "size": len(data),
            },
        )


def _not_found() -> httpx.Response:
    return httpx.Response(404, json={"message": "Not Found"})


@asynccontextmanager
async def create_test_client(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB schema,
    bootstrap user) because ASGITransport does not trigger it.
    """
    app = create_app(settings)
    settings.validate_runtime_security()

    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.settings = settings
    app.state.remote_transport = transport

    await init_schema(engine)

    async with session_factory() as session:
        await ensure_bootstrap_user(session, settings)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await engine.dispose()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        bootstrap_api_key=TEST_API_KEY,
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine, _ = create_engine(test_settings)
    await init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def owner(db_session: AsyncSession, test_settings: Settings) -> User:
    return await ensure_bootstrap_user(db_session, test_settings)


@pytest.fixture
def github_api() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
async def remote_client(github_api: FakeGitHub) -> AsyncGenerator[GitHubClient]:
    async with GitHubClient(TEST_GITHUB_TOKEN, transport=github_api.transport) as client:
        yield client


@pytest.fixture
async def client(test_settings: Settings, github_api: FakeGitHub) -> AsyncGenerator[AsyncClient]:
    """HTTP client against the app, with GitHub served by ``github_api``."""
    async with create_test_client(test_settings, github_api.transport) as ac:
        yield ac


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {
        "X-Hub-Api-Key": TEST_API_KEY,
        "Authorization": f"Bearer {TEST_GITHUB_TOKEN}",
    }
