"""GitHub REST API client for repository metadata, trees and file contents."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from hub.exceptions import RemoteRejected, RemoteTimeout, RemoteUnavailable
from hub.remote.base import (
    BlobPayload,
    ContentEntry,
    RepositoryInfo,
    RepositoryTree,
    TreeEntry,
    deadline_expired,
    validate_repo_path,
)

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
_USER_AGENT = "Knowledge-Hub"
_ACCEPT = "application/vnd.github.v3+json"


class GitHubClient:
    """Client for the read endpoints of the GitHub REST API.

    The bearer credential is supplied per client instance by the caller and is
    never stored beyond the lifetime of the underlying HTTP client.
    """

    def __init__(
        self,
        credential: str,
        *,
        api_base: str = GITHUB_API_BASE,
        request_timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._request_timeout = request_timeout
        self._client = httpx.AsyncClient(
            base_url=api_base.rstrip("/"),
            headers={
                "Authorization": f"Bearer {credential}",
                "Accept": _ACCEPT,
                "User-Agent": _USER_AGENT,
            },
            timeout=request_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def _get_json(
        self,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        deadline: float | None = None,
    ) -> Any:
        if deadline_expired(deadline):
            msg = f"Deadline exceeded before requesting {endpoint}"
            raise RemoteTimeout(msg)

        try:
            if deadline is None:
                resp = await self._client.get(endpoint, params=params)
            else:
                async with asyncio.timeout_at(deadline):
                    resp = await self._client.get(endpoint, params=params)
        except (httpx.TimeoutException, TimeoutError) as exc:
            msg = f"Timed out requesting {endpoint}"
            raise RemoteTimeout(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"Failed to reach remote API: {exc}"
            raise RemoteUnavailable(msg) from exc

        if not resp.is_success:
            raise RemoteRejected(resp.status_code, _error_message(resp))

        try:
            return resp.json()
        except json.JSONDecodeError as exc:
            msg = f"Remote API returned invalid JSON for {endpoint}"
            raise RemoteUnavailable(msg) from exc

    async def fetch_repository(
        self, repo: str, *, deadline: float | None = None
    ) -> RepositoryInfo:
        """Fetch repository metadata, including its default branch."""
        validate_repo_path(repo)
        data = await self._get_json(f"/repos/{repo}", deadline=deadline)
        return RepositoryInfo(
            full_name=data.get("full_name") or repo,
            name=data.get("name") or repo.split("/")[-1],
            default_branch=data.get("default_branch") or "main",
            description=data.get("description"),
            private=bool(data.get("private", False)),
        )

    async def fetch_tree(
        self, repo: str, branch: str, *, deadline: float | None = None
    ) -> RepositoryTree:
        """Fetch the recursive tree listing of ``branch``."""
        validate_repo_path(repo)
        data = await self._get_json(
            f"/repos/{repo}/git/trees/{quote(branch, safe='')}",
            params={"recursive": "1"},
            deadline=deadline,
        )
        entries = [
            TreeEntry(
                path=item["path"],
                type=item.get("type", ""),
                sha=item.get("sha", ""),
                size=item.get("size"),
            )
            for item in data.get("tree", [])
            if isinstance(item, dict) and "path" in item
        ]
        return RepositoryTree(
            sha=data.get("sha", ""),
            entries=entries,
            truncated=bool(data.get("truncated", False)),
        )

    async def fetch_blob(
        self, repo: str, path: str, branch: str, *, deadline: float | None = None
    ) -> BlobPayload:
        """Fetch a file's content through the contents endpoint."""
        validate_repo_path(repo)
        data = await self._get_json(
            f"/repos/{repo}/contents/{quote(path, safe='/')}",
            params={"ref": branch},
            deadline=deadline,
        )
        if not isinstance(data, dict):
            # Directory listings come back as arrays.
            msg = f"{path} is not a file"
            raise RemoteRejected(422, msg)
        return BlobPayload(
            path=path,
            content=data.get("content") or "",
            encoding=data.get("encoding") or "",
            sha=data.get("sha"),
            size=data.get("size"),
        )

    async def fetch_contents(
        self,
        repo: str,
        path: str = "",
        branch: str | None = None,
        *,
        deadline: float | None = None,
    ) -> list[ContentEntry]:
        """List one directory of ``repo``; a file path yields a single entry."""
        validate_repo_path(repo)
        endpoint = f"/repos/{repo}/contents"
        path = path.strip("/")
        if path:
            endpoint = f"{endpoint}/{quote(path, safe='/')}"
        data = await self._get_json(
            endpoint, params={"ref": branch} if branch else None, deadline=deadline
        )
        items = data if isinstance(data, list) else [data]
        return [
            ContentEntry(
                name=item.get("name") or item["path"].rsplit("/", 1)[-1],
                path=item["path"],
                type=item.get("type") or "file",
                sha=item.get("sha") or "",
                size=item.get("size"),
                download_url=item.get("download_url"),
            )
            for item in items
            if isinstance(item, dict) and "path" in item
        ]

    async def list_repositories(self, *, deadline: float | None = None) -> list[dict[str, Any]]:
        """List repositories visible to the credential, most recently updated first."""
        data = await self._get_json(
            "/user/repos",
            params={"sort": "updated", "per_page": "100"},
            deadline=deadline,
        )
        return [
            {
                "id": repo.get("id"),
                "name": repo.get("name"),
                "full_name": repo.get("full_name"),
                "description": repo.get("description"),
                "html_url": repo.get("html_url"),
                "default_branch": repo.get("default_branch"),
                "private": bool(repo.get("private", False)),
                "language": repo.get("language"),
                "stars": repo.get("stargazers_count", 0),
                "updated_at": repo.get("updated_at"),
                "owner": (repo.get("owner") or {}).get("login"),
            }
            for repo in data
            if isinstance(repo, dict)
        ]

    async def fetch_user(self, *, deadline: float | None = None) -> dict[str, Any]:
        """Return the profile of the user the credential belongs to."""
        data = await self._get_json("/user", deadline=deadline)
        return {
            "login": data.get("login"),
            "id": data.get("id"),
            "name": data.get("name"),
            "email": data.get("email"),
            "avatar_url": data.get("avatar_url"),
        }


def _error_message(resp: httpx.Response) -> str:
    """Extract the upstream error message, falling back to the status code."""
    with contextlib.suppress(ValueError):
        payload = resp.json()
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
    return f"GitHub API error: {resp.status_code}"
