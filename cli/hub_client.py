"""Command-line client for a Knowledge Hub server."""

from __future__ import annotations

import argparse
import fnmatch
import hashlib
import json
import os
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

CONFIG_FILE = ".hub-client.json"
API_KEY_HEADER = "X-Hub-Api-Key"
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}

DEFAULT_EXCLUDES = (
    "node_modules",
    ".git",
    ".next",
    "dist",
    "build",
    ".turbo",
    "*.log",
    ".DS_Store",
    "Thumbs.db",
    ".env*",
)
MAX_FILE_BYTES = 1_000_000


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def load_config(dir_path: Path) -> dict[str, Any]:
    """Load client config from file."""
    config_path = dir_path / CONFIG_FILE
    if not config_path.exists():
        return {}
    config: dict[str, Any] = json.loads(config_path.read_text())
    return config


def save_config(dir_path: Path, config: dict[str, Any]) -> None:
    """Save client config to file, readable by the owner only."""
    config_path = dir_path / CONFIG_FILE
    config_path.write_text(json.dumps(config, indent=2))
    config_path.chmod(0o600)


@dataclass(frozen=True)
class ScannedFile:
    """A text file found in a local folder, ready to push."""

    path: str
    name: str
    content: str
    size: int
    file_hash: str


def is_excluded(name: str, excludes: tuple[str, ...] = DEFAULT_EXCLUDES) -> bool:
    return any(fnmatch.fnmatch(name, pattern) for pattern in excludes)


def scan_folder(
    folder: Path, max_bytes: int = MAX_FILE_BYTES
) -> tuple[dict[str, ScannedFile], list[str]]:
    """Scan ``folder`` for UTF-8 text files.

    Returns the files keyed by POSIX relative path, plus the relative paths
    that were skipped for being too large or not text.
    """
    files: dict[str, ScannedFile] = {}
    skipped: list[str] = []
    for root, dirs, filenames in os.walk(folder):
        dirs[:] = sorted(d for d in dirs if not d.startswith(".") and not is_excluded(d))
        for filename in sorted(filenames):
            if filename.startswith(".") or is_excluded(filename):
                continue
            full = Path(root) / filename
            rel = full.relative_to(folder).as_posix()
            if full.is_symlink() or full.stat().st_size > max_bytes:
                skipped.append(rel)
                continue
            raw = full.read_bytes()
            try:
                content = raw.decode("utf-8")
            except UnicodeDecodeError:
                skipped.append(rel)
                continue
            files[rel] = ScannedFile(
                path=rel,
                name=filename,
                content=content,
                size=len(raw),
                file_hash=hashlib.sha256(raw).hexdigest(),
            )
    return files, skipped


class HubClient:
    """Thin HTTP client for the hub's REST API."""

    def __init__(self, server_url: str, api_key: str, timeout: float = 330.0) -> None:
        self.server_url = server_url.rstrip("/")
        # Imports can take as long as the server-side sync deadline.
        self.client = httpx.Client(
            base_url=self.server_url,
            headers={API_KEY_HEADER: api_key},
            timeout=timeout,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> HubClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def health(self) -> dict[str, Any]:
        resp = self.client.get("/api/health")
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result

    def list_sources(self) -> dict[str, Any]:
        resp = self.client.get("/api/sources", params={"limit": 200})
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result

    def import_repository(
        self,
        repo: str,
        github_token: str,
        *,
        branch: str | None = None,
        max_files: int = 500,
        sync_files: bool = True,
    ) -> dict[str, Any]:
        """Import or re-sync ``repo`` and return the sync summary."""
        body: dict[str, Any] = {
            "origin": repo,
            "sync_files": sync_files,
            "max_files": max_files,
        }
        if branch:
            body["branch"] = branch
        resp = self.client.post(
            "/api/github",
            json=body,
            headers={"Authorization": f"Bearer {github_token}"},
        )
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result

    def create_source(
        self,
        name: str,
        mode: str,
        path: str,
        *,
        description: str | None = None,
        source_type: str = "code",
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "name": name,
            "mode": mode,
            "path": path,
            "source_type": source_type,
        }
        if description:
            body["description"] = description
        resp = self.client.post("/api/sources", json=body)
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result

    def push_files(
        self,
        source_id: int,
        files: list[ScannedFile],
        deleted_paths: list[str],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        """Push a folder snapshot to a local_sync source."""
        resp = self.client.post(
            "/api/sync",
            json={
                "source_id": source_id,
                "files": [asdict(f) for f in files],
                "deleted_paths": deleted_paths,
                "dry_run": dry_run,
            },
        )
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result


def _error_detail(exc: httpx.HTTPStatusError) -> str:
    try:
        payload = exc.response.json()
    except ValueError:
        return exc.response.text or str(exc.response.status_code)
    if isinstance(payload, dict) and "error" in payload:
        return str(payload["error"])
    return str(payload)


def _print_sources(payload: dict[str, Any]) -> None:
    sources: list[dict[str, Any]] = payload.get("sources", [])
    print(f"Sources: {payload.get('total', len(sources))}")
    for source in sources:
        synced = source.get("synced_at") or "never"
        print(
            f"  [{source['id']}] {source['origin']} "
            f"({source['mode']}, branch={source.get('branch') or '-'}, synced={synced})"
        )


def _print_sync_result(result: dict[str, Any]) -> None:
    print(
        f"Synced {result['origin']}@{result['branch']}: "
        f"{result['files_synced']} of {result.get('files_attempted', 0)} file(s) mirrored "
        f"(source {result['source_id']}, log {result['sync_log_id']})."
    )
    if result.get("truncated"):
        print("  Warning: repository tree was truncated upstream, no files were mirrored.")


def _print_local_sync_result(name: str, result: dict[str, Any], skipped: list[str]) -> None:
    prefix = "Dry run for" if result.get("dry_run") else "Synced"
    print(
        f"{prefix} {name}: {result['files_added']} added, {result['files_updated']} updated, "
        f"{result['files_deleted']} deleted, {result['files_unchanged']} unchanged."
    )
    for error in result.get("errors", []):
        print(f"  Error: {error}")
    if skipped:
        print(f"  Skipped {len(skipped)} binary or oversized file(s).")


def _select_local_sources(
    config: dict[str, Any], selector: str | None, sync_all: bool
) -> list[tuple[str, dict[str, Any]]]:
    """Pick registered folders by id, name or path; all of them with ``sync_all``."""
    registered: dict[str, dict[str, Any]] = config.get("sources", {})
    if sync_all:
        return list(registered.items())
    if selector is None:
        if len(registered) == 1:
            return list(registered.items())
        return []
    resolved = str(Path(selector).expanduser().resolve())
    return [
        (source_id, entry)
        for source_id, entry in registered.items()
        if selector in (source_id, entry.get("name")) or entry.get("path") == resolved
    ]


def _sync_folder(
    client: HubClient, source_id: str, entry: dict[str, Any], *, dry_run: bool
) -> dict[str, Any]:
    """Push one registered folder and return its updated config entry."""
    folder = Path(entry["path"])
    if not folder.is_dir():
        print(f"Error: folder {folder} no longer exists")
        sys.exit(1)
    files, skipped = scan_folder(folder)
    previously_pushed: list[str] = entry.get("pushed", [])
    deleted = sorted(set(previously_pushed) - set(files))
    result = client.push_files(int(source_id), list(files.values()), deleted, dry_run=dry_run)
    _print_local_sync_result(entry.get("name") or folder.name, result, skipped)
    if dry_run:
        return entry
    return {**entry, "pushed": sorted(files)}


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="hub-client",
        description="Talk to a Knowledge Hub server",
    )
    parser.add_argument("--dir", "-d", default=".", help="Config directory (default: current)")
    parser.add_argument("--server", "-s", help="Server URL")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )
    parser.add_argument("--api-key", help="Hub API key (or HUB_API_KEY)")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("init", help="Save server and API key configuration")
    subparsers.add_parser("health", help="Check server health")
    subparsers.add_parser("status", help="List registered sources")
    import_parser = subparsers.add_parser("import", help="Import a GitHub repository")
    import_parser.add_argument("repo", help="Repository as owner/repo")
    import_parser.add_argument("--branch", "-b", help="Branch (default: repository default)")
    import_parser.add_argument("--max-files", type=int, default=500)
    import_parser.add_argument(
        "--no-files", action="store_true", help="Register the source without mirroring files"
    )
    import_parser.add_argument("--github-token", help="GitHub token (or GITHUB_TOKEN)")
    add_parser = subparsers.add_parser("add", help="Register a local folder for syncing")
    add_parser.add_argument("path", help="Folder to sync")
    add_parser.add_argument("--name", "-n", help="Source name (default: folder name)")
    add_parser.add_argument("--description", help="Source description")
    add_parser.add_argument("--type", choices=["code", "study"], default="code")
    sync_parser = subparsers.add_parser("sync", help="Push registered local folders")
    sync_parser.add_argument("source", nargs="?", help="Source id, name or folder")
    sync_parser.add_argument("--all", action="store_true", help="Sync every registered folder")
    sync_parser.add_argument(
        "--dry-run", action="store_true", help="Report what would change without writing"
    )

    args = parser.parse_args(argv)
    config_dir = Path(args.dir).resolve()

    if args.command == "init":
        if not args.server:
            print("Error: --server required for init")
            sys.exit(1)
        try:
            server_url = validate_server_url(args.server, args.allow_insecure_http)
        except ValueError as exc:
            print(f"Error: {exc}")
            sys.exit(1)
        config = load_config(config_dir)
        config["server"] = server_url
        if args.api_key:
            config["api_key"] = args.api_key
        save_config(config_dir, config)
        print(f"Initialized client config in {config_dir / CONFIG_FILE}")
        return

    if args.command is None:
        parser.print_help()
        return

    config = load_config(config_dir)
    configured_server_url = args.server or config.get("server")
    if not configured_server_url:
        print("Error: No server configured. Run 'hub-client init --server <url>' first.")
        sys.exit(1)
    try:
        server_url = validate_server_url(configured_server_url, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    api_key = args.api_key or os.environ.get("HUB_API_KEY") or config.get("api_key")
    if not api_key and args.command != "health":
        print("Error: No API key configured. Use --api-key or HUB_API_KEY.")
        sys.exit(1)

    with HubClient(server_url, api_key or "") as client:
        try:
            if args.command == "health":
                health = client.health()
                print(
                    f"Server {server_url}: {health['status']} "
                    f"(version {health['version']}, database {health['database']})"
                )
            elif args.command == "status":
                _print_sources(client.list_sources())
            elif args.command == "import":
                github_token = args.github_token or os.environ.get("GITHUB_TOKEN")
                if not github_token:
                    print("Error: GitHub token required. Use --github-token or GITHUB_TOKEN.")
                    sys.exit(1)
                result = client.import_repository(
                    args.repo,
                    github_token,
                    branch=args.branch,
                    max_files=args.max_files,
                    sync_files=not args.no_files,
                )
                _print_sync_result(result)
            elif args.command == "add":
                folder = Path(args.path).expanduser().resolve()
                if not folder.is_dir():
                    print(f"Error: {folder} is not a directory")
                    sys.exit(1)
                source = client.create_source(
                    args.name or folder.name,
                    "local_sync",
                    str(folder),
                    description=args.description,
                    source_type=args.type,
                )
                config.setdefault("sources", {})[str(source["id"])] = {
                    "path": str(folder),
                    "name": source["name"],
                    "pushed": [],
                }
                save_config(config_dir, config)
                print(f"Added {folder} as source {source['id']}. Run 'hub-client sync' to push it.")
            elif args.command == "sync":
                selected = _select_local_sources(config, args.source, args.all)
                if not selected:
                    print("Error: no matching folder. Use 'hub-client add <path>', or name one.")
                    sys.exit(1)
                for source_id, entry in selected:
                    config["sources"][source_id] = _sync_folder(
                        client, source_id, entry, dry_run=args.dry_run
                    )
                    save_config(config_dir, config)
        except httpx.HTTPStatusError as exc:
            print(f"Error: {exc.response.status_code} {_error_detail(exc)}")
            sys.exit(1)
        except httpx.HTTPError as exc:
            print(f"Error: could not reach {server_url}: {exc}")
            sys.exit(1)


if __name__ == "__main__":
    main()
