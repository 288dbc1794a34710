"""Sync policy: which remote tree entries are eligible for mirroring."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hub.remote.base import RepositoryTree, TreeEntry

MAX_FILE_SIZE = 500_000
DEFAULT_MAX_FILES = 500

SYNCABLE_EXTENSIONS = frozenset(
    {
        # Documentation
        "md",
        "txt",
        # Data/config
        "json",
        "xml",
        "yaml",
        "yml",
        "toml",
        "ini",
        # Source
        "js",
        "ts",
        "tsx",
        "jsx",
        "py",
        "rs",
        "go",
        "java",
        "c",
        "cpp",
        "h",
        # Styles/markup
        "css",
        "scss",
        "html",
        # Shell
        "sh",
        "bash",
        "zsh",
    }
)


@dataclass
class PolicyDecision:
    """Outcome of applying the sync policy to a tree listing.

    ``considered`` counts every listed entry, ``eligible`` counts entries that
    passed the filters before the ``max_files`` cap was applied.
    """

    entries: list[TreeEntry] = field(default_factory=list)
    truncated: bool = False
    considered: int = 0
    eligible: int = 0


def file_extension(path: str) -> str | None:
    """Return the lower-cased text after the last ``.`` of the file name."""
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return None
    ext = name.rsplit(".", 1)[-1].lower()
    return ext or None


def is_syncable(entry: TreeEntry) -> bool:
    """Check the type, size and extension constraints for one entry."""
    if entry.type != "blob":
        return False
    if entry.size is None or entry.size > MAX_FILE_SIZE:
        return False
    return file_extension(entry.path) in SYNCABLE_EXTENSIONS


def select_entries(tree: RepositoryTree, max_files: int = DEFAULT_MAX_FILES) -> PolicyDecision:
    """Filter and cap a tree listing, preserving the remote's ordering.

    A truncated listing is refused outright: syncing part of an incomplete
    index would be indistinguishable from a smaller repository.
    """
    if max_files < 0:
        msg = "max_files must be non-negative"
        raise ValueError(msg)

    if tree.truncated:
        return PolicyDecision(truncated=True, considered=len(tree.entries))

    eligible = [entry for entry in tree.entries if is_syncable(entry)]
    return PolicyDecision(
        entries=eligible[:max_files],
        considered=len(tree.entries),
        eligible=len(eligible),
    )
