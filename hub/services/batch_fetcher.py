"""Bounded-concurrency retrieval of file contents from a remote repository."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from hub.exceptions import RemoteError, RemoteTimeout
from hub.remote.base import deadline_expired

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from hub.remote.base import RemoteTreeClient, TreeEntry

logger = logging.getLogger(__name__)

BATCH_SIZE = 10


@dataclass(frozen=True)
class FetchedFile:
    """A successfully retrieved and decoded file."""

    path: str
    content: str
    size: int | None
    content_hash: str


@dataclass(frozen=True)
class FetchFailure:
    """An entry that could not be retrieved; it is omitted from the mirror."""

    path: str
    reason: str


FetchOutcome = FetchedFile | FetchFailure


@dataclass
class FetchReport:
    """All outcomes of a fetch run, in submission order."""

    outcomes: list[FetchOutcome] = field(default_factory=list)

    @property
    def fetched(self) -> list[FetchedFile]:
        return [o for o in self.outcomes if isinstance(o, FetchedFile)]

    @property
    def failures(self) -> list[FetchFailure]:
        return [o for o in self.outcomes if isinstance(o, FetchFailure)]

    @property
    def attempted(self) -> int:
        return len(self.outcomes)


def decode_payload(content: str, encoding: str) -> str:
    """Decode a base64 transfer-encoded payload to text.

    Raises ValueError for unsupported encodings or malformed data.
    """
    if encoding != "base64":
        msg = f"Unsupported encoding: {encoding or 'none'}"
        raise ValueError(msg)
    try:
        raw = base64.b64decode(content)
    except (binascii.Error, ValueError) as exc:
        msg = f"Malformed base64 content: {exc}"
        raise ValueError(msg) from exc
    return raw.decode("utf-8", errors="replace")


class BatchFetcher:
    """Fetch approved entries in sequential batches of concurrent requests.

    At most ``batch_size`` requests are in flight at any time. Batch N+1 is
    not started until every fetch of batch N has settled.
    """

    def __init__(
        self,
        client: RemoteTreeClient,
        repo: str,
        branch: str,
        *,
        batch_size: int = BATCH_SIZE,
        deadline: float | None = None,
    ) -> None:
        if batch_size < 1:
            msg = "batch_size must be at least 1"
            raise ValueError(msg)
        self._client = client
        self._repo = repo
        self._branch = branch
        self._batch_size = batch_size
        self._deadline = deadline

    async def _fetch_one(self, entry: TreeEntry) -> FetchOutcome:
        try:
            payload = await self._client.fetch_blob(
                self._repo, entry.path, self._branch, deadline=self._deadline
            )
        except RemoteError as exc:
            return FetchFailure(path=entry.path, reason=str(exc))

        if not payload.content:
            return FetchFailure(path=entry.path, reason="Empty content")
        try:
            text = decode_payload(payload.content, payload.encoding)
        except ValueError as exc:
            return FetchFailure(path=entry.path, reason=str(exc))

        return FetchedFile(
            path=entry.path,
            content=text,
            size=entry.size if entry.size is not None else payload.size,
            content_hash=entry.sha or payload.sha or "",
        )

    async def iter_batches(self, entries: Sequence[TreeEntry]) -> AsyncIterator[list[FetchOutcome]]:
        """Yield the outcomes of each batch as soon as the whole batch settles.

        Raises RemoteTimeout when the deadline has passed after a batch,
        since every remaining fetch would fail the same way.
        """
        for start in range(0, len(entries), self._batch_size):
            batch = entries[start : start + self._batch_size]
            outcomes = list(await asyncio.gather(*(self._fetch_one(e) for e in batch)))
            for outcome in outcomes:
                if isinstance(outcome, FetchFailure):
                    logger.warning("Skipping %s: %s", outcome.path, outcome.reason)
            yield outcomes

            remaining = len(entries) - (start + len(batch))
            if remaining and deadline_expired(self._deadline):
                msg = f"Sync deadline exceeded with {remaining} files left to fetch"
                raise RemoteTimeout(msg)

    async def fetch_all(self, entries: Sequence[TreeEntry]) -> FetchReport:
        """Fetch every entry and collect all outcomes."""
        report = FetchReport()
        async for outcomes in self.iter_batches(entries):
            report.outcomes.extend(outcomes)
        return report
