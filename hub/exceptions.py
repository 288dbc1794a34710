"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients.
  The global handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``ValueError``: for *business logic* validation errors that are safe to
  forward to clients (malformed ``owner/repo``, invalid URLs, etc.).
- ``RemoteError`` and subclasses: operation-level failures talking to the
  remote repository host. Per-file failures during a sync never raise these
  to the caller; they are collected as fetch outcomes instead.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``hub/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class RemoteError(Exception):
    """Base class for failures reported by or while reaching the remote API."""


class RemoteUnavailable(RemoteError):
    """The remote API could not be reached (network or transport failure)."""


class RemoteTimeout(RemoteUnavailable):
    """A request or the overall sync deadline elapsed before the remote answered."""


class RemoteRejected(RemoteError):
    """The remote API answered with a non-success HTTP status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Remote API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class SyncInProgressError(Exception):
    """Another sync of the same Source is already running."""

    def __init__(self, source_id: int) -> None:
        super().__init__(f"A sync is already in progress for source {source_id}")
        self.source_id = source_id
