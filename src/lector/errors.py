"""Error types shared by the local store, the remote transport and sync."""

from __future__ import annotations


class LectorError(Exception):
    """Base class for all lector errors."""


class LocalStoreError(LectorError):
    """The local SQLite store is unavailable or rejected a write."""


class TransientNetworkError(LectorError):
    """The remote store could not be reached. Never fatal."""


class RemoteError(LectorError):
    """The remote store answered but refused the request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ReconstructionError(LectorError):
    """A chunk set is incomplete, out of order or undecodable."""


class DownloadError(LectorError):
    """A book blob could not be downloaded and rebuilt."""
