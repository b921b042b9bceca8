"""Error kinds raised by the codec, the document store and remote stores."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every docsync error."""


class EncodingError(SyncError, ValueError):
    """A CRDT update could not be turned into transport text."""


class DecodingError(SyncError, ValueError):
    """Transport text is not valid base64."""


class InvalidUpdate(DecodingError):
    """Decoded bytes were rejected by the CRDT import."""


class RemoteUnavailable(SyncError, ConnectionError):
    """The remote store could not be reached or answered with a non-success status."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RemoteTimeout(RemoteUnavailable, TimeoutError):
    """A remote request did not finish within the configured timeout."""
