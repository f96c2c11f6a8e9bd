"""Application-level exception types.

Convention:
- Per-item reconciliation failures (``TransportError`` on a single download,
  ``MissingSourceError``, ``OversizeError``) are collected on the sync report
  and never abort a pass.
- Structural failures (``TransportError`` while listing, ``ManifestFormatError``,
  ``ManifestWriteError``) abort the whole pass and leave the previous manifest
  and media directory untouched.
- ``NotFoundError`` and ``RangeNotSatisfiable`` are client-facing; the handlers
  in ``mirror/main.py`` translate them to 404 and 416.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for reconciliation failures."""


class TransportError(SyncError):
    """Listing or downloading from the remote source failed.

    Retryable at the next scheduled pass.
    """


class ManifestFormatError(SyncError):
    """A playlist descriptor or the local manifest is malformed."""


class ManifestWriteError(SyncError):
    """The rebuilt manifest could not be persisted."""


class MissingSourceError(SyncError):
    """A file named by the playlist descriptor is absent from the remote folder."""


class OversizeError(SyncError):
    """A remote file exceeds the configured size cap before or after transfer."""


class NotFoundError(Exception):
    """Requested media is not in the manifest or not on disk.

    Both causes deliberately produce the same response.
    """


class RangeNotSatisfiable(Exception):
    """The requested byte range cannot be served for this file."""

    def __init__(self, file_size: int, header: str = "") -> None:
        super().__init__(f"Unsatisfiable range {header!r} for {file_size} bytes")
        self.file_size = file_size
        self.header = header
