"""Remote directory capability and the transient file listing record."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pathlib import Path


@dataclass(frozen=True)
class RemoteFile:
    """A file as reported by the remote listing. Never persisted directly."""

    id: str
    name: str
    checksum: str | None = None
    modified_time: str | None = None
    size_bytes: int = 0


@runtime_checkable
class RemoteDirectoryClient(Protocol):
    """Lists a remote folder and downloads its files.

    Both operations raise ``TransportError`` on failure.
    """

    async def list(self, folder_id: str) -> list[RemoteFile]:
        """Return every non-trashed file directly inside the folder."""
        ...

    async def download(self, file_id: str, dest_path: Path) -> None:
        """Write the file's bytes to ``dest_path``."""
        ...

    async def aclose(self) -> None:
        """Release network resources and abort in-flight transfers."""
        ...
