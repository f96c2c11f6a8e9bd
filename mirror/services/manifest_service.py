"""Manifest store: the persisted record of which remote files are mirrored locally."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import TYPE_CHECKING

from pydantic import ValidationError

from mirror.exceptions import ManifestFormatError, ManifestWriteError
from mirror.schemas.manifest import Manifest, ManifestEntry

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, data: object) -> None:
    """Write JSON to ``path`` via a synced temp file and ``os.replace``.

    Readers observe either the previous document or the new one, never a mix.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, ensure_ascii=False)
            fh.write("\n")
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise

    # Persist the rename itself; not supported on every platform.
    try:
        dir_fd = os.open(path.parent, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        logger.debug("Directory fsync unsupported for %s", path.parent)
    finally:
        os.close(dir_fd)


class ManifestStore:
    """Loads and atomically replaces the manifest document.

    ``snapshot()`` serves the read path of the media endpoint: it re-parses the
    document only when the file identity changes, so a sync pass replacing the
    manifest never exposes a half-written state to concurrent readers.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._cache_key: tuple[int, int, int] | None = None
        self._cached: Manifest | None = None

    def load(self) -> Manifest:
        """Read and validate the manifest. A missing file is an empty manifest."""
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return Manifest()
        return self._parse(raw)

    def _parse(self, raw: bytes) -> Manifest:
        try:
            data = json.loads(raw.decode("utf-8"))
            return Manifest.model_validate(data)
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            raise ManifestFormatError(f"Malformed manifest at {self.path}: {exc}") from exc

    def snapshot(self) -> Manifest:
        """Return a consistent, possibly cached view of the manifest."""
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            self._cache_key = None
            self._cached = None
            return Manifest()

        key = (stat.st_ino, stat.st_mtime_ns, stat.st_size)
        if self._cached is not None and key == self._cache_key:
            return self._cached

        manifest = self.load()
        self._cache_key = key
        self._cached = manifest
        return manifest

    def lookup(self, local_name: str) -> ManifestEntry | None:
        return self.snapshot().items.get(local_name)

    def save(self, manifest: Manifest) -> None:
        """Replace the manifest document in a single atomic step."""
        try:
            write_json_atomic(self.path, manifest.to_document())
        except OSError as exc:
            logger.error("Failed to persist manifest to %s: %s", self.path, exc)
            raise ManifestWriteError(f"Could not write manifest {self.path}: {exc}") from exc
        logger.debug("Manifest saved to %s (%d items)", self.path, len(manifest.items))
