"""Sync service: reconcile the remote folder with the local manifest and media directory."""

from __future__ import annotations

import asyncio
import fcntl
import json
import logging
import os
import re
import stat
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from mirror.exceptions import ManifestFormatError, OversizeError, SyncError, TransportError
from mirror.schemas.manifest import Manifest, ManifestEntry, PlaylistDescriptor
from mirror.services.datetime_service import format_iso, now_utc, same_instant

if TYPE_CHECKING:
    from collections.abc import Iterator

    from mirror.config import Settings
    from mirror.drive.base import RemoteDirectoryClient, RemoteFile
    from mirror.services.manifest_service import ManifestStore

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")
_PARTIAL_PREFIX = ".partial-"
_MAX_DESCRIPTOR_BYTES = 1024 * 1024


class SyncStatus(StrEnum):
    """Outcome of a reconciliation pass."""

    OK = "ok"
    NO_DESCRIPTOR = "no_descriptor"
    SKIPPED = "skipped"
    FAILED = "failed"


class SyncEventKind(StrEnum):
    """Per-item problems that are recorded but never abort a pass."""

    MISSING_SOURCE = "missing_source"
    OVERSIZE_SKIPPED = "oversize_skipped"
    OVERSIZE_DISCARDED = "oversize_discarded"
    DOWNLOAD_FAILED = "download_failed"
    DELETE_FAILED = "delete_failed"


@dataclass
class SyncEvent:
    kind: SyncEventKind
    name: str
    detail: str


@dataclass
class SyncReport:
    """What one reconciliation pass did."""

    status: SyncStatus = SyncStatus.OK
    started_at: str | None = None
    finished_at: str | None = None
    downloaded: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    events: list[SyncEvent] = field(default_factory=list)

    def record(self, kind: SyncEventKind, name: str, error: Exception | str) -> None:
        self.events.append(SyncEvent(kind=kind, name=name, detail=str(error)))


@dataclass
class _DownloadJob:
    remote: RemoteFile
    title: str | None
    existing: ManifestEntry | None


def sanitize_filename(name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_.-]`` with ``_``."""
    return _UNSAFE_FILENAME_CHARS.sub("_", name)


def local_name_for(remote: RemoteFile) -> str:
    """Deterministic local file name: remote id plus the sanitized remote name."""
    return f"{sanitize_filename(remote.id)}_{sanitize_filename(remote.name)}"


def needs_download(
    remote: RemoteFile,
    existing: ManifestEntry | None,
    *,
    local_exists: bool = True,
    redownload_without_checksum: bool = False,
) -> bool:
    """Decide whether a wanted remote file must be (re)downloaded.

    Without any change signal the file is assumed unchanged.
    """
    if existing is None or not local_exists:
        return True
    if remote.checksum and existing.checksum:
        return remote.checksum != existing.checksum
    if redownload_without_checksum:
        return True
    if remote.modified_time is not None:
        return not same_instant(remote.modified_time, existing.remote_modified_time)
    return False


def _is_regular_file(path: Path) -> bool:
    try:
        mode = path.lstat().st_mode
    except FileNotFoundError:
        return False
    return stat.S_ISREG(mode)


@contextmanager
def exclusive_pass_lock(lock_path: Path) -> Iterator[bool]:
    """Hold an exclusive, non-blocking ``flock`` for the duration of a pass.

    Yields False when another process already holds the lock.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(lock_path, os.O_CREAT | os.O_RDWR, 0o644)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            acquired = False
        else:
            acquired = True
            os.ftruncate(fd, 0)
            os.write(fd, str(os.getpid()).encode("utf-8"))
        try:
            yield acquired
        finally:
            if acquired:
                fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


class SyncEngine:
    """Runs reconciliation passes of one remote folder into one media directory."""

    def __init__(
        self,
        client: RemoteDirectoryClient,
        store: ManifestStore,
        *,
        folder_id: str,
        media_dir: Path,
        lock_path: Path,
        descriptor_name: str = "playlist.json",
        max_file_bytes: int = 1_000_000_000,
        download_concurrency: int = 2,
        redownload_without_checksum: bool = False,
    ) -> None:
        self.client = client
        self.store = store
        self.folder_id = folder_id
        self.media_dir = media_dir
        self.lock_path = lock_path
        self.descriptor_name = descriptor_name
        self.max_file_bytes = max_file_bytes
        self.download_concurrency = download_concurrency
        self.redownload_without_checksum = redownload_without_checksum
        self.last_report: SyncReport | None = None
        self._pass_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings: Settings, client: RemoteDirectoryClient, store: ManifestStore
    ) -> SyncEngine:
        return cls(
            client,
            store,
            folder_id=settings.drive_folder_id,
            media_dir=settings.media_dir,
            lock_path=settings.lock_path,
            descriptor_name=settings.playlist_descriptor_name,
            max_file_bytes=settings.max_file_bytes,
            download_concurrency=settings.download_concurrency,
            redownload_without_checksum=settings.redownload_without_checksum,
        )

    async def run_pass(self) -> SyncReport:
        """Run one reconciliation pass unless another one is in progress.

        Structural failures are raised after being recorded on ``last_report``;
        per-item failures are only recorded.
        """
        report = SyncReport(started_at=format_iso(now_utc()))
        if self._pass_lock.locked():
            logger.info("Sync pass already running in this process; skipping")
            report.status = SyncStatus.SKIPPED
            report.finished_at = format_iso(now_utc())
            return report

        async with self._pass_lock:
            with exclusive_pass_lock(self.lock_path) as acquired:
                if not acquired:
                    logger.info("Sync pass held by another process (%s); skipping", self.lock_path)
                    report.status = SyncStatus.SKIPPED
                else:
                    try:
                        await self._reconcile(report)
                    except Exception as exc:
                        report.status = SyncStatus.FAILED
                        report.finished_at = format_iso(now_utc())
                        self.last_report = report
                        logger.error("Sync pass aborted: %s", exc)
                        raise

        report.finished_at = format_iso(now_utc())
        self.last_report = report
        if report.status == SyncStatus.OK:
            logger.info(
                "Sync complete: %d downloaded, %d kept, %d deleted, %d problem(s)",
                len(report.downloaded),
                len(report.kept),
                len(report.deleted),
                len(report.events),
            )
        return report

    async def _reconcile(self, report: SyncReport) -> None:
        self.media_dir.mkdir(parents=True, exist_ok=True)
        previous = self.store.load()

        logger.info("Listing remote folder %s", self.folder_id)
        listing = await self.client.list(self.folder_id)
        descriptor_file = next((f for f in listing if f.name == self.descriptor_name), None)
        if descriptor_file is None:
            logger.warning("%s not found in remote folder; nothing to sync", self.descriptor_name)
            report.status = SyncStatus.NO_DESCRIPTOR
            return

        descriptor = await self._fetch_descriptor(descriptor_file)
        by_name = {f.name: f for f in listing}
        previous_by_id = previous.by_remote_id()

        order: list[str] = []
        retained: dict[str, ManifestEntry] = {}
        jobs: list[_DownloadJob] = []

        for item in descriptor.wanted():
            remote = by_name.get(item.file)
            if remote is None:
                logger.error("%r is listed in the playlist but missing remotely; skipping", item.file)
                report.record(
                    SyncEventKind.MISSING_SOURCE,
                    item.file,
                    f"{item.file} not found in remote folder",
                )
                continue
            if remote.id in order:
                continue
            order.append(remote.id)

            existing = previous_by_id.get(remote.id)
            local_exists = existing is not None and _is_regular_file(
                self.media_dir / existing.local_name
            )

            if remote.size_bytes > self.max_file_bytes:
                logger.error(
                    "%s exceeds max size (%d > %d bytes); skipping download",
                    remote.name,
                    remote.size_bytes,
                    self.max_file_bytes,
                )
                report.record(
                    SyncEventKind.OVERSIZE_SKIPPED,
                    remote.name,
                    OversizeError(f"reported size {remote.size_bytes} bytes"),
                )
                if existing is not None and local_exists:
                    retained[remote.id] = existing.model_copy(update={"title": item.title})
                    report.kept.append(existing.local_name)
                continue

            if needs_download(
                remote,
                existing,
                local_exists=local_exists,
                redownload_without_checksum=self.redownload_without_checksum,
            ):
                jobs.append(_DownloadJob(remote=remote, title=item.title, existing=existing))
            else:
                assert existing is not None
                logger.debug("Unchanged: %s", remote.name)
                retained[remote.id] = existing.model_copy(update={"title": item.title})
                report.kept.append(existing.local_name)

        downloaded = await self._download_all(jobs, report)
        for job in jobs:
            entry = downloaded.get(job.remote.id)
            if entry is not None:
                retained[job.remote.id] = entry
                report.downloaded.append(entry.local_name)
            elif job.existing is not None and _is_regular_file(
                self.media_dir / job.existing.local_name
            ):
                # Failed refresh: keep serving the previous copy.
                retained[job.remote.id] = job.existing
                report.kept.append(job.existing.local_name)

        manifest = Manifest(
            items={retained[rid].local_name: retained[rid] for rid in order if rid in retained}
        )
        self.store.save(manifest)
        self._delete_orphans(set(manifest.items), report)

    async def _fetch_descriptor(self, descriptor_file: RemoteFile) -> PlaylistDescriptor:
        if descriptor_file.size_bytes > _MAX_DESCRIPTOR_BYTES:
            raise ManifestFormatError(
                f"{self.descriptor_name} is too large ({descriptor_file.size_bytes} bytes)"
            )
        with tempfile.TemporaryDirectory(prefix="kiosk-descriptor-") as tmp_dir:
            tmp_path = Path(tmp_dir) / self.descriptor_name
            await self.client.download(descriptor_file.id, tmp_path)
            raw = tmp_path.read_bytes()

        try:
            descriptor = PlaylistDescriptor.model_validate(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            raise ManifestFormatError(
                f"Failed to parse {self.descriptor_name} from remote: {exc}"
            ) from exc
        logger.info(
            "Files listed in %s: %s",
            self.descriptor_name,
            [item.file for item in descriptor.wanted()],
        )
        return descriptor

    async def _download_all(
        self, jobs: list[_DownloadJob], report: SyncReport
    ) -> dict[str, ManifestEntry]:
        semaphore = asyncio.Semaphore(self.download_concurrency)

        async def bounded(job: _DownloadJob) -> ManifestEntry | None:
            async with semaphore:
                return await self._download_one(job, report)

        # Leaving the group cancels and awaits every sibling download.
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(bounded(job)) for job in jobs]
        results = [task.result() for task in tasks]
        return {entry.remote_id: entry for entry in results if entry is not None}

    async def _download_one(self, job: _DownloadJob, report: SyncReport) -> ManifestEntry | None:
        remote = job.remote
        local_name = local_name_for(remote)
        final_path = self.media_dir / local_name
        partial_path = self.media_dir / f"{_PARTIAL_PREFIX}{local_name}"

        logger.info("Downloading %s -> %s", remote.name, local_name)
        try:
            await self.client.download(remote.id, partial_path)
            size = partial_path.stat().st_size
            if size > self.max_file_bytes:
                raise OversizeError(
                    f"{remote.name} arrived with {size} bytes (max {self.max_file_bytes})"
                )
            partial_path.chmod(0o644)
            os.replace(partial_path, final_path)
        except OversizeError as exc:
            logger.error("%s; deleted local copy", exc)
            report.record(SyncEventKind.OVERSIZE_DISCARDED, remote.name, exc)
            return None
        except (TransportError, OSError) as exc:
            logger.error("Failed to download %s: %s", remote.name, exc)
            report.record(SyncEventKind.DOWNLOAD_FAILED, remote.name, exc)
            return None
        except Exception as exc:
            logger.exception("Unexpected error downloading %s", remote.name)
            report.record(SyncEventKind.DOWNLOAD_FAILED, remote.name, exc)
            return None
        finally:
            partial_path.unlink(missing_ok=True)

        logger.info("Saved %s (size %d)", local_name, size)
        return ManifestEntry(
            local_name=local_name,
            remote_id=remote.id,
            name=remote.name,
            title=job.title,
            checksum=remote.checksum,
            remote_modified_time=remote.modified_time,
            size_bytes=size,
            updated_at=format_iso(now_utc()),
        )

    def _is_protected(self, path: Path) -> bool:
        manifest_path = self.store.path
        if path.name.startswith(f".{manifest_path.name}."):
            return True
        resolved = path.resolve()
        return resolved in {manifest_path.resolve(), self.lock_path.resolve()}

    def _delete_orphans(self, keep: set[str], report: SyncReport) -> None:
        """Delete regular files directly under the media root that are not retained."""
        for path in sorted(self.media_dir.iterdir()):
            if path.name in keep or not _is_regular_file(path) or self._is_protected(path):
                continue
            logger.info("Deleting local file not in playlist: %s", path.name)
            try:
                path.unlink()
            except OSError as exc:
                logger.warning("Failed to delete %s: %s", path, exc)
                report.record(SyncEventKind.DELETE_FAILED, path.name, exc)
                continue
            report.deleted.append(path.name)


async def run_periodically(engine: SyncEngine, interval_seconds: float) -> None:
    """Run passes forever, one at a time, until cancelled."""
    while True:
        try:
            await engine.run_pass()
        except SyncError as exc:
            logger.error("Scheduled sync pass failed: %s", exc)
        except Exception:
            logger.exception("Scheduled sync pass failed unexpectedly")
        await asyncio.sleep(interval_seconds)
