"""Shared test fixtures for Kiosk Mirror."""

from __future__ import annotations

import hashlib
import json
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from mirror.config import Settings
from mirror.drive.base import RemoteFile
from mirror.exceptions import TransportError
from mirror.main import create_app
from mirror.schemas.manifest import Manifest, ManifestEntry
from mirror.services.manifest_service import ManifestStore
from mirror.services.sync_service import SyncEngine

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path


class FakeRemoteClient:
    """In-memory remote folder keyed by file id."""

    def __init__(self) -> None:
        self.files: dict[str, tuple[RemoteFile, bytes]] = {}
        self.download_calls: list[str] = []
        self.fail_list: Exception | None = None
        self.fail_downloads: dict[str, Exception] = {}
        self.reported_sizes: dict[str, int] = {}
        self.closed = False

    def put(
        self,
        file_id: str,
        name: str,
        content: bytes,
        *,
        checksum: str | None | bool = True,
        modified_time: str | None = "2024-05-01T10:00:00.000Z",
    ) -> RemoteFile:
        if checksum is True:
            checksum = hashlib.md5(content).hexdigest()
        remote = RemoteFile(
            id=file_id,
            name=name,
            checksum=checksum or None,
            modified_time=modified_time,
            size_bytes=self.reported_sizes.get(file_id, len(content)),
        )
        self.files[file_id] = (remote, content)
        return remote

    def put_descriptor(self, items: list[dict[str, object]] | bytes, name: str = "playlist.json") -> None:
        raw = items if isinstance(items, bytes) else json.dumps({"items": items}).encode("utf-8")
        self.put("descriptor-id", name, raw)

    def remove(self, file_id: str) -> None:
        self.files.pop(file_id, None)

    async def list(self, folder_id: str) -> list[RemoteFile]:
        if self.fail_list is not None:
            raise self.fail_list
        return [remote for remote, _ in self.files.values()]

    async def download(self, file_id: str, dest_path: Path) -> None:
        self.download_calls.append(file_id)
        if file_id in self.fail_downloads:
            raise self.fail_downloads[file_id]
        if file_id not in self.files:
            raise TransportError(f"{file_id} not found")
        dest_path.write_bytes(self.files[file_id][1])

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def media_dir(tmp_path: Path) -> Path:
    path = tmp_path / "videos"
    path.mkdir()
    return path


@pytest.fixture
def test_settings(tmp_path: Path, media_dir: Path) -> Settings:
    """Create test settings with temporary paths."""
    return Settings(
        debug=True,
        media_dir=media_dir,
        manifest_path=tmp_path / "manifest.json",
        drive_folder_id="folder-1",
        drive_access_token="test-token",
        media_chunk_bytes=4096,
        _env_file=None,  # type: ignore[call-arg]
    )


@pytest.fixture
def manifest_store(test_settings: Settings) -> ManifestStore:
    return ManifestStore(test_settings.manifest_path)


@pytest.fixture
def remote() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def engine(
    test_settings: Settings, remote: FakeRemoteClient, manifest_store: ManifestStore
) -> SyncEngine:
    return SyncEngine.from_settings(test_settings, remote, manifest_store)


def make_entry(local_name: str, remote_id: str = "id-1", **overrides: object) -> ManifestEntry:
    data: dict[str, object] = {
        "local_name": local_name,
        "remote_id": remote_id,
        "name": local_name,
        "checksum": "abc",
        "remote_modified_time": "2024-05-01T10:00:00.000Z",
        "size_bytes": 0,
        "updated_at": "2024-05-01T10:00:00+00:00",
    }
    data.update(overrides)
    return ManifestEntry.model_validate(data)


def write_media(
    store: ManifestStore, media_dir: Path, files: dict[str, bytes], **overrides: object
) -> Manifest:
    """Place ``files`` in the media directory and record them in the manifest."""
    items: dict[str, ManifestEntry] = {}
    for index, (name, content) in enumerate(files.items()):
        (media_dir / name).write_bytes(content)
        items[name] = make_entry(name, f"id-{index}", size_bytes=len(content), **overrides)
    manifest = Manifest(items=items)
    store.save(manifest)
    return manifest


@asynccontextmanager
async def create_test_client(settings: Settings) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with an initialized app.

    ASGITransport does not run the lifespan, so runtime validation happens here.
    """
    app = create_app(settings)
    settings.validate_runtime()
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
