"""Tests for the media streaming endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from mirror.services.manifest_service import ManifestStore
from tests.conftest import create_test_client, write_media

if TYPE_CHECKING:
    from pathlib import Path

    from mirror.config import Settings

CONTENT = bytes(range(256)) * 40  # 10240 bytes, spans several read chunks


@pytest.fixture
def mirrored(test_settings: Settings, media_dir: Path) -> Settings:
    store = ManifestStore(test_settings.manifest_path)
    write_media(store, media_dir, {"id1_clip.mp4": CONTENT, "id2_other clip.webm": b"webm"})
    (media_dir / "unlisted.mp4").write_bytes(b"secret")
    return test_settings


class TestFullResponse:
    @pytest.mark.asyncio
    async def test_serves_whole_file(self, mirrored: Settings) -> None:
        async with create_test_client(mirrored) as client:
            resp = await client.get("/api/video", params={"name": "id1_clip.mp4"})
        assert resp.status_code == 200
        assert resp.content == CONTENT
        assert resp.headers["content-length"] == str(len(CONTENT))
        assert resp.headers["accept-ranges"] == "bytes"
        assert resp.headers["content-type"] == "video/mp4"

    @pytest.mark.asyncio
    async def test_path_form_matches_query_form(self, mirrored: Settings) -> None:
        async with create_test_client(mirrored) as client:
            resp = await client.get("/api/video/id1_clip.mp4")
        assert resp.status_code == 200
        assert resp.content == CONTENT

    @pytest.mark.asyncio
    async def test_encoded_name_with_space(self, mirrored: Settings) -> None:
        async with create_test_client(mirrored) as client:
            resp = await client.get("/api/video?name=id2_other%20clip.webm")
        assert resp.status_code == 200
        assert resp.content == b"webm"

    @pytest.mark.asyncio
    async def test_missing_name_is_bad_request(self, mirrored: Settings) -> None:
        async with create_test_client(mirrored) as client:
            resp = await client.get("/api/video")
        assert resp.status_code == 400


class TestRanges:
    @pytest.mark.asyncio
    async def test_closed_range(self, mirrored: Settings) -> None:
        async with create_test_client(mirrored) as client:
            resp = await client.get(
                "/api/video", params={"name": "id1_clip.mp4"}, headers={"Range": "bytes=0-99"}
            )
        assert resp.status_code == 206
        assert resp.content == CONTENT[:100]
        assert resp.headers["content-range"] == f"bytes 0-99/{len(CONTENT)}"
        assert resp.headers["content-length"] == "100"

    @pytest.mark.asyncio
    async def test_open_ended_range_spanning_chunks(self, mirrored: Settings) -> None:
        async with create_test_client(mirrored) as client:
            resp = await client.get(
                "/api/video", params={"name": "id1_clip.mp4"}, headers={"Range": "bytes=100-"}
            )
        assert resp.status_code == 206
        assert resp.content == CONTENT[100:]
        assert resp.headers["content-range"] == f"bytes 100-{len(CONTENT) - 1}/{len(CONTENT)}"

    @pytest.mark.asyncio
    async def test_range_past_end_is_416(self, mirrored: Settings, media_dir: Path) -> None:
        store = ManifestStore(mirrored.manifest_path)
        write_media(store, media_dir, {"id3_k.mp4": b"x" * 1000})
        async with create_test_client(mirrored) as client:
            resp = await client.get(
                "/api/video", params={"name": "id3_k.mp4"}, headers={"Range": "bytes=900-1200"}
            )
        assert resp.status_code == 416
        assert resp.headers["content-range"] == "bytes */1000"

    @pytest.mark.asyncio
    async def test_reversed_range_is_416(self, mirrored: Settings) -> None:
        async with create_test_client(mirrored) as client:
            resp = await client.get(
                "/api/video/id1_clip.mp4", headers={"Range": "bytes=50-10"}
            )
        assert resp.status_code == 416


class TestAllowlist:
    @pytest.mark.asyncio
    async def test_file_not_in_manifest_is_404(self, mirrored: Settings) -> None:
        async with create_test_client(mirrored) as client:
            resp = await client.get("/api/video", params={"name": "unlisted.mp4"})
        assert resp.status_code == 404
        assert resp.text == "Not found"

    @pytest.mark.asyncio
    async def test_manifest_entry_without_file_is_404(
        self, mirrored: Settings, media_dir: Path
    ) -> None:
        (media_dir / "id1_clip.mp4").unlink()
        async with create_test_client(mirrored) as client:
            resp = await client.get("/api/video", params={"name": "id1_clip.mp4"})
        assert resp.status_code == 404
        assert resp.text == "Not found"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "name",
        ["../manifest.json", "..%2Fmanifest.json", "/etc/passwd", "..\\manifest.json", "."],
    )
    async def test_traversal_attempts_are_404(self, mirrored: Settings, name: str) -> None:
        async with create_test_client(mirrored) as client:
            resp = await client.get("/api/video", params={"name": name})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_malformed_manifest_is_503(self, mirrored: Settings) -> None:
        mirrored.manifest_path.write_text("{broken")
        async with create_test_client(mirrored) as client:
            resp = await client.get("/api/video", params={"name": "id1_clip.mp4"})
        assert resp.status_code == 503

    @pytest.mark.asyncio
    async def test_security_headers_present(self, mirrored: Settings) -> None:
        async with create_test_client(mirrored) as client:
            resp = await client.get("/api/video", params={"name": "id1_clip.mp4"})
        assert resp.headers["x-content-type-options"] == "nosniff"
