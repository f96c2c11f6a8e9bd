"""Media streaming endpoint with byte-range support, gated by the manifest."""

from __future__ import annotations

import logging
import mimetypes
import posixpath
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from mirror.api.deps import get_manifest_store, get_settings
from mirror.config import Settings
from mirror.exceptions import NotFoundError
from mirror.services.manifest_service import ManifestStore
from mirror.services.range_service import iter_file_range, parse_range_header

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/video", tags=["media"])


def resolve_media_path(name: str, store: ManifestStore, media_dir: Path) -> Path:
    """Map a requested name to a file under the media root.

    The manifest is the allowlist; the basename reduction below still guards
    against a manifest that carries a path.
    """
    if store.lookup(name) is None:
        raise NotFoundError(name)

    safe_name = posixpath.basename(name.replace("\\", "/"))
    if safe_name in {"", ".", ".."}:
        raise NotFoundError(name)

    full_path = media_dir / safe_name
    if not full_path.is_file():
        raise NotFoundError(name)
    return full_path


def build_media_response(
    full_path: Path, range_header: str | None, settings: Settings
) -> StreamingResponse:
    """Stream the whole file (200) or one byte span of it (206)."""
    try:
        file_size = full_path.stat().st_size
    except FileNotFoundError as exc:
        raise NotFoundError(full_path.name) from exc

    media_type, _ = mimetypes.guess_type(full_path.name)
    if media_type is None:
        media_type = settings.default_media_type
    chunk = settings.media_chunk_bytes

    if range_header is None:
        return StreamingResponse(
            iter_file_range(full_path, 0, file_size, chunk),
            status_code=status.HTTP_200_OK,
            media_type=media_type,
            headers={"Content-Length": str(file_size), "Accept-Ranges": "bytes"},
        )

    byte_range = parse_range_header(range_header, file_size)
    return StreamingResponse(
        iter_file_range(full_path, byte_range.start, byte_range.length, chunk),
        status_code=status.HTTP_206_PARTIAL_CONTENT,
        media_type=media_type,
        headers={
            "Content-Range": byte_range.content_range(file_size),
            "Content-Length": str(byte_range.length),
            "Accept-Ranges": "bytes",
        },
    )


@router.get("")
async def stream_media(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[ManifestStore, Depends(get_manifest_store)],
    name: Annotated[str | None, Query()] = None,
    range_header: Annotated[str | None, Header(alias="range")] = None,
) -> StreamingResponse:
    """Serve a mirrored media file by its manifest name: ``/api/video?name=...``."""
    if not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing 'name'")
    full_path = resolve_media_path(name, store, settings.media_dir)
    return build_media_response(full_path, range_header, settings)


@router.get("/{name}")
async def stream_media_by_path(
    name: str,
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[ManifestStore, Depends(get_manifest_store)],
    range_header: Annotated[str | None, Header(alias="range")] = None,
) -> StreamingResponse:
    """Path-based equivalent of ``stream_media``."""
    full_path = resolve_media_path(name, store, settings.media_dir)
    return build_media_response(full_path, range_header, settings)
