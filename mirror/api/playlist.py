"""Playlist listing derived from the manifest."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated
from urllib.parse import quote

from fastapi import APIRouter, Depends

from mirror.api.deps import get_manifest_store
from mirror.schemas.playlist import PlaylistItem, PlaylistResponse
from mirror.services.manifest_service import ManifestStore

if TYPE_CHECKING:
    from mirror.schemas.manifest import Manifest

router = APIRouter(prefix="/api/playlist", tags=["playlist"])


def media_url(local_name: str) -> str:
    return f"/api/video?name={quote(local_name, safe='')}"


def build_playlist(manifest: Manifest) -> PlaylistResponse:
    """Project manifest entries, in manifest order, into playable items."""
    return PlaylistResponse(
        items=[
            PlaylistItem(
                title=entry.display_title,
                local_name=entry.local_name,
                url=media_url(entry.local_name),
                size=entry.size_bytes,
                modified_time=entry.remote_modified_time,
            )
            for entry in manifest.items.values()
        ]
    )


@router.get("", response_model=PlaylistResponse)
async def get_playlist(
    store: Annotated[ManifestStore, Depends(get_manifest_store)],
) -> PlaylistResponse:
    """List the currently mirrored media in play order."""
    return build_playlist(store.snapshot())
