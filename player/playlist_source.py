"""Fetches the playlist from the mirror server."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING
from urllib.parse import quote, urljoin

import httpx
from pydantic import ValidationError

from mirror.schemas.playlist import PlaylistItem, PlaylistResponse

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

PLAYLIST_PATH = "/api/playlist"


def resolve_item_url(item: PlaylistItem, base_url: str) -> str | None:
    """Absolute address of an item, or ``None`` when it has none."""
    if item.url:
        return urljoin(base_url, item.url.lstrip("/"))
    if item.local_name:
        return urljoin(base_url, f"api/video?name={quote(item.local_name, safe='')}")
    return None


class PlaylistSource:
    """Keeps the last good playlist; a new refresh supersedes one in flight."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        *,
        on_update: Callable[[list[PlaylistItem]], None] | None = None,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/") + "/"
        self.on_update = on_update
        self._items: list[PlaylistItem] = []
        self._task: asyncio.Task[list[PlaylistItem]] | None = None
        self._closed = False

    @property
    def items(self) -> list[PlaylistItem]:
        return list(self._items)

    def resolve_url(self, item: PlaylistItem) -> str | None:
        return resolve_item_url(item, self._base_url)

    async def _fetch(self) -> list[PlaylistItem]:
        response = await self._client.get(
            urljoin(self._base_url, PLAYLIST_PATH.lstrip("/")),
            headers={"Cache-Control": "no-store"},
        )
        response.raise_for_status()
        return PlaylistResponse.model_validate_json(response.content).items

    async def refresh(self) -> list[PlaylistItem]:
        """Fetch the playlist, returning the last good one on failure."""
        if self._closed:
            return self.items
        if self._task is not None and not self._task.done():
            logger.debug("Cancelling superseded playlist fetch")
            self._task.cancel()

        task = asyncio.create_task(self._fetch())
        self._task = task
        try:
            items = await task
        except asyncio.CancelledError:
            if task.cancelled() and self._task is not task:
                # Superseded by a newer refresh; that one reports the result.
                return self.items
            raise
        except (httpx.HTTPError, ValidationError) as exc:
            logger.warning("Playlist fetch failed, keeping %d known item(s): %s", len(self._items), exc)
            return self.items
        finally:
            if self._task is task:
                self._task = None

        self._items = items
        logger.info("Playlist refreshed: %d item(s)", len(items))
        if self.on_update is not None:
            self.on_update(self.items)
        return self.items

    async def close(self) -> None:
        """Abort any in-flight fetch."""
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
