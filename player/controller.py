"""Playback controller: cycles a playlist on one media surface.

The controller is the single owner of the surface's listeners, of one retry
timer and of one in-flight play task. Every source change bumps a generation
token and tears all three down before new ones are attached, so a late callback
from a previous item can never act on the current one.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from player.surface import PlaybackError, PlaybackRejected, SurfaceEvent

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from mirror.schemas.playlist import PlaylistItem
    from player.surface import MediaSurface, SurfaceListener

logger = logging.getLogger(__name__)


class PlaybackState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    RETRYING_AUTOPLAY = "retrying_autoplay"
    ADVANCING = "advancing"
    SUSPENDED = "suspended"


class Cancellable(Protocol):
    def cancel(self) -> None: ...


def _call_later(delay: float, callback: Callable[[], None]) -> Cancellable:
    return asyncio.get_running_loop().call_later(delay, callback)


def _item_url(item: PlaylistItem) -> str | None:
    return item.url or None


class PlaybackController:
    """State machine driving a single ``MediaSurface`` through a playlist."""

    def __init__(
        self,
        surface: MediaSurface,
        *,
        muted: bool = True,
        loop_playlist: bool = True,
        max_play_retries: int = 3,
        retry_base_delay: float = 0.5,
        error_skip_delay: float = 0.05,
        resolve_url: Callable[[PlaylistItem], str | None] = _item_url,
        scheduler: Callable[[float, Callable[[], None]], Cancellable] = _call_later,
    ) -> None:
        if max_play_retries < 0:
            raise ValueError("max_play_retries must be >= 0")
        if retry_base_delay <= 0:
            raise ValueError("retry_base_delay must be positive")
        self._surface = surface
        self._requested_muted = muted
        self._loop_playlist = loop_playlist
        self._max_play_retries = max_play_retries
        self._retry_base_delay = retry_base_delay
        self._error_skip_delay = error_skip_delay
        self._resolve_url = resolve_url
        self._scheduler = scheduler

        self.state = PlaybackState.IDLE
        self.index = 0
        self._playlist: list[PlaylistItem] = []
        self._generation = 0
        self._attempts = 0
        self._timer: Cancellable | None = None
        self._play_task: asyncio.Task[None] | None = None
        self._listeners: list[tuple[SurfaceEvent, SurfaceListener]] = []
        self._source_loaded = False
        self._unmute_pending = False
        self._skipped_in_a_row = 0
        self._suspended = False
        self._state_before_suspend = PlaybackState.IDLE

    # ── Public API ───────────────────────────────────────

    @property
    def playlist(self) -> list[PlaylistItem]:
        return list(self._playlist)

    @property
    def current_item(self) -> PlaylistItem | None:
        if not self._playlist:
            return None
        return self._playlist[self.index]

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based); doubles each time."""
        return self._retry_base_delay * 2 ** (attempt - 1)

    def set_playlist(self, items: Sequence[PlaylistItem]) -> None:
        """Supply a new playlist.

        An identical list is ignored; if the current item is still present the
        cursor follows it without reloading the surface.
        """
        new_items = list(items)
        if [self._key(i) for i in new_items] == [self._key(i) for i in self._playlist]:
            self._playlist = new_items
            return

        current = self.current_item
        self._playlist = new_items
        self._skipped_in_a_row = 0

        if not new_items:
            logger.info("Playlist is empty; clearing surface")
            self.index = 0
            self._clear_source()
            self._set_state(PlaybackState.IDLE)
            return

        if current is not None and self._source_loaded:
            current_key = self._key(current)
            for position, item in enumerate(new_items):
                if self._key(item) == current_key:
                    self.index = position
                    self._surface.loop = self._single_item_loop()
                    return

        if self.index >= len(new_items):
            self.index = 0
        self._load_current()

    def set_visible(self, visible: bool) -> None:
        """React to the host surface being hidden or shown."""
        if not visible:
            if self._suspended:
                return
            self._suspended = True
            self._state_before_suspend = self.state
            self._cancel_timer()
            self._cancel_play_task()
            self._surface.pause()
            self._set_state(PlaybackState.SUSPENDED)
            return

        if not self._suspended:
            return
        self._suspended = False
        if not self._source_loaded or self._state_before_suspend == PlaybackState.IDLE:
            self._set_state(PlaybackState.IDLE)
            return
        self._attempts = 0
        self._set_state(PlaybackState.PLAYING)
        self._play_task = asyncio.get_running_loop().create_task(
            self._resume_play(self._generation)
        )

    def close(self) -> None:
        """Tear down timers, tasks and listeners."""
        self._reset_bindings()
        self._set_state(PlaybackState.IDLE)

    async def join(self) -> None:
        """Wait until no play attempt is in flight."""
        while self._play_task is not None and not self._play_task.done():
            await asyncio.gather(self._play_task, return_exceptions=True)

    # ── Source management ────────────────────────────────

    def _key(self, item: PlaylistItem) -> tuple[str, str | None]:
        return item.local_name, self._resolve_url(item)

    def _single_item_loop(self) -> bool:
        return len(self._playlist) == 1 and self._loop_playlist

    def _load_current(self) -> None:
        self._reset_bindings()
        item = self._playlist[self.index]
        url = self._resolve_url(item)
        if url is None:
            logger.warning("Skipping %s: no playable address", item.local_name)
            self._skipped_in_a_row += 1
            if self._skipped_in_a_row >= len(self._playlist):
                logger.warning("No playable items in playlist; leaving surface idle")
                self._clear_source()
                self._set_state(PlaybackState.IDLE)
                return
            self._advance()
            return

        surface = self._surface
        surface.pause()
        surface.loop = self._single_item_loop()
        surface.muted = True
        surface.load(url)
        self._source_loaded = True
        self._unmute_pending = not self._requested_muted
        logger.info("Loading %s (%d/%d)", item.local_name, self.index + 1, len(self._playlist))

        generation = self._generation
        self._listen(SurfaceEvent.ENDED, lambda: self._on_ended(generation))
        self._listen(SurfaceEvent.ERROR, lambda: self._on_error(generation))
        if self._suspended:
            return

        self._set_state(PlaybackState.LOADING)
        if surface.ready:
            self._start_play(generation)
        else:
            self._listen(SurfaceEvent.CAN_PLAY, lambda: self._on_can_play(generation))

    def _clear_source(self) -> None:
        self._reset_bindings()
        self._surface.pause()
        self._surface.load(None)
        self._source_loaded = False

    def _reset_bindings(self) -> None:
        self._cancel_timer()
        self._cancel_play_task()
        for event, listener in self._listeners:
            self._surface.remove_listener(event, listener)
        self._listeners.clear()
        self._generation += 1
        self._attempts = 0

    def _listen(self, event: SurfaceEvent, listener: SurfaceListener) -> None:
        self._surface.add_listener(event, listener)
        self._listeners.append((event, listener))

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_play_task(self) -> None:
        if self._play_task is not None and not self._play_task.done():
            self._play_task.cancel()
        self._play_task = None

    def _schedule(self, delay: float, callback: Callable[[], None]) -> None:
        self._cancel_timer()
        self._timer = self._scheduler(delay, callback)

    def _set_state(self, state: PlaybackState) -> None:
        if self._suspended and state != PlaybackState.SUSPENDED:
            # Suspension wins over every internal transition.
            return
        if state != self.state:
            logger.debug("Playback state %s -> %s", self.state, state)
            self.state = state

    # ── Playing ──────────────────────────────────────────

    def _start_play(self, generation: int) -> None:
        self._play_task = asyncio.get_running_loop().create_task(self._attempt_play(generation))

    async def _attempt_play(self, generation: int) -> None:
        if self._attempts > 0:
            self._surface.muted = True
        try:
            await self._surface.play()
        except PlaybackRejected as exc:
            if generation != self._generation or self._suspended:
                return
            self._attempts += 1
            if self._attempts > self._max_play_retries:
                logger.warning(
                    "Playback rejected %d times (%s); skipping to next item", self._attempts, exc
                )
                self._set_state(PlaybackState.ADVANCING)
                self._advance()
                return
            delay = self.backoff_delay(self._attempts)
            logger.info("Playback rejected (%s); muted retry %d in %.2fs", exc, self._attempts, delay)
            self._set_state(PlaybackState.RETRYING_AUTOPLAY)
            self._schedule(delay, lambda: self._on_retry_timer(generation))
            return
        except PlaybackError as exc:
            logger.warning("Playback failed to start: %s", exc)
            self._on_error(generation)
            return

        if generation != self._generation:
            return
        if self._suspended:
            self._surface.pause()
            return
        self._attempts = 0
        self._skipped_in_a_row = 0
        self._set_state(PlaybackState.PLAYING)
        if self._unmute_pending:
            self._unmute_pending = False
            try:
                self._surface.muted = False
            except PlaybackRejected:
                logger.debug("Host refused unmuted playback; staying muted")

    async def _resume_play(self, generation: int) -> None:
        try:
            await self._surface.play()
        except (PlaybackRejected, PlaybackError) as exc:
            if generation == self._generation:
                logger.debug("Resume play rejected: %s", exc)

    # ── Surface callbacks ────────────────────────────────

    def _on_can_play(self, generation: int) -> None:
        if generation != self._generation or self._suspended:
            return
        if self.state != PlaybackState.LOADING:
            return
        self._start_play(generation)

    def _on_retry_timer(self, generation: int) -> None:
        self._timer = None
        if generation != self._generation or self._suspended:
            return
        self._start_play(generation)

    def _on_ended(self, generation: int) -> None:
        if generation != self._generation:
            return
        if self._single_item_loop():
            logger.debug("Restarting single-item playlist")
            self._load_current()
            return
        self._set_state(PlaybackState.ADVANCING)
        self._advance()

    def _on_error(self, generation: int) -> None:
        if generation != self._generation:
            return
        item = self.current_item
        logger.warning(
            "Playback error on %s; skipping to next item",
            item.local_name if item is not None else "<none>",
        )
        self._cancel_play_task()
        self._set_state(PlaybackState.ADVANCING)
        self._schedule(self._error_skip_delay, lambda: self._on_error_timer(generation))

    def _on_error_timer(self, generation: int) -> None:
        self._timer = None
        if generation != self._generation:
            return
        self._advance()

    def _advance(self) -> None:
        count = len(self._playlist)
        if count == 0:
            self._clear_source()
            self._set_state(PlaybackState.IDLE)
            return
        if self.index + 1 < count:
            self.index += 1
        elif self._loop_playlist:
            self.index = 0
        else:
            logger.info("Reached end of playlist; holding on last item")
            self._reset_bindings()
            self._set_state(PlaybackState.IDLE)
            return
        self._load_current()
