"""Media surface protocol: the single host element the playback controller drives."""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from typing import Protocol, runtime_checkable


class SurfaceEvent(StrEnum):
    """Events a media surface emits for the currently loaded source."""

    CAN_PLAY = "canplay"
    ENDED = "ended"
    ERROR = "error"


SurfaceListener = Callable[[], None]


class PlaybackRejected(Exception):
    """The host refused to start playback (autoplay policy, device busy, ...)."""


class PlaybackError(Exception):
    """Runtime failure of the current item. Drives the controller to the next item."""


@runtime_checkable
class MediaSurface(Protocol):
    """A single media element.

    ``play`` raises ``PlaybackRejected`` when the host refuses to start.
    Listeners are invoked on the event loop thread.
    """

    muted: bool
    loop: bool

    @property
    def ready(self) -> bool:
        """True once enough of the current source is buffered to start playing."""
        ...

    def load(self, url: str | None) -> None:
        """Replace the current source. ``None`` clears it."""
        ...

    async def play(self) -> None: ...

    def pause(self) -> None: ...

    def add_listener(self, event: SurfaceEvent, listener: SurfaceListener) -> None: ...

    def remove_listener(self, event: SurfaceEvent, listener: SurfaceListener) -> None: ...
