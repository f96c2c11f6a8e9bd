"""Kiosk player process: mpv surface, playback controller and playlist refresh."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import suppress
from typing import TYPE_CHECKING

import httpx

from player.config import PlayerSettings
from player.controller import PlaybackController
from player.mpv_surface import MpvSurface
from player.playlist_source import PlaylistSource
from player.surface import PlaybackError

if TYPE_CHECKING:
    from player.surface import MediaSurface

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stdout,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)


def build_controller(
    settings: PlayerSettings, surface: MediaSurface, source: PlaylistSource
) -> PlaybackController:
    return PlaybackController(
        surface,
        muted=settings.muted,
        loop_playlist=settings.loop_playlist,
        max_play_retries=settings.max_play_retries,
        retry_base_delay=settings.retry_base_delay,
        error_skip_delay=settings.error_skip_delay,
        resolve_url=source.resolve_url,
    )


async def refresh_forever(source: PlaylistSource, interval: float, stop: asyncio.Event) -> None:
    """Refresh the playlist now and then every ``interval`` seconds until ``stop``."""
    while not stop.is_set():
        await source.refresh()
        with suppress(TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=interval)


async def run(settings: PlayerSettings, surface: MpvSurface | None = None) -> None:
    """Run the player until SIGTERM or SIGINT."""
    if surface is None:
        surface = MpvSurface(
            settings.ipc_path,
            mpv_path=settings.mpv_path,
            extra_args=settings.mpv_args,
            connect_timeout=settings.ipc_connect_timeout,
        )
    try:
        await surface.start()
    except PlaybackError:
        await surface.aclose()
        raise

    stop = asyncio.Event()
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        source = PlaylistSource(client, settings.server_url)
        controller = build_controller(settings, surface, source)
        source.on_update = controller.set_playlist

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        loop.add_signal_handler(signal.SIGUSR1, controller.set_visible, False)
        loop.add_signal_handler(signal.SIGUSR2, controller.set_visible, True)

        logger.info("Kiosk player started against %s", settings.server_url)
        try:
            await refresh_forever(source, settings.playlist_refresh_seconds, stop)
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGUSR1, signal.SIGUSR2):
                loop.remove_signal_handler(sig)
            controller.close()
            await source.close()
            await surface.aclose()
    logger.info("Kiosk player stopped")


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="kiosk-player", description="Play the mirrored playlist fullscreen in mpv"
    )
    parser.add_argument("--server", help="Mirror server base URL (default: KIOSK_PLAYER_SERVER_URL)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    overrides: dict[str, object] = {}
    if args.server:
        overrides["server_url"] = args.server
    if args.verbose:
        overrides["debug"] = True
    settings = PlayerSettings(**overrides)  # type: ignore[arg-type]
    _configure_logging(settings.debug)

    try:
        asyncio.run(run(settings))
    except PlaybackError as exc:
        logger.error("Cannot start playback surface: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
