"""Tests for the mpv IPC surface against an in-process fake IPC server."""

from __future__ import annotations

import asyncio
import json
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from player.mpv_surface import MpvSurface, build_mpv_args
from player.surface import PlaybackRejected, SurfaceEvent

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterator


class FakeMpv:
    """Speaks enough of mpv's JSON IPC to drive ``MpvSurface``."""

    def __init__(self) -> None:
        self.commands: list[list[Any]] = []
        self.reply_error = "success"
        self.writer: asyncio.StreamWriter | None = None
        self.connected = asyncio.Event()
        self.received = asyncio.Condition()

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.writer = writer
        self.connected.set()
        while line := await reader.readline():
            message = json.loads(line)
            async with self.received:
                self.commands.append(message["command"])
                self.received.notify_all()
            if "request_id" in message:
                self.send({"request_id": message["request_id"], "error": self.reply_error, "data": None})

    def send(self, message: dict[str, Any]) -> None:
        assert self.writer is not None
        self.writer.write(json.dumps(message).encode("utf-8") + b"\n")

    async def wait_for(self, predicate: Any) -> None:
        async with self.received:
            await asyncio.wait_for(self.received.wait_for(lambda: predicate(self.commands)), 2)


@pytest.fixture
def socket_path() -> Iterator[Path]:
    with tempfile.TemporaryDirectory(prefix="mpv") as tmp:
        yield Path(tmp) / "ipc.sock"


@pytest.fixture
async def fake_mpv(socket_path: Path) -> AsyncGenerator[FakeMpv]:
    fake = FakeMpv()
    server = await asyncio.start_unix_server(fake.handle, path=str(socket_path))
    yield fake
    server.close()
    await server.wait_closed()


@pytest.fixture
async def surface(fake_mpv: FakeMpv, socket_path: Path) -> AsyncGenerator[MpvSurface]:
    mpv = MpvSurface(socket_path, connect_timeout=2)
    await mpv.start(launch=False)
    await fake_mpv.connected.wait()
    yield mpv
    await mpv.aclose()


def test_build_args_include_ipc_socket() -> None:
    args = build_mpv_args("mpv", Path("/tmp/x.sock"), ["--fullscreen"])
    assert args[0] == "mpv"
    assert "--input-ipc-server=/tmp/x.sock" in args
    assert "--idle=yes" in args
    assert args[-1] == "--fullscreen"


class TestCommands:
    @pytest.mark.asyncio
    async def test_load_replaces_source_paused(self, surface: MpvSurface, fake_mpv: FakeMpv) -> None:
        surface.load("http://kiosk/api/video?name=a.mp4")
        await fake_mpv.wait_for(lambda cmds: cmds and cmds[-1][0] == "loadfile")

        assert ["set_property", "pause", True] in fake_mpv.commands
        assert fake_mpv.commands[-1] == ["loadfile", "http://kiosk/api/video?name=a.mp4", "replace"]
        assert surface.ready is False

    @pytest.mark.asyncio
    async def test_clearing_source_stops(self, surface: MpvSurface, fake_mpv: FakeMpv) -> None:
        surface.load(None)
        await fake_mpv.wait_for(lambda cmds: ["stop"] in cmds)

    @pytest.mark.asyncio
    async def test_mute_and_loop_properties(self, surface: MpvSurface, fake_mpv: FakeMpv) -> None:
        surface.muted = False
        surface.loop = True
        await fake_mpv.wait_for(lambda cmds: ["set_property", "loop-file", "inf"] in cmds)

        assert ["set_property", "mute", False] in fake_mpv.commands
        assert surface.muted is False
        assert surface.loop is True

    @pytest.mark.asyncio
    async def test_play_unpauses(self, surface: MpvSurface, fake_mpv: FakeMpv) -> None:
        await surface.play()
        assert fake_mpv.commands[-1] == ["set_property", "pause", False]

    @pytest.mark.asyncio
    async def test_play_error_reply_is_rejection(self, surface: MpvSurface, fake_mpv: FakeMpv) -> None:
        fake_mpv.reply_error = "property unavailable"
        with pytest.raises(PlaybackRejected):
            await surface.play()


class TestEvents:
    @pytest.mark.asyncio
    async def test_events_map_to_surface_events(self, surface: MpvSurface, fake_mpv: FakeMpv) -> None:
        seen: list[SurfaceEvent] = []
        for event in SurfaceEvent:
            surface.add_listener(event, lambda e=event: seen.append(e))

        fake_mpv.send({"event": "file-loaded"})
        fake_mpv.send({"event": "end-file", "reason": "stop"})
        fake_mpv.send({"event": "end-file", "reason": "eof"})
        fake_mpv.send({"event": "end-file", "reason": "error", "file_error": "loading failed"})
        # A request round trip guarantees all earlier lines were processed.
        await surface.play()

        assert seen == [SurfaceEvent.CAN_PLAY, SurfaceEvent.ENDED, SurfaceEvent.ERROR]
        assert surface.ready is True

    @pytest.mark.asyncio
    async def test_removed_listener_is_not_called(self, surface: MpvSurface, fake_mpv: FakeMpv) -> None:
        calls: list[str] = []

        def listener() -> None:
            calls.append("ended")

        surface.add_listener(SurfaceEvent.ENDED, listener)
        surface.remove_listener(SurfaceEvent.ENDED, listener)
        fake_mpv.send({"event": "end-file", "reason": "eof"})
        await surface.play()

        assert calls == []
