"""Media surface backed by an mpv process driven over its JSON IPC socket."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import signal
from typing import TYPE_CHECKING, Any

from player.surface import PlaybackError, PlaybackRejected, SurfaceEvent

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from player.surface import SurfaceListener

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 5.0


def build_mpv_args(mpv_path: str, ipc_path: Path, extra_args: Sequence[str] = ()) -> list[str]:
    """Command line for an idle, paused, windowed mpv controlled over IPC."""
    return [
        mpv_path,
        "--idle=yes",
        "--force-window=yes",
        "--keep-open=no",
        "--pause=yes",
        "--no-terminal",
        "--no-osc",
        "--osd-level=0",
        "--no-input-default-bindings",
        f"--input-ipc-server={ipc_path}",
        *extra_args,
    ]


class MpvSurface:
    """``MediaSurface`` implementation over mpv IPC.

    ``file-loaded`` maps to ``canplay``; ``end-file`` maps to ``ended`` for
    reason ``eof`` and to ``error`` for reason ``error``. Other end reasons
    (``stop``, ``redirect``, ``quit``) come from our own source replacement
    and are ignored.
    """

    def __init__(
        self,
        ipc_path: Path,
        *,
        mpv_path: str = "mpv",
        extra_args: Sequence[str] = (),
        connect_timeout: float = 10.0,
    ) -> None:
        self._ipc_path = ipc_path
        self._mpv_path = mpv_path
        self._extra_args = list(extra_args)
        self._connect_timeout = connect_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._request_id = 0
        self._listeners: dict[SurfaceEvent, list[SurfaceListener]] = {
            event: [] for event in SurfaceEvent
        }
        self._muted = True
        self._loop = False
        self._ready = False

    # ── Lifecycle ────────────────────────────────────────

    async def start(self, *, launch: bool = True) -> None:
        """Launch mpv (unless ``launch`` is false) and connect to its IPC socket."""
        if launch:
            with contextlib.suppress(FileNotFoundError):
                self._ipc_path.unlink()
            args = build_mpv_args(self._mpv_path, self._ipc_path, self._extra_args)
            logger.info("Starting mpv: %s", " ".join(args))
            self._process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        await self._connect()
        self._reader_task = asyncio.create_task(self._read_events(), name="mpv-ipc-reader")
        self._fire(["set_property", "mute", self._muted])

    async def _connect(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._connect_timeout
        while True:
            try:
                self._reader, self._writer = await asyncio.open_unix_connection(
                    str(self._ipc_path)
                )
                logger.debug("Connected to mpv IPC at %s", self._ipc_path)
                return
            except (FileNotFoundError, ConnectionRefusedError):
                if self._process is not None and self._process.returncode is not None:
                    msg = f"mpv exited with status {self._process.returncode}"
                    raise PlaybackError(msg) from None
                if loop.time() >= deadline:
                    msg = f"mpv IPC socket not available at {self._ipc_path}"
                    raise PlaybackError(msg) from None
                await asyncio.sleep(0.2)

    async def aclose(self) -> None:
        """Disconnect and stop the mpv process we launched."""
        if self._reader_task is not None:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None
        if self._writer is not None:
            self._writer.close()
            with contextlib.suppress(OSError):
                await self._writer.wait_closed()
            self._writer = None
        self._fail_pending("mpv connection closed")

        process = self._process
        self._process = None
        if process is not None and process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                os.killpg(process.pid, signal.SIGTERM)
            try:
                await asyncio.wait_for(process.wait(), timeout=5)
            except TimeoutError:
                logger.warning("mpv did not exit after SIGTERM; killing")
                with contextlib.suppress(ProcessLookupError):
                    os.killpg(process.pid, signal.SIGKILL)
                await process.wait()

    # ── MediaSurface ─────────────────────────────────────

    @property
    def muted(self) -> bool:
        return self._muted

    @muted.setter
    def muted(self, value: bool) -> None:
        self._muted = value
        self._fire(["set_property", "mute", value])

    @property
    def loop(self) -> bool:
        return self._loop

    @loop.setter
    def loop(self, value: bool) -> None:
        self._loop = value
        self._fire(["set_property", "loop-file", "inf" if value else "no"])

    @property
    def ready(self) -> bool:
        return self._ready

    def load(self, url: str | None) -> None:
        self._ready = False
        if url is None:
            self._fire(["stop"])
            return
        self._fire(["set_property", "pause", True])
        self._fire(["loadfile", url, "replace"])

    async def play(self) -> None:
        try:
            response = await self._request(["set_property", "pause", False])
        except (OSError, TimeoutError) as exc:
            raise PlaybackError(f"mpv IPC failure: {exc}") from exc
        error = response.get("error", "success")
        if error != "success":
            raise PlaybackRejected(error)

    def pause(self) -> None:
        self._fire(["set_property", "pause", True])

    def add_listener(self, event: SurfaceEvent, listener: SurfaceListener) -> None:
        self._listeners[event].append(listener)

    def remove_listener(self, event: SurfaceEvent, listener: SurfaceListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners[event].remove(listener)

    # ── IPC plumbing ─────────────────────────────────────

    def _fire(self, command: list[Any]) -> None:
        """Send a command without waiting for its reply."""
        if self._writer is None or self._writer.is_closing():
            logger.debug("mpv not connected; dropping command %s", command[0])
            return
        self._writer.write(json.dumps({"command": command}).encode("utf-8") + b"\n")

    async def _request(self, command: list[Any]) -> dict[str, Any]:
        if self._writer is None or self._writer.is_closing():
            raise ConnectionError("mpv IPC is not connected")
        self._request_id += 1
        request_id = self._request_id
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        payload = {"command": command, "request_id": request_id}
        try:
            self._writer.write(json.dumps(payload).encode("utf-8") + b"\n")
            await self._writer.drain()
            return await asyncio.wait_for(future, timeout=REQUEST_TIMEOUT)
        finally:
            self._pending.pop(request_id, None)

    async def _read_events(self) -> None:
        assert self._reader is not None
        while True:
            line = await self._reader.readline()
            if not line:
                logger.warning("mpv IPC connection closed")
                self._fail_pending("mpv IPC connection closed")
                self._emit(SurfaceEvent.ERROR)
                return
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Ignoring malformed IPC line: %r", line[:200])
                continue
            if not isinstance(message, dict):
                continue
            self._handle_message(message)

    def _handle_message(self, message: dict[str, Any]) -> None:
        request_id = message.get("request_id")
        if "event" not in message and isinstance(request_id, int):
            future = self._pending.get(request_id)
            if future is not None and not future.done():
                future.set_result(message)
            return

        event = message.get("event")
        if event == "file-loaded":
            self._ready = True
            self._emit(SurfaceEvent.CAN_PLAY)
        elif event == "end-file":
            reason = message.get("reason")
            if reason == "eof":
                self._emit(SurfaceEvent.ENDED)
            elif reason == "error":
                logger.warning("mpv reported playback error: %s", message.get("file_error"))
                self._emit(SurfaceEvent.ERROR)

    def _emit(self, event: SurfaceEvent) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener()
            except Exception:
                logger.exception("Surface listener for %s failed", event)

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError(reason))
        self._pending.clear()
